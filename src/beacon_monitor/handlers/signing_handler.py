#!/usr/bin/env python3
"""
Beacon Block Signing Handler

Infers per-validator signing status for a newly observed height. On this
chain a block's own signers are only recorded in the commit carried by the
following block, so the status for height H is read from block H-1's
last_commit.
"""

import logging
from typing import Dict, List, Optional

from beacon_monitor.clients.rpc_client import CometRPCClient
from beacon_monitor.monitor.config import TrackedValidator
from beacon_monitor.monitor.metric_store import MetricStore

logger = logging.getLogger(__name__)


class SigningHandler:
    """
    Writes signed/missed metrics for tracked validators

    Metrics:
    - <ns>_beacon_block_signed{validator, block_height}: 1=signed, 0=missed
    - cometbft_consensus_validator_missed_blocks{validator, chain_id}: complement of signed
    - <ns>_consecutive_missed_blocks{validator}: current miss streak
    - <ns>_missed_blocks_total{validator}: misses since start
    """

    def __init__(
        self,
        rpc_client: CometRPCClient,
        metric_store: MetricStore,
        validators: List[TrackedValidator]
    ):
        """
        Initialize signing handler

        Args:
            rpc_client: RPC client used to fetch the previous block
            metric_store: Store receiving the signing metrics
            validators: Tracked validators
        """
        self.rpc_client = rpc_client
        self.metric_store = metric_store
        self.validators = validators

        self._consecutive_missed: Dict[str, int] = {v.label: 0 for v in validators}
        self._last_height: Optional[int] = None

        logger.info(f"SigningHandler initialized ({len(validators)} tracked validators)")

    async def handle(self, height: int) -> Optional[Dict[str, bool]]:
        """
        Infer signing status for a newly observed height

        Args:
            height: Newly observed block height H

        Returns:
            Mapping of validator label to signed flag, or None when no
            signing data is available (H <= 1 or block H-1 unavailable)
        """
        previous_height = height - 1

        # Height 0 would ask the node for the latest block
        if previous_height < 1:
            logger.info(f"No signing data for height {height} (previous height {previous_height})")
            return None

        previous_block = await self.rpc_client.get_block(previous_height)
        if previous_block is None:
            logger.warning(
                f"Could not fetch previous block {previous_height}, "
                f"skipping signing metrics for height {height}"
            )
            return None

        signed_addresses = previous_block.signed_addresses()
        logger.debug(f"Block {previous_height} commit signed by {len(signed_addresses)} validators")

        # Streak and total only advance once per height
        is_new_height = self._last_height is None or height > self._last_height

        results = {}
        for validator in self.validators:
            signed = validator.address in signed_addresses
            results[validator.label] = signed

            self.metric_store.set_signed(validator.label, height, signed)

            if is_new_height:
                self._update_streak(validator.label, signed)

            logger.debug(f"Validator {validator.label} ({validator.address}): signed={signed} at {height}")

        if is_new_height:
            self._last_height = height

        missed = [label for label, signed in results.items() if not signed]
        if missed:
            logger.warning(f"Block {height}: missed by {', '.join(missed)}")

        logger.info(
            f"Updated beacon block metrics for block {height} based on previous block {previous_height}"
        )
        return results

    def _update_streak(self, label: str, signed: bool):
        if signed:
            self._consecutive_missed[label] = 0
        else:
            self._consecutive_missed[label] = self._consecutive_missed.get(label, 0) + 1
            self.metric_store.missed_blocks.labels(validator=label).inc()

        self.metric_store.consecutive_missed_blocks.labels(validator=label).set(
            self._consecutive_missed[label]
        )

    @property
    def last_height(self) -> Optional[int]:
        """Last height whose signing status was recorded"""
        return self._last_height

    def consecutive_missed(self, label: str) -> int:
        return self._consecutive_missed.get(label, 0)

    def __repr__(self) -> str:
        return f"SigningHandler(validators={len(self.validators)}, last_height={self._last_height})"

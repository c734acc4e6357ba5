#!/usr/bin/env python3
"""
Validator Set and Staking Handler

Updates active-set membership and staking state of tracked validators.
"""

import logging
from typing import Dict, List, Optional

from beacon_monitor.clients.rpc_client import CometRPCClient
from beacon_monitor.monitor.config import TrackedValidator
from beacon_monitor.monitor.metric_store import MetricStore

logger = logging.getLogger(__name__)


BOND_STATUS_BONDED = "BOND_STATUS_BONDED"


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ValidatorHandler:
    """
    Handles validator-set and staking queries

    Metrics:
    - <ns>_status{validator, address}: 1 if in the active validator set
    - <ns>_active_set: Number of staking validators
    - <ns>_is_bonded / <ns>_is_jailed / <ns>_tokens / <ns>_commission{validator}
    """

    def __init__(
        self,
        rpc_client: CometRPCClient,
        metric_store: MetricStore,
        validators: List[TrackedValidator]
    ):
        self.rpc_client = rpc_client
        self.metric_store = metric_store
        self.validators = validators

        logger.info("ValidatorHandler initialized")

    async def update_status(self) -> Optional[Dict[str, bool]]:
        """
        Mark each tracked validator active or inactive from the current validator set

        Returns:
            Mapping of label to active flag, or None if the set was unavailable
        """
        active_addresses = await self.rpc_client.get_validator_set()
        if active_addresses is None:
            logger.warning("Validator set unavailable, keeping previous status metrics")
            return None

        active = set(active_addresses)
        results = {}
        for validator in self.validators:
            is_active = validator.address in active
            results[validator.label] = is_active
            self.metric_store.validator_status.labels(
                validator=validator.label,
                address=validator.address
            ).set(1 if is_active else 0)

        return results

    async def update_staking(self) -> Optional[int]:
        """
        Update staking metrics of tracked validators

        Staking entries are matched to tracked validators by operator
        address or by moniker equal to the tracked label.

        Returns:
            Number of tracked validators found, or None if staking data was unavailable
        """
        staking_validators = await self.rpc_client.get_staking_validators()
        if staking_validators is None:
            logger.warning("Staking validators unavailable, keeping previous staking metrics")
            return None

        by_address = {v.address: v for v in self.validators}
        by_label = {v.label: v for v in self.validators}

        self.metric_store.active_set.set(len(staking_validators))

        matched = 0
        for entry in staking_validators:
            if not isinstance(entry, dict):
                continue

            operator = str(entry.get("operator_address") or "").upper()
            moniker = ((entry.get("description") or {}).get("moniker") or "").strip()

            tracked = by_address.get(operator) or by_label.get(moniker)
            if tracked is None:
                continue

            matched += 1
            label = tracked.label

            self.metric_store.is_bonded.labels(validator=label).set(
                1 if entry.get("status") == BOND_STATUS_BONDED else 0
            )
            self.metric_store.is_jailed.labels(validator=label).set(1 if entry.get("jailed") else 0)

            tokens = _to_float(entry.get("tokens"))
            if tokens is not None:
                self.metric_store.tokens.labels(validator=label).set(tokens)

            rate = _to_float(
                ((entry.get("commission") or {}).get("commission_rates") or {}).get("rate")
            )
            if rate is not None:
                self.metric_store.commission.labels(validator=label).set(rate)

        if matched < len(self.validators):
            logger.debug(f"Staking data found for {matched}/{len(self.validators)} tracked validators")

        return matched

#!/usr/bin/env python3
"""
Block Tracker for the Beacon Validator Monitor

Polls the chain node for the latest block on a fixed interval and runs the
per-block update sequence exactly once per height.
"""

import asyncio
import logging
from typing import List, Optional, Set

from beacon_monitor.clients.rpc_client import Block, CometRPCClient
from beacon_monitor.handlers.mempool_handler import MempoolHandler
from beacon_monitor.handlers.signing_handler import SigningHandler
from beacon_monitor.handlers.validator_handler import ValidatorHandler
from beacon_monitor.monitor.config import TrackedValidator
from beacon_monitor.monitor.metric_store import MetricStore


logger = logging.getLogger(__name__)


# Processed heights kept for duplicate detection
PROCESSED_CACHE_SIZE = 1000


class BlockTracker:
    """
    Drives the polling loop and guarantees each height is processed at most once

    Per processed height:
    - block height gauge
    - signing inference (from the previous block's commit)
    - staking metrics
    - validator-set status
    - mempool metrics
    - tracked blocks counter

    Each step is isolated: one failing fetch does not stop the others.
    """

    def __init__(
        self,
        rpc_client: CometRPCClient,
        metric_store: MetricStore,
        validators: List[TrackedValidator],
        poll_interval: float = 5.0,
        cache_size: int = PROCESSED_CACHE_SIZE
    ):
        """
        Initialize block tracker

        Args:
            rpc_client: RPC client for the chain node
            metric_store: Store receiving all block metrics
            validators: Tracked validators (fixed for the process lifetime)
            poll_interval: Seconds between polls (default: 5)
            cache_size: Number of recent heights kept in the processed cache (default: 1000)
        """
        self.rpc_client = rpc_client
        self.metric_store = metric_store
        self.validators = list(validators)
        self.poll_interval = poll_interval
        self.cache_size = cache_size

        self.signing_handler = SigningHandler(rpc_client, metric_store, self.validators)
        self.validator_handler = ValidatorHandler(rpc_client, metric_store, self.validators)
        self.mempool_handler = MempoolHandler(rpc_client, metric_store)

        self._last_processed_height = 0
        self._processed_heights: Set[int] = set()
        self._tick_count = 0

        logger.info(
            f"BlockTracker initialized: interval={poll_interval}s, "
            f"validators={[v.label for v in self.validators]}, cache_size={cache_size}"
        )

    async def run(self, shutdown_event: asyncio.Event, max_ticks: Optional[int] = None):
        """
        Poll until shutdown_event is set

        Args:
            shutdown_event: Event to signal shutdown, checked every tick
            max_ticks: Stop after this many polls (None = run until shutdown)
        """
        logger.info(f"Block tracking started (interval: {self.poll_interval}s)")

        try:
            while not shutdown_event.is_set():
                try:
                    await self.poll()
                except Exception as e:
                    logger.error(f"Unexpected error during poll: {e}", exc_info=True)

                self._tick_count += 1
                if max_ticks is not None and self._tick_count >= max_ticks:
                    break

                # Wait for next poll or shutdown
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        except asyncio.CancelledError:
            logger.info("Block tracking cancelled")
            raise

        logger.info(f"Block tracking stopped after {self._tick_count} polls")

    async def poll(self) -> bool:
        """
        Fetch the latest block and process it if its height is new

        Returns:
            True if a new height was processed, False otherwise
        """
        block = await self.rpc_client.get_block()
        if block is None:
            logger.warning("Latest block unavailable, keeping previous metrics")
            return False

        height = block.height
        if height <= self._last_processed_height or height in self._processed_heights:
            logger.debug(
                f"Block {height} already processed or not new (last: {self._last_processed_height})"
            )
            self.metric_store.skipped_blocks.inc()
            return False

        logger.info(f"Processing new block: {height} (previous: {self._last_processed_height})")
        await self.process_block(block)
        return True

    async def process_block(self, block: Block):
        """Run the per-block update sequence and mark the height processed"""
        height = block.height

        self.metric_store.set_block_height(height)

        await self._isolated("signing inference", self.signing_handler.handle(height))
        await self._isolated("staking update", self.validator_handler.update_staking())
        await self._isolated("validator status", self.validator_handler.update_status())
        await self._isolated("mempool update", self.mempool_handler.update(block))

        self.metric_store.tracked_blocks.inc()

        self._last_processed_height = height
        self._processed_heights.add(height)
        self._evict(height)

        logger.info(f"Successfully processed beacon block {height}")

    async def _isolated(self, name: str, coro):
        try:
            return await coro
        except Exception as e:
            logger.error(f"Error in {name}: {e}", exc_info=True)
            return None

    def _evict(self, height: int):
        """Keep only heights in (height - cache_size, height]"""
        floor = height - self.cache_size
        stale = [h for h in self._processed_heights if h <= floor]
        for old_height in stale:
            self._processed_heights.discard(old_height)

        # Per-height signing series follow the cache window
        for old_height in self.metric_store.signed_heights:
            if old_height <= floor:
                self.metric_store.forget_height(old_height)

        if stale:
            logger.debug(f"Evicted {len(stale)} heights at or below {floor} from processed cache")

    @property
    def last_processed_height(self) -> int:
        return self._last_processed_height

    @property
    def processed_heights(self) -> Set[int]:
        return set(self._processed_heights)

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def __repr__(self) -> str:
        return (
            f"BlockTracker(last_height={self._last_processed_height}, "
            f"cached={len(self._processed_heights)}, ticks={self._tick_count})"
        )

#!/usr/bin/env python3
"""
Metric Store for the Beacon Validator Monitor

Owns a private Prometheus registry holding every gauge and counter the
exporter publishes. Written by the block tracker and its handlers, read by
the HTTP endpoints through serialize().
"""

import logging
from typing import Dict, Optional, Set

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


logger = logging.getLogger(__name__)


DEFAULT_NAMESPACE = "og_galileo_validator"
DEFAULT_CHAIN_ID = "0g-galileo"

# Fixed name shared with cosmos-validator-watcher dashboards
COMETBFT_MISSED_BLOCKS = "cometbft_consensus_validator_missed_blocks"


class MetricStore:
    """
    Process-wide store of current metric values

    Last write wins for gauges; counters only move through inc(). No history
    is kept, the time-series database scraping us owns that.

    Usage:
        store = MetricStore(namespace="og_galileo_validator")
        store.set_block_height(1234)
        text = store.serialize()
    """

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        chain_id: str = DEFAULT_CHAIN_ID,
        runtime_collectors: bool = True
    ):
        """
        Initialize metric store

        Args:
            namespace: Prefix for all locally produced metric families
            chain_id: Fixed chain tag used as the chain_id label
            runtime_collectors: Register process/platform/GC collectors (default: True)
        """
        self.namespace = namespace
        self.chain_id = chain_id
        self.registry = CollectorRegistry(auto_describe=True)

        if runtime_collectors:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        ns = namespace

        # Block tracking
        self.block_height = Gauge(
            f"{ns}_block_height",
            "Latest known block height",
            registry=self.registry,
        )
        self.tracked_blocks = Counter(
            f"{ns}_tracked_blocks",
            "Number of blocks processed by the tracker",
            registry=self.registry,
        )
        self.skipped_blocks = Counter(
            f"{ns}_skipped_blocks",
            "Number of polls that observed an already processed height",
            registry=self.registry,
        )
        self.rpc_errors = Counter(
            f"{ns}_rpc_errors",
            "Number of failed or malformed upstream RPC calls",
            ["endpoint"],
            registry=self.registry,
        )

        # Signing
        self.beacon_block_signed = Gauge(
            f"{ns}_beacon_block_signed",
            "Beacon block signing status per validator (1=signed, 0=missed) - based on previous block",
            ["validator", "block_height"],
            registry=self.registry,
        )
        self.cometbft_missed_blocks = Gauge(
            COMETBFT_MISSED_BLOCKS,
            "Missed status of the latest block per validator (CometBFT consensus)",
            ["validator", "chain_id"],
            registry=self.registry,
        )
        self.consecutive_missed_blocks = Gauge(
            f"{ns}_consecutive_missed_blocks",
            "Number of consecutive missed blocks per validator",
            ["validator"],
            registry=self.registry,
        )
        self.missed_blocks = Counter(
            f"{ns}_missed_blocks",
            "Number of missed blocks per validator since start",
            ["validator"],
            registry=self.registry,
        )

        # Validator set and staking
        self.validator_status = Gauge(
            f"{ns}_status",
            "Validator status (1=active, 0=inactive)",
            ["validator", "address"],
            registry=self.registry,
        )
        self.active_set = Gauge(
            f"{ns}_active_set",
            "Number of validators in the active set",
            registry=self.registry,
        )
        self.is_bonded = Gauge(
            f"{ns}_is_bonded",
            "Set to 1 if the validator is bonded",
            ["validator"],
            registry=self.registry,
        )
        self.is_jailed = Gauge(
            f"{ns}_is_jailed",
            "Set to 1 if the validator is jailed",
            ["validator"],
            registry=self.registry,
        )
        self.tokens = Gauge(
            f"{ns}_tokens",
            "Number of staked tokens per validator",
            ["validator"],
            registry=self.registry,
        )
        self.commission = Gauge(
            f"{ns}_commission",
            "Commission rate of the validator",
            ["validator"],
            registry=self.registry,
        )

        # Mempool
        self.mempool_size = Gauge(
            f"{ns}_mempool_size",
            "Current size of the mempool in transactions",
            registry=self.registry,
        )
        self.mempool_total = Gauge(
            f"{ns}_mempool_total",
            "Total number of transactions in the mempool",
            registry=self.registry,
        )
        self.mempool_total_bytes = Gauge(
            f"{ns}_mempool_total_bytes",
            "Total size of transactions in the mempool in bytes",
            registry=self.registry,
        )

        self._signed_heights: Dict[int, Set[str]] = {}

        logger.info(f"MetricStore initialized (namespace={namespace}, chain_id={chain_id})")

    # Writers

    def set_block_height(self, height: int):
        self.block_height.set(height)

    def set_signed(self, label: str, height: int, signed: bool):
        """Record the signed flag for a validator at a height, plus its missed complement"""
        self.beacon_block_signed.labels(validator=label, block_height=str(height)).set(1 if signed else 0)
        self.cometbft_missed_blocks.labels(validator=label, chain_id=self.chain_id).set(0 if signed else 1)
        self._signed_heights.setdefault(height, set()).add(label)

    def forget_height(self, height: int):
        """Drop the per-height signing series of a height that left the processed cache"""
        for label in self._signed_heights.pop(height, ()):
            try:
                self.beacon_block_signed.remove(label, str(height))
            except KeyError:
                pass

    def record_rpc_error(self, endpoint: str):
        self.rpc_errors.labels(endpoint=endpoint).inc()

    # Readers

    def serialize(self) -> bytes:
        """Serialize the whole registry in Prometheus text exposition format"""
        return generate_latest(self.registry)

    def sample_names(self) -> Set[str]:
        """Names of every sample currently exposed by the registry"""
        names = set()
        for family in self.registry.collect():
            for sample in family.samples:
                names.add(sample.name)
        return names

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """
        Get the current value of a sample

        Args:
            name: Full sample name (counters carry their _total suffix)
            labels: Label set of the sample

        Returns:
            Current value, or None if the sample does not exist
        """
        return self.registry.get_sample_value(name, labels or {})

    @property
    def signed_heights(self) -> Set[int]:
        """Heights that currently have signing series in the store"""
        return set(self._signed_heights)

    def __repr__(self) -> str:
        return f"MetricStore(namespace={self.namespace}, heights={len(self._signed_heights)})"

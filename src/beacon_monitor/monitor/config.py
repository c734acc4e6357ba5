#!/usr/bin/env python3
"""
Configuration for the Beacon Validator Monitor

Loaded once at startup from environment variables (and an optional .env
file). Nothing here changes for the lifetime of the process.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from beacon_monitor.monitor.metric_store import DEFAULT_CHAIN_ID, DEFAULT_NAMESPACE


# Runtime families the local registry already exposes
RUNTIME_METRIC_PREFIXES = ["cosmos_validator_", "go_", "process_", "python_"]


class TrackedValidator:
    """A validator whose signing status is tracked (address -> label)"""

    __slots__ = ("address", "label")

    def __init__(self, address: str, label: str):
        self.address = address.strip().upper()
        self.label = label.strip()

    def __eq__(self, other) -> bool:
        if not isinstance(other, TrackedValidator):
            return NotImplemented
        return self.address == other.address and self.label == other.label

    def __hash__(self) -> int:
        return hash((self.address, self.label))

    def __repr__(self) -> str:
        return f"TrackedValidator({self.label}={self.address})"


def parse_tracked_validators(value: Optional[str]) -> List[TrackedValidator]:
    """
    Parse a TRACKED_VALIDATORS string

    Format: "ADDRESS=label,ADDRESS2=label2" (whitespace and newlines allowed
    between entries)

    Raises:
        ValueError: If an entry is missing its address or label, or an
            address is listed twice
    """
    validators: List[TrackedValidator] = []
    if not value:
        return validators

    seen = set()
    for entry in value.replace("\n", ",").split(","):
        entry = entry.strip()
        if not entry:
            continue

        address, sep, label = entry.partition("=")
        if not sep or not address.strip() or not label.strip():
            raise ValueError(f"Invalid TRACKED_VALIDATORS entry {entry!r}, expected ADDRESS=label")

        validator = TrackedValidator(address, label)
        if validator.address in seen:
            raise ValueError(f"Validator address {validator.address} listed twice in TRACKED_VALIDATORS")
        seen.add(validator.address)
        validators.append(validator)

    return validators


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_env_file(env_path: Optional[Path] = None) -> Optional[Path]:
    """
    Load a .env file (default: working directory) if it exists

    Runs before logging is configured, so the caller reports the result.

    Returns:
        The path that was loaded, or None if there was no file
    """
    env_path = env_path or Path.cwd() / '.env'
    if not env_path.exists():
        return None
    load_dotenv(env_path)
    return env_path


class MonitorConfig:
    """Configuration loaded from environment variables"""

    def __init__(self):
        # Chain node
        self.rpc_endpoint = os.getenv('RPC_ENDPOINT', 'http://localhost:26657')
        self.api_endpoint = os.getenv('API_ENDPOINT') or self.rpc_endpoint

        # Upstream metrics feeds
        self.node_exporter_url = os.getenv('NODE_EXPORTER_URL', 'http://localhost:9100/metrics')
        self.chain_node_metrics_url = (
            os.getenv('CHAIN_NODE_METRICS_URL')
            or os.getenv('OG_NODE_METRICS_URL')
            or 'http://localhost:26660/metrics'
        )

        # Tracked validators (address -> label)
        self.validators = parse_tracked_validators(os.getenv('TRACKED_VALIDATORS'))

        # Metric naming
        self.metric_namespace = os.getenv('METRIC_NAMESPACE', DEFAULT_NAMESPACE)
        self.chain_id = os.getenv('CHAIN_ID', DEFAULT_CHAIN_ID)

        excluded = os.getenv('EXCLUDED_METRIC_PREFIXES')
        if excluded:
            self.excluded_prefixes = [p.strip() for p in excluded.split(',') if p.strip()]
        else:
            self.excluded_prefixes = [f"{self.metric_namespace}_"] + RUNTIME_METRIC_PREFIXES

        # Timing
        self.poll_interval = _get_float('POLL_INTERVAL', 5.0)
        self.rpc_timeout = _get_float('RPC_TIMEOUT', 10.0)
        self.system_feed_timeout = _get_float('SYSTEM_FEED_TIMEOUT', 10.0)
        self.chain_feed_timeout = _get_float('CHAIN_FEED_TIMEOUT', 15.0)
        if self.poll_interval <= 0:
            raise ValueError(f"POLL_INTERVAL must be positive, got {self.poll_interval}")

        # HTTP listener
        self.host = os.getenv('EXPORTER_HOST', '0.0.0.0')
        self.port = int(_get_float('EXPORTER_PORT', 8080))

        # Logging
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')

    def __repr__(self):
        return (
            f"MonitorConfig(\n"
            f"  rpc={self.rpc_endpoint}\n"
            f"  api={self.api_endpoint}\n"
            f"  node_exporter={self.node_exporter_url}\n"
            f"  chain_node_metrics={self.chain_node_metrics_url}\n"
            f"  validators={self.validators}\n"
            f"  namespace={self.metric_namespace} chain_id={self.chain_id}\n"
            f"  excluded_prefixes={self.excluded_prefixes}\n"
            f"  poll_interval={self.poll_interval}s listen={self.host}:{self.port}\n"
            f"  log_level={self.log_level}\n"
            f")"
        )

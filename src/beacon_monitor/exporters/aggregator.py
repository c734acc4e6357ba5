#!/usr/bin/env python3
"""
Metrics Aggregator

Builds the unified /all-metrics response from three sources:
1. Local metric store (unfiltered)
2. System metrics feed, e.g. node_exporter (verbatim)
3. Chain node metrics feed (filtered to drop families sources 1 and 2 already expose)

Upstream feeds are fetched fresh on every scrape; a failed feed is replaced
by an explanatory comment instead of failing the request.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

import httpx

from beacon_monitor.monitor.metric_store import MetricStore


logger = logging.getLogger(__name__)


SYSTEM_SECTION = "Node Exporter Metrics"
CHAIN_SECTION = "Chain Node Metrics (CometBFT)"


def metric_name(line: str) -> str:
    """Extract the metric name of an exposition data line"""
    end = len(line)
    for sep in ("{", " ", "\t"):
        idx = line.find(sep)
        if idx != -1 and idx < end:
            end = idx
    return line[:end]


def sample_names(text: str) -> Set[str]:
    """Names of all data lines in an exposition text"""
    names = set()
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            names.add(metric_name(line))
    return names


def filter_chain_metrics(
    text: str,
    excluded_prefixes: Iterable[str],
    excluded_names: Optional[Set[str]] = None
) -> List[str]:
    """
    Filter the chain node feed

    Comment lines (HELP/TYPE) are always kept. Data lines are dropped when
    their metric name is already exposed by another source or starts with
    an excluded prefix. Blank lines are dropped.

    Args:
        text: Raw chain node exposition text
        excluded_prefixes: Metric name prefixes owned by other sources
        excluded_names: Exact sample names owned by other sources

    Returns:
        Kept lines, stripped, without trailing newlines
    """
    prefixes = tuple(p for p in excluded_prefixes if p)
    excluded_names = excluded_names or set()

    kept = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            kept.append(line)
            continue

        name = metric_name(line)
        if name in excluded_names or (prefixes and name.startswith(prefixes)):
            continue
        kept.append(line)

    return kept


def unavailable_section(section: str, error: str) -> str:
    return f"\n# {section} - UNAVAILABLE\n# Error: {error}\n"


class MetricsAggregator:
    """
    Merges local, system and chain node metrics into one exposition text

    Usage:
        aggregator = MetricsAggregator(store, node_exporter_url, chain_node_url)
        await aggregator.start()
        body = await aggregator.render()
        await aggregator.close()
    """

    def __init__(
        self,
        metric_store: MetricStore,
        node_exporter_url: str,
        chain_node_metrics_url: str,
        excluded_prefixes: Optional[List[str]] = None,
        system_timeout: float = 10.0,
        chain_timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize aggregator

        Args:
            metric_store: Local metric store
            node_exporter_url: System metrics feed URL
            chain_node_metrics_url: Chain node metrics feed URL
            excluded_prefixes: Prefixes dropped from the chain feed
                (default: the store namespace)
            system_timeout: System feed timeout in seconds (default: 10)
            chain_timeout: Chain feed timeout in seconds (default: 15)
            transport: Optional httpx transport (used by tests)
        """
        self.metric_store = metric_store
        self.node_exporter_url = node_exporter_url
        self.chain_node_metrics_url = chain_node_metrics_url
        self.excluded_prefixes = (
            excluded_prefixes if excluded_prefixes is not None
            else [f"{metric_store.namespace}_"]
        )
        self.system_timeout = system_timeout
        self.chain_timeout = chain_timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            f"MetricsAggregator initialized: system={node_exporter_url}, "
            f"chain={chain_node_metrics_url}, excluded_prefixes={self.excluded_prefixes}"
        )

    async def start(self):
        """Start the HTTP client session"""
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)

    async def close(self):
        """Close the HTTP client session"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_feed(self, url: str, timeout: float) -> Tuple[Optional[str], Optional[str]]:
        """
        Fetch an upstream exposition feed

        Returns:
            (text, None) on success, (None, reason) on failure
        """
        if not self._client:
            await self.start()

        try:
            response = await self._client.get(url, timeout=timeout)
            response.raise_for_status()
            return response.text, None

        except httpx.TimeoutException:
            return None, f"Timed out after {timeout}s fetching {url}"
        except httpx.HTTPStatusError as e:
            return None, f"HTTP {e.response.status_code} from {url}"
        except httpx.HTTPError as e:
            return None, f"Unable to connect to {url}: {e.__class__.__name__}"

    async def render(self) -> str:
        """Build the merged exposition text for one scrape"""
        parts = []

        # 1. Local metrics
        try:
            local_text = self.metric_store.serialize().decode("utf-8")
            excluded_names = self.metric_store.sample_names()
        except Exception as e:
            logger.error(f"Failed to serialize local metrics: {e}", exc_info=True)
            excluded_names = set()
            parts.append(unavailable_section("Local Metrics", str(e)))
        else:
            parts.append(local_text)

        # 2. System metrics, verbatim
        system_text, error = await self.fetch_feed(self.node_exporter_url, self.system_timeout)
        if system_text is not None:
            parts.append(f"\n# {SYSTEM_SECTION}\n")
            parts.append(system_text)
            if not system_text.endswith("\n"):
                parts.append("\n")
            excluded_names |= sample_names(system_text)
        else:
            logger.warning(f"Failed to fetch node exporter metrics: {error}")
            parts.append(unavailable_section(SYSTEM_SECTION, error))

        # 3. Chain node metrics, deduplicated
        chain_text, error = await self.fetch_feed(self.chain_node_metrics_url, self.chain_timeout)
        if chain_text is not None:
            lines = filter_chain_metrics(chain_text, self.excluded_prefixes, excluded_names)
            parts.append(f"\n# {CHAIN_SECTION}\n")
            if lines:
                parts.append("\n".join(lines) + "\n")
            logger.debug(f"Chain node metrics: kept {len(lines)} lines")
        else:
            logger.warning(f"Failed to fetch chain node metrics: {error}")
            parts.append(unavailable_section(CHAIN_SECTION, error))

        return "".join(parts)

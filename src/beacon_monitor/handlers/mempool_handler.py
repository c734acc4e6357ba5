#!/usr/bin/env python3
"""
Mempool Handler

Publishes mempool size from the node's unconfirmed-txs endpoint. Nodes that
do not expose it get an estimate derived from the latest block's
transactions instead.
"""

import logging
from typing import Dict, Optional

from beacon_monitor.clients.rpc_client import Block, CometRPCClient
from beacon_monitor.monitor.metric_store import MetricStore

logger = logging.getLogger(__name__)


class MempoolHandler:
    """
    Handles mempool metrics

    Metrics:
    - <ns>_mempool_size: Transactions currently in the mempool
    - <ns>_mempool_total: Total transactions reported by the node
    - <ns>_mempool_total_bytes: Total size of mempool transactions in bytes
    """

    def __init__(self, rpc_client: CometRPCClient, metric_store: MetricStore):
        self.rpc_client = rpc_client
        self.metric_store = metric_store

        self._mempool_unavailable_logged = False

    async def update(self, block: Optional[Block] = None) -> Optional[Dict[str, int]]:
        """
        Update mempool metrics

        Args:
            block: Latest processed block, used for the estimate when the
                mempool endpoint is unavailable

        Returns:
            The values written, or None if nothing could be determined
        """
        mempool = await self.rpc_client.get_mempool()

        if mempool is not None:
            self._mempool_unavailable_logged = False
            values = {
                "size": mempool["n_txs"],
                "total": mempool["total"],
                "total_bytes": mempool["total_bytes"],
            }
        elif block is not None:
            if not self._mempool_unavailable_logged:
                logger.warning("Mempool endpoint unavailable - estimating from latest block transactions")
                self._mempool_unavailable_logged = True

            # Transactions just included approximate what was pending
            values = {
                "size": len(block.tx_sizes),
                "total": len(block.tx_sizes),
                "total_bytes": sum(block.tx_sizes),
            }
        else:
            logger.warning("Mempool endpoint unavailable and no block to estimate from")
            return None

        self.metric_store.mempool_size.set(values["size"])
        self.metric_store.mempool_total.set(values["total"])
        self.metric_store.mempool_total_bytes.set(values["total_bytes"])

        logger.debug(
            f"Updated mempool metrics - Size: {values['size']}, Total: {values['total']}, "
            f"TotalBytes: {values['total_bytes']}"
        )
        return values

#!/usr/bin/env python3
"""
CometBFT RPC Client for the Beacon Validator Monitor

Async HTTP client for the chain node's block, validator-set, staking and
mempool endpoints. Every call is bounded by a timeout; failures and
malformed responses are logged and returned as None so callers can skip
the affected update.
"""

import base64
import binascii
import logging
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from beacon_monitor.monitor.metric_store import MetricStore

logger = logging.getLogger(__name__)


# Decode failures are treated like unreachable upstreams
DECODE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


class Block:
    """
    A block as seen by the tracker

    Attributes:
        height: Block height
        signatures: (validator_address, signature_present) pairs from last_commit
        tx_sizes: Decoded byte size of each transaction in the block
    """

    def __init__(
        self,
        height: int,
        signatures: List[Tuple[str, bool]],
        tx_sizes: Optional[List[int]] = None
    ):
        self.height = height
        self.signatures = signatures
        self.tx_sizes = tx_sizes or []

    def signed_addresses(self) -> set:
        """Upper-cased addresses whose commit signature is non-empty"""
        return {address.upper() for address, present in self.signatures if present}

    def __repr__(self) -> str:
        return f"Block(height={self.height}, signatures={len(self.signatures)}, txs={len(self.tx_sizes)})"


def parse_block(data: Dict) -> Block:
    """
    Parse a /block RPC response

    Expected response format:
    {
        "result": {
            "block": {
                "header": {"height": "1234"},
                "data": {"txs": ["base64..."]},
                "last_commit": {
                    "signatures": [
                        {"validator_address": "21F5...", "signature": "base64..."}
                    ]
                }
            }
        }
    }

    Raises:
        KeyError, TypeError, ValueError: If the response is malformed
    """
    block = data["result"]["block"]
    height = int(block["header"]["height"])

    signatures = []
    for sig in (block.get("last_commit") or {}).get("signatures") or []:
        address = sig.get("validator_address") or ""
        signatures.append((address, bool(sig.get("signature"))))

    tx_sizes = []
    for tx in (block.get("data") or {}).get("txs") or []:
        try:
            tx_sizes.append(len(base64.b64decode(tx)))
        except (binascii.Error, TypeError):
            tx_sizes.append(len(tx))

    return Block(height, signatures, tx_sizes)


class CometRPCClient:
    """
    Async client for a CometBFT RPC endpoint (plus the Cosmos REST staking query)

    Usage:
        client = CometRPCClient(rpc_url="http://localhost:26657")
        await client.start()

        block = await client.get_block()          # latest
        previous = await client.get_block(1233)   # by height

        await client.close()
    """

    def __init__(
        self,
        rpc_url: str = "http://localhost:26657",
        api_url: Optional[str] = None,
        timeout: float = 10.0,
        metric_store: Optional['MetricStore'] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize RPC client

        Args:
            rpc_url: CometBFT RPC base URL
            api_url: Cosmos REST base URL for staking queries (default: rpc_url)
            timeout: HTTP request timeout in seconds (default: 10.0)
            metric_store: Optional store used to count RPC errors
            transport: Optional httpx transport (used by tests)
        """
        self.rpc_url = rpc_url.rstrip('/')
        self.api_url = (api_url or rpc_url).rstrip('/')
        self.timeout = timeout
        self.metric_store = metric_store
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"RPC client initialized: rpc={self.rpc_url}, api={self.api_url}, timeout={timeout}s")

    async def start(self):
        """Start the HTTP client session"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.info("RPC HTTP client started")

    async def close(self):
        """Close the HTTP client session"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("RPC HTTP client closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_json(
        self,
        endpoint: str,
        url: str,
        params: Optional[Dict] = None,
        expected_missing: bool = False
    ) -> Optional[Dict]:
        """
        GET a JSON document, returning None on any transport, status or decode error

        Args:
            endpoint: Short endpoint name used in logs and the error counter
            url: Full request URL
            params: Optional query parameters
            expected_missing: Treat HTTP 404 as "endpoint not served" (debug log, not counted as an error)
        """
        if not self._client:
            await self.start()

        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected JSON object, got {type(data).__name__}")
            return data

        except httpx.TimeoutException:
            logger.warning(f"RPC {endpoint} request timed out after {self.timeout}s ({url})")
        except httpx.HTTPStatusError as e:
            if expected_missing and e.response.status_code == 404:
                logger.debug(f"RPC {endpoint} not served by this node ({url})")
                return None
            logger.warning(f"RPC {endpoint} returned HTTP {e.response.status_code} ({url})")
        except httpx.HTTPError as e:
            logger.warning(f"RPC {endpoint} request failed: {e} ({url})")
        except ValueError as e:
            logger.warning(f"RPC {endpoint} returned malformed JSON: {e}")

        self._record_error(endpoint)
        return None

    def _record_error(self, endpoint: str):
        if self.metric_store is not None:
            self.metric_store.record_rpc_error(endpoint)

    async def get_block(self, height: int = 0) -> Optional[Block]:
        """
        Fetch a block

        Args:
            height: Block height, 0 for the latest block

        Returns:
            Parsed Block or None on error
        """
        params = {"height": str(height)} if height > 0 else None
        logger.debug(f"Fetching block {height or 'latest'} from {self.rpc_url}/block")

        data = await self._get_json("block", f"{self.rpc_url}/block", params=params)
        if data is None:
            return None

        try:
            return parse_block(data)
        except DECODE_ERRORS as e:
            logger.warning(f"Malformed block response for height {height or 'latest'}: {e!r}")
            self._record_error("block")
            return None

    async def get_validator_set(self) -> Optional[List[str]]:
        """
        Fetch the current validator set

        Returns:
            List of upper-cased validator addresses, or None on error
        """
        data = await self._get_json("validators", f"{self.rpc_url}/validators")
        if data is None:
            return None

        try:
            validators = data.get("result", data)["validators"]
            return [v["address"].upper() for v in validators]
        except DECODE_ERRORS as e:
            logger.warning(f"Malformed validators response: {e!r}")
            self._record_error("validators")
            return None

    async def get_staking_validators(self) -> Optional[List[Dict]]:
        """
        Fetch staking validators from the Cosmos REST API

        Returns:
            Raw list of validator dicts, or None on error
        """
        data = await self._get_json(
            "staking_validators",
            f"{self.api_url}/cosmos/staking/v1beta1/validators"
        )
        if data is None:
            return None

        validators = data.get("validators")
        if not isinstance(validators, list):
            logger.warning("Malformed staking validators response: missing validators list")
            self._record_error("staking_validators")
            return None

        return validators

    async def get_mempool(self) -> Optional[Dict[str, int]]:
        """
        Fetch mempool status

        Returns:
            Dict with n_txs, total and total_bytes, or None on error
        """
        # Not every chain serves a mempool API
        data = await self._get_json(
            "mempool", f"{self.rpc_url}/num_unconfirmed_txs", expected_missing=True
        )
        if data is None:
            return None

        try:
            result = data["result"]
            return {
                "n_txs": int(result["n_txs"]),
                "total": int(result["total"]),
                "total_bytes": int(result["total_bytes"]),
            }
        except DECODE_ERRORS as e:
            logger.warning(f"Malformed mempool response: {e!r}")
            self._record_error("mempool")
            return None

    def __repr__(self) -> str:
        return f"CometRPCClient(rpc={self.rpc_url}, api={self.api_url})"

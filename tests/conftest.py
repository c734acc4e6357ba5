"""
Shared fixtures: a fake CometBFT node served through httpx.MockTransport.
"""

import base64
from typing import Dict, List, Optional

import httpx
import pytest

from beacon_monitor.clients.rpc_client import CometRPCClient
from beacon_monitor.monitor.config import TrackedValidator
from beacon_monitor.monitor.metric_store import MetricStore


VAL_A = "21F5C524FCA565DD50841FF4B92A7220AA5B0BDD"
VAL_B = "A1B2C3D4E5F60718293A4B5C6D7E8F9011223344"


def block_json(height: int, signers: Optional[Dict[str, str]] = None, txs: Optional[List[bytes]] = None) -> Dict:
    """CometBFT /block response with the given last_commit signatures"""
    signers = signers or {}
    return {
        "jsonrpc": "2.0",
        "id": -1,
        "result": {
            "block": {
                "header": {"height": str(height)},
                "data": {"txs": [base64.b64encode(tx).decode() for tx in (txs or [])]},
                "last_commit": {
                    "height": str(height - 1),
                    "signatures": [
                        {"block_id_flag": 2 if sig else 1, "validator_address": addr, "signature": sig}
                        for addr, sig in signers.items()
                    ],
                },
            }
        },
    }


class FakeChainNode:
    """
    In-memory chain node

    blocks maps height -> signers ({address: signature or ""}).
    Set latest_height to move the chain; put endpoint names in `failing`
    to make them return HTTP 500.
    """

    def __init__(self):
        self.latest_height = 1
        self.blocks: Dict[int, Dict[str, str]] = {}
        self.txs: Dict[int, List[bytes]] = {}
        self.validator_set: List[str] = []
        self.staking: List[Dict] = []
        self.mempool: Optional[Dict] = {"n_txs": "3", "total": "3", "total_bytes": "512"}
        self.failing = set()
        self.requests: List[httpx.Request] = []

    def block_requests(self) -> List[Optional[str]]:
        """Height params of /block requests (None = latest)"""
        return [r.url.params.get("height") for r in self.requests if r.url.path == "/block"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/block":
            if "block" in self.failing:
                return httpx.Response(500, text="internal error")
            height = int(request.url.params.get("height", self.latest_height))
            return httpx.Response(
                200, json=block_json(height, self.blocks.get(height, {}), self.txs.get(height))
            )

        if path == "/validators":
            if "validators" in self.failing:
                return httpx.Response(500)
            return httpx.Response(200, json={
                "result": {"validators": [{"address": a, "voting_power": "10"} for a in self.validator_set]}
            })

        if path == "/cosmos/staking/v1beta1/validators":
            if "staking" in self.failing:
                return httpx.Response(500)
            return httpx.Response(200, json={"validators": self.staking})

        if path == "/num_unconfirmed_txs":
            if "mempool" in self.failing or self.mempool is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json={"result": self.mempool})

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def validators():
    return [TrackedValidator(VAL_A, "validator1"), TrackedValidator(VAL_B, "validator2")]


@pytest.fixture
def store():
    return MetricStore(runtime_collectors=False)


@pytest.fixture
def chain():
    return FakeChainNode()


@pytest.fixture
async def rpc_client(chain, store):
    client = CometRPCClient(
        rpc_url="http://node:26657",
        metric_store=store,
        transport=chain.transport()
    )
    await client.start()
    yield client
    await client.close()

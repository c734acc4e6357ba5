"""
Unit tests for the CometBFT RPC client.
"""

import httpx
import pytest

from beacon_monitor.clients.rpc_client import CometRPCClient, parse_block

from conftest import VAL_A, VAL_B, block_json


NS = "og_galileo_validator"


def make_client(handler, store=None):
    return CometRPCClient(
        rpc_url="http://node:26657/",
        metric_store=store,
        transport=httpx.MockTransport(handler)
    )


class TestParseBlock:
    """Test cases for parse_block."""

    def test_parse_signatures_and_txs(self):
        block = parse_block(block_json(12, {VAL_A: "c2ln", VAL_B: ""}, txs=[b"abc", b"hello"]))

        assert block.height == 12
        assert block.signed_addresses() == {VAL_A}
        assert block.tx_sizes == [3, 5]

    def test_null_signatures(self):
        data = block_json(3)
        data["result"]["block"]["last_commit"]["signatures"] = None

        assert parse_block(data).signatures == []

    def test_missing_header_raises(self):
        with pytest.raises(KeyError):
            parse_block({"result": {"block": {}}})


class TestCometRPCClient:
    """Test cases for CometRPCClient."""

    async def test_latest_block_has_no_height_param(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=block_json(77))

        async with make_client(handler) as client:
            block = await client.get_block()

        assert block.height == 77
        assert seen[0].path == "/block"
        assert "height" not in seen[0].params

    async def test_block_by_height(self):
        def handler(request):
            return httpx.Response(200, json=block_json(int(request.url.params["height"])))

        async with make_client(handler) as client:
            block = await client.get_block(41)

        assert block.height == 41

    async def test_malformed_json_returns_none(self, store):
        async with make_client(lambda r: httpx.Response(200, text="<html>"), store) as client:
            assert await client.get_block() is None

        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "block"}) == 1

    async def test_unexpected_shape_returns_none(self, store):
        async with make_client(lambda r: httpx.Response(200, json={"result": {}}), store) as client:
            assert await client.get_block() is None
            assert await client.get_validator_set() is None
            assert await client.get_mempool() is None
            assert await client.get_staking_validators() is None

    async def test_connection_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        async with make_client(handler) as client:
            assert await client.get_block() is None
            assert await client.get_validator_set() is None

    async def test_timeout_returns_none(self, store):
        def handler(request):
            raise httpx.ReadTimeout("slow")

        async with make_client(handler, store) as client:
            assert await client.get_mempool() is None

        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "mempool"}) == 1

    async def test_validator_set_accepts_both_shapes(self):
        payloads = [
            {"result": {"validators": [{"address": VAL_A.lower()}]}},
            {"validators": [{"address": VAL_B}]},
        ]

        async with make_client(lambda r: httpx.Response(200, json=payloads.pop(0))) as client:
            assert await client.get_validator_set() == [VAL_A]
            assert await client.get_validator_set() == [VAL_B]

    async def test_mempool_parsed_as_ints(self):
        payload = {"result": {"n_txs": "4", "total": "9", "total_bytes": "2048"}}

        async with make_client(lambda r: httpx.Response(200, json=payload)) as client:
            assert await client.get_mempool() == {"n_txs": 4, "total": 9, "total_bytes": 2048}

    async def test_mempool_not_served_is_not_an_error(self, store):
        async with make_client(lambda r: httpx.Response(404, text="not found"), store) as client:
            assert await client.get_mempool() is None
            assert await client.get_block() is None

        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "mempool"}) is None
        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "block"}) == 1

    async def test_mempool_server_error_is_counted(self, store):
        async with make_client(lambda r: httpx.Response(503), store) as client:
            assert await client.get_mempool() is None

        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "mempool"}) == 1

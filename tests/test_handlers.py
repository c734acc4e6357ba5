"""
Unit tests for the validator-set, staking and mempool handlers.
"""

import logging

import pytest

from beacon_monitor.clients.rpc_client import Block
from beacon_monitor.handlers.mempool_handler import MempoolHandler
from beacon_monitor.handlers.validator_handler import ValidatorHandler

from conftest import VAL_A, VAL_B


NS = "og_galileo_validator"


class TestValidatorHandler:
    """Test cases for ValidatorHandler."""

    @pytest.fixture
    def handler(self, rpc_client, store, validators):
        return ValidatorHandler(rpc_client, store, validators)

    async def test_status_from_validator_set(self, handler, chain, store):
        chain.validator_set = [VAL_B]

        result = await handler.update_status()

        assert result == {"validator1": False, "validator2": True}
        assert store.get_value(f"{NS}_status", {"validator": "validator2", "address": VAL_B}) == 1
        assert store.get_value(f"{NS}_status", {"validator": "validator1", "address": VAL_A}) == 0

    async def test_status_unavailable_keeps_previous(self, handler, chain, store):
        chain.validator_set = [VAL_A]
        await handler.update_status()

        chain.failing.add("validators")
        assert await handler.update_status() is None
        assert store.get_value(f"{NS}_status", {"validator": "validator1", "address": VAL_A}) == 1

    async def test_staking_matched_by_operator_or_moniker(self, handler, chain, store):
        chain.staking = [
            {
                "operator_address": VAL_A.lower(),
                "status": "BOND_STATUS_BONDED",
                "jailed": False,
                "tokens": "1500000",
                "commission": {"commission_rates": {"rate": "0.050000000000000000"}},
                "description": {"moniker": "someone"},
            },
            {
                "operator_address": "0gvaloper1xyz",
                "status": "BOND_STATUS_UNBONDING",
                "jailed": True,
                "tokens": "not-a-number",
                "description": {"moniker": "validator2"},
            },
            {"operator_address": "0gvaloper1other", "status": "BOND_STATUS_BONDED"},
        ]

        matched = await handler.update_staking()

        assert matched == 2
        assert store.get_value(f"{NS}_active_set") == 3
        assert store.get_value(f"{NS}_is_bonded", {"validator": "validator1"}) == 1
        assert store.get_value(f"{NS}_tokens", {"validator": "validator1"}) == 1500000
        assert store.get_value(f"{NS}_commission", {"validator": "validator1"}) == pytest.approx(0.05)
        assert store.get_value(f"{NS}_is_bonded", {"validator": "validator2"}) == 0
        assert store.get_value(f"{NS}_is_jailed", {"validator": "validator2"}) == 1
        assert store.get_value(f"{NS}_tokens", {"validator": "validator2"}) is None

    async def test_staking_unavailable(self, handler, chain, store):
        chain.failing.add("staking")

        assert await handler.update_staking() is None
        assert store.get_value(f"{NS}_active_set") == 0


class TestMempoolHandler:
    """Test cases for MempoolHandler."""

    @pytest.fixture
    def handler(self, rpc_client, store):
        return MempoolHandler(rpc_client, store)

    async def test_values_from_endpoint(self, handler, chain, store):
        chain.mempool = {"n_txs": "12", "total": "15", "total_bytes": "4096"}

        values = await handler.update()

        assert values == {"size": 12, "total": 15, "total_bytes": 4096}
        assert store.get_value(f"{NS}_mempool_total_bytes") == 4096

    async def test_estimate_from_block_when_endpoint_missing(self, handler, chain, store):
        chain.mempool = None

        values = await handler.update(Block(9, [], tx_sizes=[100, 250]))

        assert values == {"size": 2, "total": 2, "total_bytes": 350}
        assert store.get_value(f"{NS}_mempool_size") == 2

    async def test_nothing_written_without_data(self, handler, chain, store):
        chain.mempool = None
        store.mempool_size.set(7)

        assert await handler.update() is None
        assert store.get_value(f"{NS}_mempool_size") == 7

    async def test_missing_endpoint_warns_once_and_counts_no_errors(self, handler, chain, store, caplog):
        chain.mempool = None

        with caplog.at_level(logging.WARNING):
            for height in range(10, 15):
                await handler.update(Block(height, [], tx_sizes=[64]))

        assert len([r for r in caplog.records if r.levelno >= logging.WARNING]) == 1
        assert store.get_value(f"{NS}_rpc_errors_total", {"endpoint": "mempool"}) is None
        assert store.get_value(f"{NS}_mempool_total_bytes") == 64

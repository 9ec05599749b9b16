"""
Integration tests for confidential_sdk.core.ledger and capability detection.

These tests run against a live ledger RPC endpoint (CONFIDENTIAL_RPC_URL,
devnet by default).

Run:  pytest tests/integration/ -v -m integration
"""

import asyncio

import pytest

from confidential_sdk.config import ConfidentialConfig
from confidential_sdk.core.features import FeatureGateDetector
from confidential_sdk.core.ledger import LedgerClient
from confidential_sdk.errors import LedgerError
from confidential_sdk.transfer.manager import ConfidentialTransferManager


@pytest.fixture(scope="module")
def config():
    return ConfidentialConfig.from_env()


def _run_live(coro):
    try:
        return asyncio.run(coro)
    except LedgerError as e:
        if "timeout" in str(e).lower() or "429" in str(e):
            pytest.skip(f"RPC endpoint unavailable: {e}")
        raise


@pytest.mark.integration
class TestLedgerLive:
    """LedgerClient against the live endpoint."""

    def test_get_slot(self, config):
        async def go():
            async with LedgerClient(config.rpc_url, timeout=30.0) as ledger:
                return await ledger.get_slot()

        slot = _run_live(go())
        assert isinstance(slot, int)
        assert slot > 0

    def test_token_program_account(self, config):
        async def go():
            async with LedgerClient(config.rpc_url, timeout=30.0) as ledger:
                return await ledger.get_account_info(config.token_program)

        info = _run_live(go())
        assert info is not None
        assert info.executable is True


@pytest.mark.integration
class TestCapabilityLive:
    """Feature-gate detection against the live endpoint."""

    def test_feature_gate_status(self, config):
        async def go():
            async with LedgerClient(config.rpc_url, timeout=30.0) as ledger:
                detector = FeatureGateDetector.from_config(ledger, config)
                first = await detector.check_feature_gate(config.zk_feature_id)
                second = await detector.check_feature_gate(config.zk_feature_id)
                return first, second

        first, second = _run_live(go())
        if first.error:
            pytest.skip(f"Feature query failed: {first.error}")
        assert isinstance(first.activated, bool)
        assert second == first
        if first.activated:
            assert first.activation_slot is not None

    def test_manager_availability_matches_detector(self, config):
        async def go():
            async with LedgerClient(config.rpc_url, timeout=30.0) as ledger:
                manager = ConfidentialTransferManager.from_ledger(ledger, config)
                status = await manager.get_zk_program_status()
                return status, await manager.is_zk_program_available()

        status, available = _run_live(go())
        if status.error:
            pytest.skip(f"Feature query failed: {status.error}")
        assert available is status.activated

"""
Tests for main.py
"""
import pytest
from unittest.mock import AsyncMock, patch

from arb_engine import main as main_module
from arb_engine.combo_planner import ComboStep
from arb_engine.config import EngineConfig
from arb_engine.exceptions import ConfigurationError
from arb_engine.jupiter_client import SwapTransaction
from arb_engine.venues import Venue


@pytest.fixture
def jupiter():
    client = AsyncMock()
    client.__aenter__.return_value = client
    return client


@pytest.fixture
def plan_config(sol, usdc):
    return EngineConfig(combo_steps=[
        ComboStep(token_in=sol, token_out=usdc, amount_in="0.5", dex=Venue.ORCA),
        ComboStep(token_out=sol, dex=Venue.RAYDIUM),
    ])


class TestRunPlan:

    @pytest.mark.asyncio
    async def test_no_steps(self):
        assert await main_module.run_plan(EngineConfig()) is False

    @pytest.mark.asyncio
    async def test_plan_without_signer(self, plan_config, jupiter, make_quote, sol, usdc):
        jupiter.get_quote.side_effect = [
            make_quote(sol.mint, usdc.mint, 500_000_000, 75_000_000),
            make_quote(usdc.mint, sol.mint, 75_000_000, 501_000_000),
        ]

        with patch.object(main_module, 'build_jupiter_client', return_value=jupiter):
            assert await main_module.run_plan(plan_config) is True

        jupiter.get_swap_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_plan_with_signer(
        self, plan_config, jupiter, make_quote, sol, usdc, signer_keypair, make_swap_payload
    ):
        plan_config.signer_public_key = str(signer_keypair.pubkey())
        jupiter.get_quote.side_effect = [
            make_quote(sol.mint, usdc.mint, 500_000_000, 75_000_000),
            make_quote(usdc.mint, sol.mint, 75_000_000, 501_000_000),
        ]
        payload = make_swap_payload(signer_keypair)
        jupiter.get_swap_transaction.side_effect = [
            SwapTransaction(step_index=i, swap_transaction=payload, last_valid_block_height=1) for i in range(2)
        ]

        with patch.object(main_module, 'build_jupiter_client', return_value=jupiter):
            assert await main_module.run_plan(plan_config) is True

        assert jupiter.get_swap_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_build_error(self, plan_config, jupiter):
        jupiter.get_quote.return_value = None

        with patch.object(main_module, 'build_jupiter_client', return_value=jupiter):
            assert await main_module.run_plan(plan_config) is False


class TestMain:

    @pytest.mark.asyncio
    async def test_invalid_config(self):
        with patch.object(main_module, 'setup_logging'), \
                patch.object(main_module, 'load_config', side_effect=ConfigurationError("bad")):
            assert await main_module.main('scan') is False

    @pytest.mark.asyncio
    async def test_unknown_mode(self):
        with patch.object(main_module, 'setup_logging'), \
                patch.object(main_module, 'load_config', return_value=EngineConfig()):
            assert await main_module.main('trade') is False

    @pytest.mark.asyncio
    async def test_scan_mode(self):
        with patch.object(main_module, 'setup_logging'), \
                patch.object(main_module, 'load_config', return_value=EngineConfig()), \
                patch.object(main_module, 'run_scan', new=AsyncMock()) as mock_run_scan:
            assert await main_module.main('watch') is True
        mock_run_scan.assert_awaited_once()
        assert mock_run_scan.call_args.kwargs == {"watch": True}


class TestRunPlanErrors:

    @pytest.mark.asyncio
    async def test_invalid_combo_is_logged_failure(self, jupiter, sol):
        config = EngineConfig(combo_steps=[ComboStep(token_out=sol, dex=Venue.ORCA)])

        with patch.object(main_module, 'build_jupiter_client', return_value=jupiter):
            assert await main_module.run_plan(config) is False

        jupiter.get_quote.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_signer_is_logged_failure(self, plan_config, jupiter, make_quote, sol, usdc):
        plan_config.signer_public_key = "not-a-key"
        jupiter.get_quote.side_effect = [
            make_quote(sol.mint, usdc.mint, 500_000_000, 75_000_000),
            make_quote(usdc.mint, sol.mint, 75_000_000, 501_000_000),
        ]

        with patch.object(main_module, 'build_jupiter_client', return_value=jupiter):
            assert await main_module.run_plan(plan_config) is False

        jupiter.get_swap_transaction.assert_not_called()

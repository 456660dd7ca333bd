"""
Pytest configuration and fixtures for arbitrage engine tests.
"""
import base64

import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from arb_engine.jupiter_client import JupiterQuote, RoutePlanStep
from arb_engine.tokens import TokenInfo


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def jup_mint():
    """JUP mint address."""
    return "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


@pytest.fixture
def bonk_mint():
    """BONK mint address."""
    return "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
def sol(sol_mint):
    return TokenInfo(mint=sol_mint, symbol="SOL", decimals=9)


@pytest.fixture
def usdc(usdc_mint):
    return TokenInfo(mint=usdc_mint, symbol="USDC", decimals=6)


@pytest.fixture
def jup(jup_mint):
    return TokenInfo(mint=jup_mint, symbol="JUP", decimals=6)


@pytest.fixture
def bonk(bonk_mint):
    return TokenInfo(mint=bonk_mint, symbol="BONK", decimals=5)


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    return AsyncMock()


@pytest.fixture
def make_quote():
    """Factory for JupiterQuote objects with a single-venue route plan."""
    def _make_quote(input_mint, output_mint, in_amount, out_amount,
                    price_impact_pct=0.1, label="Orca V2", amm_key="pool_key"):
        return JupiterQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=in_amount,
            out_amount=out_amount,
            price_impact_pct=price_impact_pct,
            route_plan=[RoutePlanStep(
                label=label,
                amm_key=amm_key,
                in_amount=in_amount,
                out_amount=out_amount,
                percent=100.0
            )] if label is not None else []
        )
    return _make_quote


@pytest.fixture
def signer_keypair():
    """Keypair standing in for the external wallet."""
    return Keypair()


@pytest.fixture
def make_swap_payload():
    """Factory for base64 serialized v0 transactions paid for by a given keypair."""
    def _make_swap_payload(payer: Keypair) -> str:
        message = MessageV0.try_compile(payer.pubkey(), [], [], Hash.default())
        tx = VersionedTransaction(message, [payer])
        return base64.b64encode(bytes(tx)).decode('utf-8')
    return _make_swap_payload

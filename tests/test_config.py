"""
Tests for config.py
"""
import json
from decimal import Decimal

import pytest

from arb_engine.config import EngineConfig, load_config, validate_config
from arb_engine.exceptions import ConfigurationError
from arb_engine.route_enumerator import is_closed
from arb_engine.tokens import COMMON_TOKENS
from arb_engine.venues import Venue


@pytest.fixture
def write_config(tmp_path):
    def _write_config(data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        return path
    return _write_config


class TestLoadConfig:

    def test_defaults_without_files(self, tmp_path):
        config = load_config(config_path=tmp_path / "missing.json", environ={})

        assert config.tokens == COMMON_TOKENS
        assert config.max_tokens == 4
        assert config.min_profit_percentage == 0.1
        assert config.min_profit_usd == 10.0
        assert config.slippage_bps == 50
        assert config.max_concurrency == 1
        assert config.start_amount == Decimal(1)
        assert config.price_fallback_usd == 1.0
        assert config.cycles == []
        assert config.combo_steps == []
        assert config.signer_public_key is None

    def test_env_overrides_file(self, write_config):
        path = write_config({"arbitrage": {"min_profit_percentage": 0.2, "min_profit_usd": 5}})

        config = load_config(config_path=path, environ={"MIN_PROFIT_PERCENTAGE": "0.3"})

        assert config.min_profit_percentage == 0.3
        assert config.min_profit_usd == 5.0

    def test_blank_env_falls_back_to_file(self, write_config):
        path = write_config({"arbitrage": {"max_tokens": 3}})

        config = load_config(config_path=path, environ={"MAX_TOKENS": "  "})

        assert config.max_tokens == 3

    @pytest.mark.parametrize("name,value", [
        ("MIN_PROFIT_USD", "ten"),
        ("SLIPPAGE_BPS", "0.5"),
        ("MAX_TOKENS", "-1"),
        ("START_AMOUNT", "abc"),
        ("SLIPPAGE_BPS", "0"),
        ("MAX_CONCURRENCY", "0"),
        ("QUOTE_TIMEOUT", "0"),
    ])
    def test_malformed_values_rejected(self, tmp_path, name, value):
        with pytest.raises(ConfigurationError):
            load_config(config_path=tmp_path / "missing.json", environ={name: value})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={})

    def test_price_fallback_can_be_disabled(self, tmp_path):
        config = load_config(config_path=tmp_path / "missing.json", environ={"PRICE_FALLBACK_USD": "off"})
        assert config.price_fallback_usd is None

    def test_client_settings_from_env(self, tmp_path):
        config = load_config(config_path=tmp_path / "missing.json", environ={
            "JUPITER_API_KEY": "key",
            "JUPITER_REQUESTS_PER_SECOND": "2",
            "JUPITER_MAX_RETRIES_ON_429": "3",
            "SIGNER_PUBLIC_KEY": "So11111111111111111111111111111111111111112",
            "ENFORCE_VENUE_HINTS": "true",
        })

        assert config.jupiter_api_key == "key"
        assert config.requests_per_second == 2.0
        assert config.max_retries_on_429 == 3
        assert config.signer_public_key == "So11111111111111111111111111111111111111112"
        assert config.enforce_venue_hints is True

    def test_custom_tokens(self, write_config, sol_mint, usdc_mint):
        path = write_config({"tokens": [
            {"mint": usdc_mint, "symbol": "USDC", "decimals": 6},
            {"mint": sol_mint, "symbol": "SOL", "decimals": 9},
        ]})

        config = load_config(config_path=path, environ={})

        assert [t.symbol for t in config.tokens] == ["USDC", "SOL"]

    def test_token_entry_missing_field(self, write_config, sol_mint):
        path = write_config({"tokens": [{"mint": sol_mint, "symbol": "SOL"}]})

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={})

    def test_cycles_are_closed(self, write_config):
        path = write_config({"arbitrage": {"cycles": [["USDC", "SOL", "JUP"]]}})

        config = load_config(config_path=path, environ={})

        assert len(config.cycles) == 1
        cycle = config.cycles[0]
        assert [hop[0].symbol for hop in cycle] == ["USDC", "SOL", "JUP"]
        assert is_closed(cycle)

    def test_cycle_with_unknown_token(self, write_config):
        path = write_config({"arbitrage": {"cycles": [["USDC", "DOGE"]]}})

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={})

    def test_combo_steps(self, write_config):
        path = write_config({"combo": {"steps": [
            {"token_in": "SOL", "token_out": "USDC", "amount_in": "0.5", "dex": "orca"},
            {"token_out": "JUP", "dex": "Raydium"},
        ]}})

        config = load_config(config_path=path, environ={})

        first, second = config.combo_steps
        assert first.token_in.symbol == "SOL"
        assert first.amount_in == "0.5"
        assert first.dex is Venue.ORCA
        assert second.token_in is None
        assert second.token_out.symbol == "JUP"
        assert second.dex is Venue.RAYDIUM

    def test_combo_step_unknown_venue(self, write_config):
        path = write_config({"combo": {"steps": [
            {"token_in": "SOL", "token_out": "USDC", "amount_in": "1", "dex": "serum"},
        ]}})

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={})


class TestValidateConfig:

    def test_defaults_are_valid(self):
        validate_config(EngineConfig())

    def test_negative_gas(self):
        with pytest.raises(ConfigurationError):
            validate_config(EngineConfig(gas_per_step_sol=-0.1))

    def test_negative_start_amount(self):
        with pytest.raises(ConfigurationError):
            validate_config(EngineConfig(start_amount=Decimal("-1")))


class TestTokenBoundary:

    def test_malformed_mint_rejected(self, write_config, sol_mint):
        path = write_config({"tokens": [
            {"mint": sol_mint, "symbol": "SOL", "decimals": 9},
            {"mint": "not-a-mint", "symbol": "BAD", "decimals": 6},
        ]})

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={})

    def test_start_amount_below_token_precision(self, tmp_path):
        # BONK has 5 decimals and sits fifth in the default list
        with pytest.raises(ConfigurationError):
            load_config(
                config_path=tmp_path / "missing.json",
                environ={"MAX_TOKENS": "5", "START_AMOUNT": "0.000001"}
            )

    def test_start_amount_outside_prefix_is_allowed(self, tmp_path):
        config = load_config(
            config_path=tmp_path / "missing.json",
            environ={"MAX_TOKENS": "4", "START_AMOUNT": "0.000001"}
        )
        assert config.start_amount == Decimal("0.000001")

    def test_start_amount_checked_for_cycle_start(self, write_config):
        path = write_config({"arbitrage": {"max_tokens": 0, "cycles": [["BONK", "SOL"]]}})

        with pytest.raises(ConfigurationError):
            load_config(config_path=path, environ={"START_AMOUNT": "0.000001"})

"""
Tests for tokens.py
"""
from decimal import Decimal

import pytest

from arb_engine.exceptions import ConfigurationError
from arb_engine.tokens import (
    COMMON_TOKENS,
    SOL_MINT,
    TokenInfo,
    find_token,
    from_base_units,
    parse_decimal,
    to_base_units,
)


class TestBaseUnits:

    def test_whole_amount(self):
        assert to_base_units(1, 9) == 1_000_000_000
        assert to_base_units("2.5", 6) == 2_500_000

    def test_float_input_is_exact(self):
        assert to_base_units(0.1, 9) == 100_000_000

    def test_truncates_beyond_precision(self):
        assert to_base_units("1.1234567", 6) == 1_123_456
        assert to_base_units("0.0000001", 6) == 0

    def test_round_trip_within_precision(self):
        for amount in ("0", "1", "0.000001", "123.456789"):
            assert from_base_units(to_base_units(amount, 6), 6) == Decimal(amount)

    def test_from_base_units(self):
        assert from_base_units(1_500_000_000, 9) == Decimal("1.5")
        assert from_base_units(1, 0) == Decimal(1)

    def test_negative_amount_rejected(self):
        with pytest.raises(ConfigurationError):
            to_base_units("-1", 6)

    @pytest.mark.parametrize("value", ["abc", "", "1,5", True, None, "NaN", "Infinity"])
    def test_non_numeric_rejected(self, value):
        with pytest.raises(ConfigurationError):
            parse_decimal(value)

    def test_parse_decimal_strips_whitespace(self):
        assert parse_decimal(" 0.5 ") == Decimal("0.5")

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            to_base_units("nope", 6)


class TestTokenInfo:

    def test_methods_use_own_decimals(self, usdc):
        assert usdc.to_base_units("1.5") == 1_500_000
        assert usdc.from_base_units(1_500_000) == Decimal("1.5")

    def test_is_immutable(self, sol):
        with pytest.raises(AttributeError):
            sol.decimals = 6

    def test_negative_decimals_rejected(self):
        with pytest.raises(ConfigurationError):
            TokenInfo(mint=SOL_MINT, symbol="SOL", decimals=-1)

    def test_empty_mint_rejected(self):
        with pytest.raises(ConfigurationError):
            TokenInfo(mint="", symbol="X", decimals=6)

    def test_common_tokens_order(self):
        assert [t.symbol for t in COMMON_TOKENS[:4]] == ["SOL", "USDC", "USDT", "JUP"]
        assert COMMON_TOKENS[0].decimals == 9


class TestFindToken:

    def test_by_symbol_case_insensitive(self):
        assert find_token(COMMON_TOKENS, "usdc").symbol == "USDC"

    def test_by_mint(self):
        assert find_token(COMMON_TOKENS, SOL_MINT).symbol == "SOL"

    def test_unknown(self):
        assert find_token(COMMON_TOKENS, "DOGE") is None

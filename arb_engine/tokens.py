"""
Static token configuration and base-unit conversion.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Iterable, List, Optional, Union

from .exceptions import ConfigurationError

Number = Union[int, float, str, Decimal]

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
JUP_MINT = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
RAY_MINT = "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R"


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata. Immutable, loaded from static configuration."""
    mint: str
    symbol: str
    decimals: int

    def __post_init__(self):
        if not self.mint:
            raise ConfigurationError("Token mint must not be empty")
        if not isinstance(self.decimals, int) or self.decimals < 0:
            raise ConfigurationError(
                f"Token {self.symbol} decimals must be a non-negative integer, got {self.decimals!r}"
            )

    def to_base_units(self, amount: Number) -> int:
        return to_base_units(amount, self.decimals)

    def from_base_units(self, amount: int) -> Decimal:
        return from_base_units(amount, self.decimals)


# Ordering matters: triangular enumeration only looks at a prefix of this list.
COMMON_TOKENS: List[TokenInfo] = [
    TokenInfo(mint=SOL_MINT, symbol="SOL", decimals=9),
    TokenInfo(mint=USDC_MINT, symbol="USDC", decimals=6),
    TokenInfo(mint=USDT_MINT, symbol="USDT", decimals=6),
    TokenInfo(mint=JUP_MINT, symbol="JUP", decimals=6),
    TokenInfo(mint=BONK_MINT, symbol="BONK", decimals=5),
    TokenInfo(mint=RAY_MINT, symbol="RAY", decimals=6),
]


def parse_decimal(value: Number, field: str = "amount") -> Decimal:
    """Parse a human-entered number; raise ConfigurationError if it is not one."""
    if isinstance(value, bool):
        raise ConfigurationError(f"{field} must be numeric, got {value!r}")
    try:
        parsed = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"{field} must be numeric, got {value!r}")
    if not parsed.is_finite():
        raise ConfigurationError(f"{field} must be finite, got {value!r}")
    return parsed


def to_base_units(amount: Number, decimals: int) -> int:
    """
    Convert a human-readable amount to integer base units (amount * 10^decimals).

    Digits beyond the token's precision are truncated. Negative amounts are
    rejected.
    """
    value = parse_decimal(amount)
    if value < 0:
        raise ConfigurationError(f"amount must not be negative, got {amount!r}")
    return int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int) -> Decimal:
    """Convert integer base units back to a human-readable Decimal."""
    return Decimal(int(amount)).scaleb(-decimals)


def find_token(tokens: Iterable[TokenInfo], key: str) -> Optional[TokenInfo]:
    """Look a token up by symbol (case-insensitive) or by exact mint."""
    key_upper = key.upper()
    for token in tokens:
        if token.mint == key or token.symbol.upper() == key_upper:
            return token
    return None

"""
Venue tags for swap hops.

Jupiter reports the AMM that filled a hop as a free-form label ("Orca V2",
"Whirlpool", "Raydium CLMM", "Meteora DLMM", ...). Labels are mapped onto a
closed set of venues; anything unrecognised is attributed to the aggregator.
"""
from enum import Enum
from typing import Optional, Tuple

from .exceptions import ConfigurationError


class Venue(str, Enum):
    ORCA = "orca"
    RAYDIUM = "raydium"
    METEORA = "meteora"
    JUPITER = "jupiter"  # aggregator fallback

    @property
    def jupiter_labels(self) -> Optional[Tuple[str, ...]]:
        """Jupiter `dexes` filter values for this venue (None = no restriction)."""
        return _JUPITER_LABELS.get(self)

    @classmethod
    def parse(cls, value: str) -> "Venue":
        """Parse a configured venue tag ('orca', 'Raydium', ...)."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown venue {value!r}, expected one of: {', '.join(v.value for v in cls)}"
            )


_JUPITER_LABELS = {
    Venue.ORCA: ("Whirlpool", "Orca V1", "Orca V2"),
    Venue.RAYDIUM: ("Raydium", "Raydium CLMM", "Raydium CP"),
    Venue.METEORA: ("Meteora", "Meteora DLMM"),
}

# Checked in order; 'whirlpool' is Orca's concentrated-liquidity program.
_LABEL_MARKERS = (
    ("orca", Venue.ORCA),
    ("whirlpool", Venue.ORCA),
    ("raydium", Venue.RAYDIUM),
    ("meteora", Venue.METEORA),
)


def venue_from_label(label: Optional[str]) -> Venue:
    """Map a Jupiter AMM label to a venue tag (case-insensitive substring match)."""
    if not label:
        return Venue.JUPITER
    lower_label = label.lower()
    for marker, venue in _LABEL_MARKERS:
        if marker in lower_label:
            return venue
    return Venue.JUPITER

"""
Candidate route generation over a bounded token list.
"""
import logging
from typing import Iterable, List, Sequence, Tuple

from .exceptions import ConfigurationError, ValidationError
from .jupiter_client import validate_mint
from .tokens import TokenInfo, find_token

logger = logging.getLogger(__name__)

Hop = Tuple[TokenInfo, TokenInfo]

DEFAULT_MAX_TOKENS = 4


def enumerate_triangular_routes(
    tokens: Sequence[TokenInfo],
    max_tokens: int = DEFAULT_MAX_TOKENS
) -> List[Hop]:
    """
    Ordered (A, B) pairs, A != B, over the first `max_tokens` tokens.

    Each pair is a loop A -> B -> A. Only the prefix is explored, so the
    number of candidates is O(max_tokens^2) regardless of the list length.
    """
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 0:
        raise ConfigurationError(f"max_tokens must be a non-negative integer, got {max_tokens!r}")

    capped = list(tokens[:max_tokens])
    if len(tokens) > max_tokens:
        logger.debug(f"Triangular scan limited to {max_tokens} of {len(tokens)} tokens")

    pairs = []
    for i, token_a in enumerate(capped):
        for j, token_b in enumerate(capped):
            if i == j or token_a.mint == token_b.mint:
                continue
            pairs.append((token_a, token_b))
    return pairs


def enumerate_chain_routes(chain: Sequence[TokenInfo], close_loop: bool = False) -> List[Hop]:
    """
    Consecutive hops of a user-defined ordered chain.

    [SOL, USDC, JUP] -> [(SOL, USDC), (USDC, JUP)], plus (JUP, SOL) when
    `close_loop` is set and the chain does not already end on its first token.
    """
    if len(chain) < 2:
        raise ValidationError(f"A route needs at least 2 tokens, got {len(chain)}")

    tokens = list(chain)
    if close_loop and tokens[0].mint != tokens[-1].mint:
        tokens.append(tokens[0])

    hops = []
    for index, (from_token, to_token) in enumerate(zip(tokens, tokens[1:])):
        if from_token.mint == to_token.mint:
            raise ValidationError(f"Hop {index} swaps {from_token.symbol} into itself")
        hops.append((from_token, to_token))
    return hops


def resolve_chain(keys: Iterable[str], tokens: Sequence[TokenInfo]) -> List[TokenInfo]:
    """Resolve configured symbols/mints into TokenInfo entries."""
    resolved = []
    for key in keys:
        token = find_token(tokens, key)
        if token is None:
            raise ConfigurationError(f"Unknown token in route: {key!r}")
        validate_mint(token.mint, f"{token.symbol} mint")
        resolved.append(token)
    return resolved


def is_closed(hops: Sequence[Hop]) -> bool:
    """True if the hops form a contiguous loop back to the starting token."""
    if len(hops) < 2:
        return False
    for (_, to_token), (from_token, _) in zip(hops, hops[1:]):
        if to_token.mint != from_token.mint:
            return False
    return hops[0][0].mint == hops[-1][1].mint

"""
Arbitrage opportunity finder.

Evaluates closed loops (A -> B -> A, or longer configured cycles) by chaining
Jupiter quotes: each hop is quoted with the exact output of the previous one.
A missing quote only drops that candidate; the scan carries on.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .exceptions import ArbEngineError, ConfigurationError, ValidationError
from .jupiter_client import JupiterClient, JupiterQuote, validate_mint
from .route_enumerator import (
    DEFAULT_MAX_TOKENS,
    Hop,
    enumerate_triangular_routes,
    is_closed,
)
from .tokens import TokenInfo, from_base_units, parse_decimal, to_base_units
from .utils import format_route, get_terminal_colors
from .venues import Venue, venue_from_label

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass(frozen=True)
class RouteStep:
    """One hop of an opportunity, as filled by the quoted venue."""
    dex: Venue
    from_token: TokenInfo
    to_token: TokenInfo
    pool: str
    expected_output: Decimal  # human units of to_token


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Snapshot of a profitable closed route.

    Never mutated; the next scan produces new opportunities instead of updating
    these. `timestamp` is the only staleness signal.
    """
    id: str
    path: Tuple[RouteStep, ...]
    estimated_profit: float  # USD
    profit_percentage: float
    required_amount: Decimal  # human units of the starting token
    timestamp: float
    quotes: Tuple[JupiterQuote, ...] = ()
    profit_base_units: int = 0
    price_impact_total: float = 0.0
    price_fallback_used: bool = False

    def __post_init__(self):
        if len(self.path) < 2:
            raise ValueError(f"Opportunity path must have at least 2 steps, got {len(self.path)}")
        for prev_step, step in zip(self.path, self.path[1:]):
            if prev_step.to_token != step.from_token:
                raise ValueError(
                    f"Opportunity path is not contiguous: {prev_step.to_token.symbol} != {step.from_token.symbol}"
                )
        if self.path[0].from_token != self.path[-1].to_token:
            raise ValueError("Opportunity path must start and end with the same token")

    @property
    def cycle(self) -> List[str]:
        """Token symbols along the route, first token repeated at the end."""
        return [self.path[0].from_token.symbol] + [step.to_token.symbol for step in self.path]

    @property
    def start_token(self) -> TokenInfo:
        return self.path[0].from_token

    def is_valid(self, min_profit_percentage: float, min_profit_usd: float) -> bool:
        """
        Check if opportunity meets both thresholds.

        The percentage threshold is the evaluator's own filter; the USD
        threshold is the caller-level filter applied after it.
        """
        if self.profit_percentage < min_profit_percentage:
            return False
        if self.estimated_profit < min_profit_usd:
            return False
        return True


class ArbitrageFinder:
    """Finds arbitrage opportunities using Jupiter quotes."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        tokens: Sequence[TokenInfo],
        min_profit_percentage: float = 0.1,
        min_profit_usd: float = 10.0,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        slippage_bps: int = 50,
        quote_timeout: float = 5.0,
        start_amount: Decimal = Decimal(1),
        price_fallback_usd: Optional[float] = 1.0,
        max_concurrency: int = 1,
        cycles: Optional[Sequence[Sequence[Hop]]] = None
    ):
        """
        Args:
            jupiter_client: Quote/price source
            tokens: Token list; only the first `max_tokens` form triangular pairs
            min_profit_percentage: Loops below this are never emitted
            min_profit_usd: Second, independent filter on estimated USD profit
            max_tokens: Triangular enumeration cap
            slippage_bps: Slippage passed to every quote
            quote_timeout: Per-quote timeout in seconds (timeout = skip)
            start_amount: Starting notional in whole units of the loop's first token
            price_fallback_usd: USD price assumed when the price lookup misses;
                None drops such candidates instead
            max_concurrency: Candidates evaluated at once (1 = sequential)
            cycles: Extra user-defined closed routes, as hop lists
        """
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {max_concurrency}")

        self.jupiter = jupiter_client
        self.tokens = list(tokens)
        self.min_profit_percentage = min_profit_percentage
        self.min_profit_usd = min_profit_usd
        self.max_tokens = max_tokens
        self.slippage_bps = slippage_bps
        self.quote_timeout = quote_timeout
        self.start_amount = parse_decimal(start_amount, "start_amount")
        self.price_fallback_usd = price_fallback_usd
        self.max_concurrency = max_concurrency
        self.cycles = [list(hops) for hops in (cycles or [])]

        for hops in self.cycles:
            if not is_closed(hops):
                raise ValidationError(
                    f"Configured cycle is not closed: {format_route(h[0].symbol for h in hops)}"
                )

        self._check_candidates(self.candidate_routes())

    def start_amount_for(self, token: TokenInfo) -> int:
        """Starting notional for a loop, in base units of its first token."""
        return to_base_units(self.start_amount, token.decimals)

    @staticmethod
    def calculate_profit_percentage(amount_in: int, amount_out: int) -> float:
        """Profit relative to the input amount, in percent."""
        if amount_in == 0:
            return 0.0
        return (amount_out - amount_in) * 100 / amount_in

    def _check_candidates(self, candidates: Sequence[Sequence[Hop]]):
        """Reject malformed mints and a notional below token precision before any request."""
        checked = set()
        for hops in candidates:
            start_token = hops[0][0]
            if self.start_amount_for(start_token) == 0:
                raise ConfigurationError(
                    f"start_amount {self.start_amount} is below {start_token.symbol} precision "
                    f"({start_token.decimals} decimals)"
                )
            for from_token, _ in hops:
                if from_token.mint not in checked:
                    validate_mint(from_token.mint, f"{from_token.symbol} mint")
                    checked.add(from_token.mint)

    async def _quote_hop(self, from_token: TokenInfo, to_token: TokenInfo, amount: int) -> Optional[JupiterQuote]:
        try:
            return await asyncio.wait_for(
                self.jupiter.get_quote(
                    from_token.mint,
                    to_token.mint,
                    amount,
                    slippage_bps=self.slippage_bps
                ),
                timeout=self.quote_timeout
            )
        except asyncio.TimeoutError:
            logger.debug(f"Quote timeout: {from_token.symbol} -> {to_token.symbol}")
            return None

    async def _usd_price(
        self,
        token: TokenInfo,
        prices: Optional[Dict[str, float]]
    ) -> Tuple[Optional[float], bool]:
        """Return (price, fallback_used) for a token."""
        if prices is None:
            prices = await self.jupiter.get_price([token.mint])

        price = prices.get(token.mint)
        if price is not None:
            return price, False

        if self.price_fallback_usd is None:
            logger.warning(f"No USD price for {token.symbol}; candidate dropped (price fallback disabled)")
            return None, False

        logger.warning(
            f"No USD price for {token.symbol}; assuming {colors['YELLOW']}${self.price_fallback_usd}{colors['RESET']}, "
            f"estimated profit may be wrong"
        )
        return self.price_fallback_usd, True

    async def evaluate_loop(
        self,
        token_a: TokenInfo,
        token_b: TokenInfo,
        start_amount: int,
        prices: Optional[Dict[str, float]] = None
    ) -> Optional[ArbitrageOpportunity]:
        """
        Evaluate A -> B -> A.

        Args:
            token_a: Starting (and final) token
            token_b: Intermediate token
            start_amount: Starting amount in base units of token_a
            prices: Pre-fetched USD prices (fetched on demand if None)

        Returns:
            ArbitrageOpportunity at or above the percentage threshold, else None
        """
        return await self.evaluate_cycle([(token_a, token_b), (token_b, token_a)], start_amount, prices)

    async def evaluate_cycle(
        self,
        hops: Sequence[Hop],
        start_amount: int,
        prices: Optional[Dict[str, float]] = None
    ) -> Optional[ArbitrageOpportunity]:
        """
        Evaluate a closed route hop by hop.

        Each hop after the first is quoted with the exact outAmount of the
        previous quote. A null or empty quote at any hop skips the candidate.
        """
        if not is_closed(hops):
            raise ValidationError("Route must be a contiguous loop back to its first token")
        if isinstance(start_amount, bool) or not isinstance(start_amount, int) or start_amount <= 0:
            raise ConfigurationError(f"start_amount must be a positive integer of base units, got {start_amount!r}")

        route = format_route([hops[0][0].symbol] + [to_token.symbol for _, to_token in hops])
        quotes: List[JupiterQuote] = []
        current_amount = start_amount

        for i, (from_token, to_token) in enumerate(hops):
            quote = await self._quote_hop(from_token, to_token, current_amount)
            if quote is None or quote.out_amount == 0:
                logger.debug(f"Hop {i + 1} quote unavailable ({from_token.symbol} -> {to_token.symbol}), skipping {route}")
                return None
            quotes.append(quote)
            current_amount = quote.out_amount

        start_token = hops[0][0]
        final_amount = current_amount
        profit = final_amount - start_amount
        profit_percentage = self.calculate_profit_percentage(start_amount, final_amount)

        if profit_percentage < self.min_profit_percentage:
            logger.debug(
                f"Rejected {route}: {profit_percentage:.4f}% < min {self.min_profit_percentage}%"
            )
            return None

        price, fallback_used = await self._usd_price(start_token, prices)
        if price is None:
            return None

        estimated_profit = float(from_base_units(profit, start_token.decimals)) * price

        path = []
        for (from_token, to_token), quote in zip(hops, quotes):
            first_hop = quote.first_hop
            path.append(RouteStep(
                dex=venue_from_label(first_hop.label if first_hop else None),
                from_token=from_token,
                to_token=to_token,
                pool=(first_hop.amm_key if first_hop else '') or 'unknown',
                expected_output=to_token.from_base_units(quote.out_amount)
            ))

        return ArbitrageOpportunity(
            id=uuid.uuid4().hex,
            path=tuple(path),
            estimated_profit=estimated_profit,
            profit_percentage=profit_percentage,
            required_amount=from_base_units(start_amount, start_token.decimals),
            timestamp=time.time(),
            quotes=tuple(quotes),
            profit_base_units=profit,
            price_impact_total=sum(q.price_impact_pct for q in quotes),
            price_fallback_used=fallback_used
        )

    def candidate_routes(self, tokens: Optional[Sequence[TokenInfo]] = None) -> List[List[Hop]]:
        """Triangular pairs over the capped token list, followed by configured cycles."""
        tokens = self.tokens if tokens is None else list(tokens)
        candidates = [
            [(token_a, token_b), (token_b, token_a)]
            for token_a, token_b in enumerate_triangular_routes(tokens, self.max_tokens)
        ]
        candidates.extend(self.cycles)
        return candidates

    async def find_opportunities(
        self,
        tokens: Optional[Sequence[TokenInfo]] = None,
        max_opportunities: Optional[int] = None
    ) -> List[ArbitrageOpportunity]:
        """
        Run one scan pass.

        USD prices for the starting tokens are fetched once. Candidates are
        evaluated concurrently up to `max_concurrency`; the hops inside one
        candidate stay sequential.

        Returns:
            Opportunities passing both thresholds, sorted by estimated USD profit

        Raises:
            ConfigurationError: a candidate token has a malformed mint or start_amount
                rounds to zero for it (checked before any request)
        """
        candidates = self.candidate_routes(tokens)
        if not candidates:
            logger.warning("No candidate routes: token list is empty and no cycles are configured")
            return []

        self._check_candidates(candidates)
        start_mints = [hops[0][0].mint for hops in candidates]
        prices = await self.jupiter.get_price(start_mints)

        logger.info(
            f"{colors['DIM']}Evaluating {len(candidates)} candidate routes "
            f"(concurrency={self.max_concurrency})...{colors['RESET']}"
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def evaluate(hops: List[Hop]) -> Optional[ArbitrageOpportunity]:
            async with semaphore:
                try:
                    return await self.evaluate_cycle(hops, self.start_amount_for(hops[0][0]), prices)
                except ArbEngineError as e:
                    route = format_route([hops[0][0].symbol] + [to_token.symbol for _, to_token in hops])
                    logger.warning(f"Skipping {route}: {e}")
                    return None

        results = await asyncio.gather(*(evaluate(hops) for hops in candidates))

        opportunities = []
        for result in results:
            if result is None:
                continue
            if result.estimated_profit < self.min_profit_usd:
                logger.debug(
                    f"Opportunity rejected: profit_usd={result.estimated_profit:.4f} < "
                    f"min_profit_usd={self.min_profit_usd:.4f} ({format_route(result.cycle)})"
                )
                continue
            opportunities.append(result)

        opportunities.sort(key=lambda opp: opp.estimated_profit, reverse=True)
        if max_opportunities is not None:
            opportunities = opportunities[:max_opportunities]
        return opportunities

"""
Combo planner: chains dependent swap steps into an execution plan.

Step i > 0 always takes its input token and amount from step i-1's quote.
Unlike route scanning, a missing quote here is fatal: a plan is either
complete or not produced at all.
"""
import asyncio
import base64
import logging
import uuid
from dataclasses import dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, List, Optional, Sequence, Tuple, Union

from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .exceptions import BuildError, ComboStateError, ConfigurationError, ValidationError
from .jupiter_client import JupiterClient, JupiterQuote, SwapTransaction
from .tokens import Number, TokenInfo, parse_decimal
from .utils import format_route, get_terminal_colors
from .venues import Venue, venue_from_label

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

# Placeholder network-fee estimate per swap, in SOL. Not a fee simulation.
DEFAULT_GAS_PER_STEP_SOL = 0.005


@dataclass
class ComboStep:
    """
    One user-authored swap in a combo.

    `token_in` and `amount_in` are only read from the first step; later steps
    get both from the previous step's quote.
    """
    token_in: Optional[TokenInfo] = None
    token_out: Optional[TokenInfo] = None
    amount_in: Optional[Number] = None
    dex: Optional[Union[Venue, str]] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


@dataclass(frozen=True)
class ExecutionPlan:
    """Fully resolved combo: one quote per step, in order."""
    total_steps: int
    quotes: Tuple[JupiterQuote, ...]
    estimated_output: Decimal  # human units of output_token
    price_impact: float  # cumulative percent
    estimated_gas: float  # SOL
    amounts_in: Tuple[Decimal, ...]  # human units of each step's input token
    input_token: TokenInfo
    output_token: TokenInfo


def _as_venue(value: Union[Venue, str]) -> Venue:
    return value if isinstance(value, Venue) else Venue.parse(value)


def validate_steps(steps: Sequence[ComboStep]) -> Decimal:
    """
    Check a combo before any request is made.

    Returns:
        The first step's amount_in as a Decimal

    Raises:
        ValidationError: empty combo, missing fields, self-swap
        ConfigurationError: non-numeric or non-positive amount, unknown venue
    """
    if not steps:
        raise ValidationError("Combo has no steps")

    first = steps[0]
    missing = [name for name in ("token_in", "token_out", "amount_in", "dex") if getattr(first, name) in (None, "")]
    if missing:
        raise ValidationError(
            f"Step 0 is missing: {', '.join(missing)}",
            details={"step_index": 0, "missing": missing}
        )

    amount = parse_decimal(first.amount_in, "amount_in")
    if amount <= 0:
        raise ConfigurationError(f"amount_in must be positive, got {first.amount_in!r}")

    token_in = first.token_in
    for i, step in enumerate(steps):
        missing = [name for name in ("token_out", "dex") if getattr(step, name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Step {i} is missing: {', '.join(missing)}",
                details={"step_index": i, "missing": missing}
            )
        _as_venue(step.dex)
        if token_in.mint == step.token_out.mint:
            raise ValidationError(
                f"Step {i} swaps {token_in.symbol} into itself",
                details={"step_index": i}
            )
        token_in = step.token_out

    return amount


class ComboPlanner:
    """Builds execution plans and their unsigned swap transactions."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        slippage_bps: int = 50,
        gas_per_step: float = DEFAULT_GAS_PER_STEP_SOL,
        quote_timeout: Optional[float] = None,
        enforce_venue_hints: bool = False
    ):
        """
        Args:
            jupiter_client: Quote and swap-build source
            slippage_bps: Default slippage for plans
            gas_per_step: Fee placeholder per step, in SOL
            quote_timeout: Per-quote timeout in seconds (None = client timeout only)
            enforce_venue_hints: Restrict each quote to the step's venue
        """
        self.jupiter = jupiter_client
        self.slippage_bps = slippage_bps
        self.gas_per_step = gas_per_step
        self.quote_timeout = quote_timeout
        self.enforce_venue_hints = enforce_venue_hints

    async def _require_quote(
        self,
        step_index: int,
        token_in: TokenInfo,
        token_out: TokenInfo,
        amount: int,
        slippage_bps: int,
        venue: Venue
    ) -> JupiterQuote:
        """Quote one step; a miss becomes BuildError."""
        dexes = list(venue.jupiter_labels) if self.enforce_venue_hints and venue.jupiter_labels else None
        request = self.jupiter.get_quote(
            token_in.mint,
            token_out.mint,
            amount,
            slippage_bps=slippage_bps,
            dexes=dexes
        )
        try:
            if self.quote_timeout is not None:
                quote = await asyncio.wait_for(request, timeout=self.quote_timeout)
            else:
                quote = await request
        except asyncio.TimeoutError:
            raise BuildError("quote timed out", step_index)

        if quote is None:
            raise BuildError(
                "quote unavailable", step_index,
                details={"input_mint": token_in.mint, "output_mint": token_out.mint, "amount": amount}
            )
        if quote.out_amount == 0:
            raise BuildError("quote returned zero output", step_index)

        quoted_venue = venue_from_label(quote.first_hop.label if quote.first_hop else None)
        if venue is not Venue.JUPITER and quoted_venue is not venue:
            logger.debug(f"Step {step_index}: hinted {venue.value}, best route via {quoted_venue.value}")
        return quote

    async def build_plan(
        self,
        steps: Sequence[ComboStep],
        slippage_bps: Optional[int] = None
    ) -> ExecutionPlan:
        """
        Quote every step in order and assemble the plan.

        Raises:
            ValidationError / ConfigurationError: before any request, if the combo is malformed
            BuildError: a step could not be quoted (no partial plan is returned)
        """
        amount_human = validate_steps(steps)
        slippage = self.slippage_bps if slippage_bps is None else slippage_bps
        if isinstance(slippage, bool) or not isinstance(slippage, int) or not 1 <= slippage <= 10_000:
            raise ConfigurationError(f"slippage_bps must be between 1 and 10000, got {slippage!r}")

        token_in = steps[0].token_in
        amount = token_in.to_base_units(amount_human)
        if amount == 0:
            raise ValidationError(
                f"amount_in {amount_human} is below {token_in.symbol} precision ({token_in.decimals} decimals)",
                details={"step_index": 0}
            )

        route = format_route([token_in.symbol] + [step.token_out.symbol for step in steps])
        logger.info(f"Building plan: {colors['CYAN']}{route}{colors['RESET']} ({len(steps)} steps)")

        quotes: List[JupiterQuote] = []
        amounts_in: List[Decimal] = []
        for i, step in enumerate(steps):
            if i > 0:
                if step.amount_in not in (None, ""):
                    logger.debug(f"Step {i}: ignoring amount_in={step.amount_in!r}, using previous step output")
                if step.token_in is not None and step.token_in.mint != token_in.mint:
                    logger.warning(
                        f"Step {i}: ignoring token_in={step.token_in.symbol}, "
                        f"input is {token_in.symbol} from step {i - 1}"
                    )

            quote = await self._require_quote(i, token_in, step.token_out, amount, slippage, _as_venue(step.dex))
            quotes.append(quote)
            amounts_in.append(token_in.from_base_units(amount))

            token_in = step.token_out
            amount = quote.out_amount

        output_token = steps[-1].token_out
        plan = ExecutionPlan(
            total_steps=len(steps),
            quotes=tuple(quotes),
            estimated_output=output_token.from_base_units(quotes[-1].out_amount),
            price_impact=sum(q.price_impact_pct for q in quotes),
            estimated_gas=self.gas_per_step * len(steps),
            amounts_in=tuple(amounts_in),
            input_token=steps[0].token_in,
            output_token=output_token
        )
        logger.info(
            f"Plan ready: {amounts_in[0]} {plan.input_token.symbol} -> "
            f"{colors['GREEN']}{plan.estimated_output} {output_token.symbol}{colors['RESET']} | "
            f"impact {plan.price_impact:.4f}% | gas ~{plan.estimated_gas} SOL"
        )
        return plan

    @staticmethod
    def _verify_payload(swap: SwapTransaction, signer: Pubkey, step_index: int) -> None:
        """Decode the payload and check that the signer pays for it."""
        try:
            tx = VersionedTransaction.from_bytes(base64.b64decode(swap.swap_transaction))
        except Exception as e:
            raise BuildError("transaction assembly failed", step_index, details={"reason": f"undecodable payload: {e}"}) from e

        account_keys = tx.message.account_keys
        if not account_keys or account_keys[0] != signer:
            raise BuildError(
                "transaction assembly failed", step_index,
                details={"reason": "fee payer is not the signer"}
            )

    async def materialize_transactions(
        self,
        plan: ExecutionPlan,
        signer_public_key: str,
        wrap_unwrap_sol: bool = True,
        priority_fee_lamports: Optional[int] = None
    ) -> List[SwapTransaction]:
        """
        Turn every quote of a plan into an unsigned swap transaction, in order.

        Nothing is signed or sent; the payloads go to an external wallet.

        Raises:
            ValidationError: signer is not a valid public key
            BuildError: a transaction could not be built or verified
        """
        try:
            signer = Pubkey.from_string(signer_public_key)
        except Exception:
            raise ValidationError(f"Invalid signer public key: {signer_public_key!r}")

        transactions = []
        for i, quote in enumerate(plan.quotes):
            swap = await self.jupiter.get_swap_transaction(
                quote,
                signer_public_key,
                step_index=i,
                wrap_unwrap_sol=wrap_unwrap_sol,
                priority_fee_lamports=priority_fee_lamports
            )
            if swap is None:
                raise BuildError("transaction assembly failed", i)
            self._verify_payload(swap, signer, i)
            transactions.append(swap)

        logger.info(f"{len(transactions)} transactions ready for signing")
        return transactions


class ComboState(str, Enum):
    EMPTY = "empty"
    AUTHORING = "authoring"
    VALIDATED = "validated"
    PLANNING = "planning"
    PLANNED = "planned"
    MATERIALIZED = "materialized"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"


_TERMINAL_STATES = (ComboState.SUBMITTED, ComboState.CANCELLED)
_STEP_FIELDS = {f.name for f in fields(ComboStep)} - {"id"}


class Combo:
    """
    A combo being authored, planned and materialized.

    Any edit discards the current plan and transactions. An edit made while a
    build is in flight cancels that build; its result is never used.
    """

    def __init__(self, planner: ComboPlanner, steps: Optional[Sequence[ComboStep]] = None):
        self.planner = planner
        self.steps: List[ComboStep] = list(steps or [])
        self.state = ComboState.AUTHORING if self.steps else ComboState.EMPTY
        self.plan: Optional[ExecutionPlan] = None
        self.transactions: List[SwapTransaction] = []
        self._pending: Optional[asyncio.Future] = None
        self._generation = 0

    def _ensure_not_terminal(self):
        if self.state in _TERMINAL_STATES:
            raise ComboStateError(f"Combo is {self.state.value}", self.state.value)

    def _cancel_pending(self):
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            logger.info("In-flight combo build cancelled")
        self._pending = None

    def _invalidate(self):
        self._generation += 1
        self._cancel_pending()
        self.plan = None
        self.transactions = []
        self.state = ComboState.AUTHORING if self.steps else ComboState.EMPTY

    def add_step(self, step: Optional[ComboStep] = None, **values: Any) -> ComboStep:
        self._ensure_not_terminal()
        step = step or ComboStep(**values)
        self.steps.append(step)
        self._invalidate()
        return step

    def remove_step(self, index: int) -> ComboStep:
        self._ensure_not_terminal()
        step = self.steps.pop(index)
        self._invalidate()
        return step

    def move_step(self, old_index: int, new_index: int):
        self._ensure_not_terminal()
        step = self.steps.pop(old_index)
        self.steps.insert(new_index, step)
        self._invalidate()

    def update_step(self, index: int, **changes: Any) -> ComboStep:
        self._ensure_not_terminal()
        unknown = set(changes) - _STEP_FIELDS
        if unknown:
            raise ValidationError(f"Unknown step fields: {', '.join(sorted(unknown))}")
        step = self.steps[index]
        for name, value in changes.items():
            setattr(step, name, value)
        self._invalidate()
        return step

    def clear(self):
        self._ensure_not_terminal()
        self.steps.clear()
        self._invalidate()

    def validate(self):
        """Check all steps; moves the combo to VALIDATED."""
        if self.state not in (ComboState.EMPTY, ComboState.AUTHORING, ComboState.VALIDATED):
            raise ComboStateError(f"Cannot validate while {self.state.value}", self.state.value)
        validate_steps(self.steps)
        self.state = ComboState.VALIDATED

    async def _run_pending(self, work: Awaitable, generation: int, fallback_state: ComboState) -> Tuple[bool, Any]:
        """
        Run planner work as a cancellable task.

        Returns (current, result); `current` is False when an edit superseded the work.
        """
        task = asyncio.ensure_future(work)
        self._pending = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info("Combo changed during build; stale result discarded")
                return False, None
            self._pending = None
            self.state = fallback_state
            raise
        except Exception:
            if generation == self._generation:
                self._pending = None
                self.state = fallback_state
            raise

        if generation != self._generation:
            return False, None
        self._pending = None
        return True, result

    async def build(self, slippage_bps: Optional[int] = None) -> Optional[ExecutionPlan]:
        """
        Validate (if needed) and plan the combo.

        Returns:
            The new plan, or None if the combo was edited while planning
        """
        self._ensure_not_terminal()
        if self.state in (ComboState.EMPTY, ComboState.AUTHORING):
            self.validate()
        if self.state == ComboState.PLANNING:
            raise ComboStateError("Combo is already planning", self.state.value)

        self._generation += 1
        generation = self._generation
        self.plan = None
        self.transactions = []
        self.state = ComboState.PLANNING

        current, plan = await self._run_pending(
            self.planner.build_plan(list(self.steps), slippage_bps),
            generation,
            ComboState.VALIDATED
        )
        if not current:
            return None
        self.plan = plan
        self.state = ComboState.PLANNED
        return plan

    async def materialize(self, signer_public_key: str, **kwargs: Any) -> Optional[List[SwapTransaction]]:
        """Build unsigned transactions for the current plan."""
        if self.state != ComboState.PLANNED or self.plan is None:
            raise ComboStateError(f"Cannot materialize while {self.state.value}", self.state.value)

        generation = self._generation
        current, transactions = await self._run_pending(
            self.planner.materialize_transactions(self.plan, signer_public_key, **kwargs),
            generation,
            ComboState.PLANNED
        )
        if not current:
            return None
        self.transactions = transactions
        self.state = ComboState.MATERIALIZED
        return transactions

    def mark_submitted(self):
        """Record that the external signer submitted the transactions."""
        if self.state != ComboState.MATERIALIZED:
            raise ComboStateError(f"Cannot submit while {self.state.value}", self.state.value)
        self.state = ComboState.SUBMITTED

    def cancel(self):
        self._ensure_not_terminal()
        self._generation += 1
        self._cancel_pending()
        self.state = ComboState.CANCELLED

"""
Jupiter API client for quotes, USD prices and swap transactions.

Every method is soft-failing: a non-2xx response, a transport error or a
malformed body is logged and turned into None (or an empty mapping for
prices). Callers decide whether a miss is skippable or fatal.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from solders.pubkey import Pubkey

from .exceptions import ConfigurationError
from .utils import short_mint

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for Jupiter API requests.

    A rate of 0 disables limiting.
    """

    def __init__(self, requests_per_second: float = 0.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made."""
        if self.min_interval == 0.0:
            return
        async with self._lock:
            time_since_last = time.monotonic() - self._last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)

            self._last_request_time = time.monotonic()


@dataclass(frozen=True)
class RoutePlanStep:
    """One venue fill inside a Jupiter quote."""
    label: str
    amm_key: str
    in_amount: int
    out_amount: int
    percent: Optional[float] = None


@dataclass(frozen=True)
class JupiterQuote:
    """Quote response from Jupiter API. Amounts are integer base units."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    route_plan: List[RoutePlanStep]
    slippage_bps: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def first_hop(self) -> Optional[RoutePlanStep]:
        return self.route_plan[0] if self.route_plan else None


@dataclass(frozen=True)
class SwapTransaction:
    """Unsigned serialized swap transaction (base64) returned by Jupiter."""
    step_index: int
    swap_transaction: str
    last_valid_block_height: int


def _parse_route_plan(route_plan_data: Any) -> List[RoutePlanStep]:
    """
    Parse `routePlan` entries.

    Raises:
        ValueError / KeyError / TypeError: if the route plan is malformed
    """
    if not isinstance(route_plan_data, list):
        raise TypeError(f"routePlan must be a list, got {type(route_plan_data).__name__}")

    steps = []
    for hop in route_plan_data:
        swap_info = hop.get('swapInfo') or {}
        percent = hop.get('percent')
        steps.append(RoutePlanStep(
            label=swap_info.get('label') or '',
            amm_key=swap_info.get('ammKey') or '',
            in_amount=int(swap_info.get('inAmount', 0)),
            out_amount=int(swap_info.get('outAmount', 0)),
            percent=float(percent) if percent is not None else None
        ))
    return steps


def parse_quote(data: Any) -> Optional[JupiterQuote]:
    """
    Build a JupiterQuote from a response body.

    Returns None when any required field is missing or not well-formed.
    """
    if not isinstance(data, dict):
        return None
    try:
        input_mint = data['inputMint']
        output_mint = data['outputMint']
        in_amount = int(data['inAmount'])
        out_amount = int(data['outAmount'])
        price_impact_pct = float(data.get('priceImpactPct') or 0)
        route_plan = _parse_route_plan(data.get('routePlan', []))
        slippage_bps = data.get('slippageBps')
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Malformed quote response: {e}")
        return None

    if not input_mint or not output_mint or in_amount < 0 or out_amount < 0:
        return None

    return JupiterQuote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount=in_amount,
        out_amount=out_amount,
        price_impact_pct=price_impact_pct,
        route_plan=route_plan,
        slippage_bps=int(slippage_bps) if slippage_bps is not None else None,
        raw=data
    )


def validate_mint(mint: str, field_name: str = "mint") -> str:
    """Check that a mint is a base58 public key."""
    try:
        Pubkey.from_string(mint)
    except Exception:
        raise ConfigurationError(f"{field_name} is not a valid mint address: {mint!r}")
    return mint


class JupiterClient:
    """Client for Jupiter quote, price and swap endpoints."""

    PUBLIC_BASE_URL = "https://lite-api.jup.ag"
    AUTH_BASE_URL = "https://api.jup.ag"

    QUOTE_PATH = "/swap/v1/quote"
    SWAP_PATH = "/swap/v1/swap"
    PRICE_PATH = "/price/v2"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        price_api_url: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 0.0,
        max_retries_on_429: int = 0,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Explicit base URL. Defaults to the public host, or the
                authenticated host when an API key is given.
            api_key: Jupiter API key, sent as `x-api-key`.
            price_api_url: Full URL of the price endpoint (defaults to `<api_url>/price/v2`).
            timeout: Request timeout in seconds.
            requests_per_second: Client-side rate limit (0 disables it).
            max_retries_on_429: Bounded retries on HTTP 429 (0 = single attempt).
            backoff_base_seconds: Base backoff for 429 retries.
            backoff_max_seconds: Maximum backoff for 429 retries.
        """
        if api_url:
            self.api_url = api_url.rstrip('/')
        else:
            self.api_url = self.AUTH_BASE_URL if api_key else self.PUBLIC_BASE_URL
        self.price_api_url = price_api_url.rstrip('/') if price_api_url else f"{self.api_url}{self.PRICE_PATH}"

        self.api_key = api_key
        self.timeout = timeout

        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {}
        if api_key:
            # Jupiter expects the key in x-api-key, not Authorization
            headers["x-api-key"] = api_key

        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def __aenter__(self) -> "JupiterClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _backoff_seconds(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), self.backoff_max_seconds)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def _request(
        self,
        method: str,
        url: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """
        Issue one request (plus bounded 429 retries) and return the decoded JSON body.

        Returns None on any non-2xx response, transport error or undecodable body.
        """
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                if method == "GET":
                    response = await self.client.get(url, params=params)
                else:
                    response = await self.client.post(url, json=json_body)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429 and attempt < self.max_retries_on_429:
                    wait_time = self._backoff_seconds(e.response, attempt)
                    logger.warning(
                        f"Rate limit exceeded (429) for {what}, "
                        f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                if status == 404:
                    # No route for this pair: a normal answer, not a service problem
                    logger.debug(f"Jupiter {what}: not found (404)")
                else:
                    logger.warning(f"Jupiter {what} failed: {status} - {e.response.text}")
                return None

            except httpx.TransportError as e:
                logger.debug(f"Jupiter {what} transport error: {e!r}")
                return None

            except ValueError as e:
                # response.json() on a non-JSON body
                logger.warning(f"Jupiter {what} returned an undecodable body: {e}")
                return None

        return None

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
        dexes: Optional[Sequence[str]] = None
    ) -> Optional[JupiterQuote]:
        """
        Get a single-hop swap quote.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in base units of the input token
            slippage_bps: Slippage in basis points (1..10000)
            dexes: Optional Jupiter venue labels to restrict routing to

        Returns:
            JupiterQuote or None if the quote is unavailable

        Raises:
            ConfigurationError: invalid mint, negative amount or slippage out of range
        """
        validate_mint(input_mint, "input_mint")
        validate_mint(output_mint, "output_mint")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ConfigurationError(f"amount must be a non-negative integer of base units, got {amount!r}")
        if isinstance(slippage_bps, bool) or not isinstance(slippage_bps, int) or not 1 <= slippage_bps <= 10_000:
            raise ConfigurationError(f"slippage_bps must be between 1 and 10000, got {slippage_bps!r}")

        params: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
        }
        if dexes:
            params["dexes"] = ",".join(dexes)

        what = f"quote {short_mint(input_mint)} -> {short_mint(output_mint)}"
        data = await self._request("GET", f"{self.api_url}{self.QUOTE_PATH}", what, params=params)
        if data is None:
            return None

        quote = parse_quote(data)
        if quote is None:
            logger.debug(f"Jupiter {what}: response missing required fields")
            return None

        logger.debug(
            f"Quote {short_mint(input_mint)} -> {short_mint(output_mint)}: "
            f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct:.4f}%"
        )
        return quote

    async def get_price(self, mints: Iterable[str]) -> Dict[str, float]:
        """
        Get USD reference prices.

        Returns:
            Mapping mint -> USD price. Ids the service does not know are absent;
            on failure the mapping is empty.
        """
        ids = list(dict.fromkeys(mints))
        if not ids:
            return {}

        data = await self._request("GET", self.price_api_url, "price", params={"ids": ",".join(ids)})
        if not isinstance(data, dict):
            return {}

        prices: Dict[str, float] = {}
        for mint, entry in (data.get("data") or {}).items():
            if not isinstance(entry, dict) or entry.get("price") is None:
                continue
            try:
                prices[mint] = float(entry["price"])
            except (TypeError, ValueError):
                logger.debug(f"Unparseable price for {short_mint(mint)}: {entry.get('price')!r}")
        return prices

    async def get_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        step_index: int = 0,
        wrap_unwrap_sol: bool = True,
        dynamic_compute_unit_limit: bool = True,
        priority_fee_lamports: Optional[int] = None
    ) -> Optional[SwapTransaction]:
        """
        Build an unsigned swap transaction for a quote.

        Args:
            quote: JupiterQuote to execute
            user_public_key: Signer public key (base58)
            step_index: Position of the quote in its plan (carried on the result)
            wrap_unwrap_sol: Auto wrap/unwrap SOL
            dynamic_compute_unit_limit: Let Jupiter size the compute budget
            priority_fee_lamports: Explicit priority-fee cap; None lets Jupiter pick ("auto")

        Returns:
            SwapTransaction or None if the build fails
        """
        payload: Dict[str, Any] = {
            "quoteResponse": quote.raw or {
                "inputMint": quote.input_mint,
                "inAmount": str(quote.in_amount),
                "outputMint": quote.output_mint,
                "outAmount": str(quote.out_amount),
                "otherAmountThreshold": str(quote.out_amount),
                "swapMode": "ExactIn",
                "slippageBps": quote.slippage_bps or 50,
                "priceImpactPct": str(quote.price_impact_pct),
                "routePlan": []
            },
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_unwrap_sol,
            "dynamicComputeUnitLimit": dynamic_compute_unit_limit,
        }
        if priority_fee_lamports is not None and priority_fee_lamports > 0:
            payload["prioritizationFeeLamports"] = {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": priority_fee_lamports,
                    "priorityLevel": "high"
                }
            }
        else:
            payload["prioritizationFeeLamports"] = "auto"

        data = await self._request("POST", f"{self.api_url}{self.SWAP_PATH}", "swap", json_body=payload)
        if not isinstance(data, dict) or not data.get("swapTransaction"):
            if data is not None:
                logger.warning("Jupiter swap response has no swapTransaction")
            return None

        swap = SwapTransaction(
            step_index=step_index,
            swap_transaction=data["swapTransaction"],
            last_valid_block_height=int(data.get("lastValidBlockHeight") or 0)
        )
        logger.debug(
            f"Swap transaction built for step {step_index}: {len(swap.swap_transaction)} chars, "
            f"last_valid_block_height={swap.last_valid_block_height}"
        )
        return swap

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

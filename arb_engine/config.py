"""
Engine configuration from .env and config.json.

Precedence: environment variables, then config.json, then defaults. Every
numeric value is validated here so that malformed input is rejected before
any request is made.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import dotenv

from .combo_planner import DEFAULT_GAS_PER_STEP_SOL, ComboStep
from .exceptions import ConfigurationError
from .jupiter_client import validate_mint
from .route_enumerator import DEFAULT_MAX_TOKENS, Hop, enumerate_chain_routes, resolve_chain
from .session import DEFAULT_SCAN_INTERVAL_SECONDS
from .tokens import COMMON_TOKENS, TokenInfo, find_token, parse_decimal
from .venues import Venue

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


@dataclass
class EngineConfig:
    """Resolved engine configuration."""
    jupiter_api_url: Optional[str] = None
    jupiter_api_key: Optional[str] = None
    price_api_url: Optional[str] = None
    quote_timeout: float = 5.0
    requests_per_second: float = 0.0
    max_retries_on_429: int = 0
    tokens: List[TokenInfo] = field(default_factory=lambda: list(COMMON_TOKENS))
    max_tokens: int = DEFAULT_MAX_TOKENS
    min_profit_percentage: float = 0.1
    min_profit_usd: float = 10.0
    scan_interval_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS
    slippage_bps: int = 50
    max_concurrency: int = 1
    start_amount: Decimal = Decimal(1)
    price_fallback_usd: Optional[float] = 1.0
    gas_per_step_sol: float = DEFAULT_GAS_PER_STEP_SOL
    enforce_venue_hints: bool = False
    cycles: List[List[Hop]] = field(default_factory=list)
    combo_steps: List[ComboStep] = field(default_factory=list)
    signer_public_key: Optional[str] = None


def _pick(env: Mapping[str, str], name: str, file_value: Any) -> Any:
    """Environment value if set and non-blank, else the config.json value."""
    value = env.get(name)
    if value is not None and value.strip() != "":
        return value
    return file_value


def _as_float(value: Any, name: str, default: float) -> float:
    if value is None:
        return default
    try:
        return float(parse_decimal(value, name))
    except ConfigurationError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _as_int(value: Any, name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_tokens(tokens_data: Any) -> List[TokenInfo]:
    if not tokens_data:
        return list(COMMON_TOKENS)
    if not isinstance(tokens_data, list):
        raise ConfigurationError("config.json 'tokens' must be a list of {mint, symbol, decimals}")

    tokens = []
    for entry in tokens_data:
        try:
            tokens.append(TokenInfo(
                mint=entry["mint"],
                symbol=entry["symbol"],
                decimals=_as_int(entry["decimals"], f"{entry.get('symbol')} decimals", 0)
            ))
        except (KeyError, TypeError):
            raise ConfigurationError(f"Token entry must have mint, symbol and decimals: {entry!r}")
        validate_mint(tokens[-1].mint, f"{tokens[-1].symbol} mint")
    return tokens


def _parse_cycles(cycles_data: Any, tokens: List[TokenInfo]) -> List[List[Hop]]:
    cycles = []
    for cycle in cycles_data or []:
        chain = resolve_chain(cycle, tokens)
        cycles.append(enumerate_chain_routes(chain, close_loop=True))
    return cycles


def _resolve_token(tokens: List[TokenInfo], key: Optional[str], where: str) -> Optional[TokenInfo]:
    if key is None:
        return None
    token = find_token(tokens, key)
    if token is None:
        raise ConfigurationError(f"Unknown token {key!r} in {where}")
    return token


def _parse_combo_steps(steps_data: Any, tokens: List[TokenInfo]) -> List[ComboStep]:
    steps = []
    for i, entry in enumerate(steps_data or []):
        where = f"combo step {i}"
        steps.append(ComboStep(
            token_in=_resolve_token(tokens, entry.get("token_in"), where),
            token_out=_resolve_token(tokens, entry.get("token_out"), where),
            amount_in=entry.get("amount_in"),
            dex=Venue.parse(entry["dex"]) if entry.get("dex") else None
        ))
    return steps


def load_config(
    env_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None
) -> EngineConfig:
    """
    Load configuration from .env and config.json.

    Args:
        env_path: .env location (default: project root). Ignored when `environ` is given.
        config_path: config.json location (default: project root)
        environ: Explicit environment mapping instead of os.environ

    Raises:
        ConfigurationError: on any malformed value
    """
    if environ is None:
        env_path = env_path or PROJECT_ROOT / '.env'
        if env_path.exists():
            dotenv.load_dotenv(env_path)
        else:
            logger.warning(f".env file not found at {env_path}")
        environ = os.environ

    config_path = config_path or PROJECT_ROOT / 'config.json'
    file_config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"config.json is not valid JSON: {e}")
    else:
        logger.warning(f"config.json not found at {config_path}")

    arbitrage = file_config.get('arbitrage', {})
    combo = file_config.get('combo', {})
    env = environ

    tokens = _parse_tokens(file_config.get('tokens'))

    price_fallback_raw = _pick(env, 'PRICE_FALLBACK_USD', arbitrage.get('price_fallback_usd', 1.0))
    if price_fallback_raw is None or str(price_fallback_raw).strip().lower() in ('none', 'off'):
        price_fallback_usd = None
    else:
        price_fallback_usd = _as_float(price_fallback_raw, 'PRICE_FALLBACK_USD', 1.0)

    config = EngineConfig(
        jupiter_api_url=env.get('JUPITER_API_URL') or None,
        jupiter_api_key=env.get('JUPITER_API_KEY') or None,
        price_api_url=env.get('JUPITER_PRICE_API_URL') or None,
        quote_timeout=_as_float(_pick(env, 'QUOTE_TIMEOUT', arbitrage.get('quote_timeout')), 'QUOTE_TIMEOUT', 5.0),
        requests_per_second=_as_float(
            env.get('JUPITER_REQUESTS_PER_SECOND') or None, 'JUPITER_REQUESTS_PER_SECOND', 0.0
        ),
        max_retries_on_429=_as_int(
            env.get('JUPITER_MAX_RETRIES_ON_429') or None, 'JUPITER_MAX_RETRIES_ON_429', 0
        ),
        tokens=tokens,
        max_tokens=_as_int(_pick(env, 'MAX_TOKENS', arbitrage.get('max_tokens')), 'MAX_TOKENS', DEFAULT_MAX_TOKENS),
        min_profit_percentage=_as_float(
            _pick(env, 'MIN_PROFIT_PERCENTAGE', arbitrage.get('min_profit_percentage')), 'MIN_PROFIT_PERCENTAGE', 0.1
        ),
        min_profit_usd=_as_float(_pick(env, 'MIN_PROFIT_USD', arbitrage.get('min_profit_usd')), 'MIN_PROFIT_USD', 10.0),
        scan_interval_seconds=_as_float(
            _pick(env, 'SCAN_INTERVAL_SECONDS', arbitrage.get('scan_interval_seconds')),
            'SCAN_INTERVAL_SECONDS',
            DEFAULT_SCAN_INTERVAL_SECONDS
        ),
        slippage_bps=_as_int(_pick(env, 'SLIPPAGE_BPS', combo.get('slippage_bps')), 'SLIPPAGE_BPS', 50),
        max_concurrency=_as_int(
            _pick(env, 'MAX_CONCURRENCY', arbitrage.get('max_concurrency')), 'MAX_CONCURRENCY', 1
        ),
        start_amount=parse_decimal(_pick(env, 'START_AMOUNT', arbitrage.get('start_amount', '1')), 'START_AMOUNT'),
        price_fallback_usd=price_fallback_usd,
        gas_per_step_sol=_as_float(
            _pick(env, 'GAS_PER_STEP_SOL', combo.get('gas_per_step_sol')), 'GAS_PER_STEP_SOL', DEFAULT_GAS_PER_STEP_SOL
        ),
        enforce_venue_hints=_as_bool(_pick(env, 'ENFORCE_VENUE_HINTS', combo.get('enforce_venue_hints')), False),
        cycles=_parse_cycles(arbitrage.get('cycles'), tokens),
        combo_steps=_parse_combo_steps(combo.get('steps'), tokens),
        signer_public_key=env.get('SIGNER_PUBLIC_KEY') or None
    )
    validate_config(config)
    return config


def validate_config(config: EngineConfig):
    """Range checks that parsing alone does not cover."""
    if not 1 <= config.slippage_bps <= 10_000:
        raise ConfigurationError(f"SLIPPAGE_BPS must be between 1 and 10000, got {config.slippage_bps}")
    if config.max_tokens < 0:
        raise ConfigurationError(f"MAX_TOKENS must not be negative, got {config.max_tokens}")
    if config.max_concurrency < 1:
        raise ConfigurationError(f"MAX_CONCURRENCY must be at least 1, got {config.max_concurrency}")
    if config.scan_interval_seconds <= 0:
        raise ConfigurationError(f"SCAN_INTERVAL_SECONDS must be positive, got {config.scan_interval_seconds}")
    if config.quote_timeout <= 0:
        raise ConfigurationError(f"QUOTE_TIMEOUT must be positive, got {config.quote_timeout}")
    if config.start_amount <= 0:
        raise ConfigurationError(f"START_AMOUNT must be positive, got {config.start_amount}")
    start_tokens = list(config.tokens[:config.max_tokens]) + [hops[0][0] for hops in config.cycles]
    for token in start_tokens:
        if token.to_base_units(config.start_amount) == 0:
            raise ConfigurationError(
                f"START_AMOUNT {config.start_amount} is below {token.symbol} precision ({token.decimals} decimals)"
            )
    if config.requests_per_second < 0:
        raise ConfigurationError(f"JUPITER_REQUESTS_PER_SECOND must not be negative, got {config.requests_per_second}")
    if config.max_retries_on_429 < 0:
        raise ConfigurationError(f"JUPITER_MAX_RETRIES_ON_429 must not be negative, got {config.max_retries_on_429}")
    if config.gas_per_step_sol < 0:
        raise ConfigurationError(f"GAS_PER_STEP_SOL must not be negative, got {config.gas_per_step_sol}")

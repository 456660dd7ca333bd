"""
Main entry point for the arbitrage engine.
"""
import logging
import os
import sys
from typing import Optional

from .arbitrage_finder import ArbitrageFinder
from .combo_planner import Combo, ComboPlanner
from .config import EngineConfig, load_config
from .exceptions import ArbEngineError
from .jupiter_client import JupiterClient
from .session import ScanSession
from .utils import format_route, get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def setup_logging(level: Optional[str] = None):
    """Log to stdout and to arbitrage_engine.log."""
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('arbitrage_engine.log')
        ]
    )
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)


def build_jupiter_client(config: EngineConfig) -> JupiterClient:
    return JupiterClient(
        api_url=config.jupiter_api_url,
        api_key=config.jupiter_api_key,
        price_api_url=config.price_api_url,
        timeout=config.quote_timeout,
        requests_per_second=config.requests_per_second,
        max_retries_on_429=config.max_retries_on_429
    )


def build_finder(config: EngineConfig, jupiter: JupiterClient) -> ArbitrageFinder:
    return ArbitrageFinder(
        jupiter,
        config.tokens,
        min_profit_percentage=config.min_profit_percentage,
        min_profit_usd=config.min_profit_usd,
        max_tokens=config.max_tokens,
        slippage_bps=config.slippage_bps,
        quote_timeout=config.quote_timeout,
        start_amount=config.start_amount,
        price_fallback_usd=config.price_fallback_usd,
        max_concurrency=config.max_concurrency,
        cycles=config.cycles
    )


async def run_scan(config: EngineConfig, watch: bool = False):
    """One scan pass, or periodic rescans with `watch`."""
    jupiter = build_jupiter_client(config)
    async with ScanSession(jupiter, build_finder(config, jupiter), scan_interval=config.scan_interval_seconds) as session:
        if watch:
            logger.info(f"Mode: WATCH (rescan every {config.scan_interval_seconds:.0f}s, Ctrl+C to stop)")
            await session.run()
        else:
            logger.info("Mode: SCAN (single pass)")
            await session.scan()


async def run_plan(config: EngineConfig) -> bool:
    """Build the combo from config.json and, with a signer key, its transactions."""
    if not config.combo_steps:
        logger.error("No combo configured: add combo.steps to config.json")
        return False

    async with build_jupiter_client(config) as jupiter:
        planner = ComboPlanner(
            jupiter,
            slippage_bps=config.slippage_bps,
            gas_per_step=config.gas_per_step_sol,
            quote_timeout=config.quote_timeout,
            enforce_venue_hints=config.enforce_venue_hints
        )
        combo = Combo(planner, config.combo_steps)

        try:
            plan = await combo.build()
        except ArbEngineError as e:
            logger.error(f"{colors['RED']}Plan failed: {e}{colors['RESET']}")
            return False

        route = format_route([plan.input_token.symbol] + [s.token_out.symbol for s in combo.steps])
        logger.info(f"Plan: {colors['CYAN']}{route}{colors['RESET']}")
        for i, (quote, amount_in) in enumerate(zip(plan.quotes, plan.amounts_in)):
            hop = quote.first_hop
            logger.info(
                f"  Step {i}: in={amount_in} via {hop.label if hop else 'n/a'} "
                f"(impact {quote.price_impact_pct:.4f}%)"
            )
        logger.info(
            f"  Output: {colors['GREEN']}{plan.estimated_output} {plan.output_token.symbol}{colors['RESET']} | "
            f"impact {plan.price_impact:.4f}% | gas ~{plan.estimated_gas} SOL"
        )

        if not config.signer_public_key:
            logger.info("SIGNER_PUBLIC_KEY not set: skipping transaction assembly")
            return True

        try:
            transactions = await combo.materialize(config.signer_public_key)
        except ArbEngineError as e:
            logger.error(f"{colors['RED']}Materialize failed: {e}{colors['RESET']}")
            return False

        logger.info(f"{len(transactions)} unsigned transactions ready for the wallet:")
        for tx in transactions:
            logger.info(f"  Step {tx.step_index}: {tx.swap_transaction[:32]}... (valid until {tx.last_valid_block_height})")
        return True


async def main(mode: str = 'scan') -> bool:
    """Main function."""
    setup_logging()
    logger.info("Starting arbitrage engine")

    try:
        config = load_config()
    except ArbEngineError as e:
        logger.error(f"Invalid configuration: {e}")
        return False

    logger.info(
        f"Tokens: {', '.join(t.symbol for t in config.tokens)} (triangular cap {config.max_tokens}), "
        f"min profit {config.min_profit_percentage}% / ${config.min_profit_usd}, slippage {config.slippage_bps} bps"
    )

    if mode == 'scan':
        await run_scan(config)
        return True
    if mode == 'watch':
        await run_scan(config, watch=True)
        return True
    if mode == 'plan':
        return await run_plan(config)

    logger.error(f"Unknown mode: {mode}. Use: scan, watch, or plan")
    return False

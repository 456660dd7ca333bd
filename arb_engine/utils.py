"""
Utility functions for logging output.
"""
import sys
from typing import Dict, Iterable


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts and config values
        'CYAN': '\033[96m' if use_color else '',    # Tokens, routes, venues
        'YELLOW': '\033[93m' if use_color else '',  # Profit, prices, thresholds
        'RED': '\033[91m' if use_color else '',     # Failures and losses
        'DIM': '\033[90m' if use_color else '',     # Service messages
        'RESET': '\033[0m' if use_color else ''
    }


def short_mint(mint: str, length: int = 8) -> str:
    """Shorten a mint address for log lines: 'So111111...'."""
    if len(mint) <= length:
        return mint
    return f"{mint[:length]}..."


def format_route(symbols: Iterable[str]) -> str:
    """Join token symbols into 'SOL -> USDC -> SOL'."""
    return ' -> '.join(symbols)

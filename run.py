#!/usr/bin/env python3
"""
Simple launcher script for the arbitrage engine.
"""
import argparse
import asyncio
import sys

from arb_engine.main import main

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Jupiter arbitrage route & combo engine')
    parser.add_argument(
        'mode',
        nargs='?',
        default='scan',
        choices=['scan', 'watch', 'plan'],
        help='Operation mode: scan (default, one pass), watch (periodic rescans), or plan (build config.json combo)'
    )

    args = parser.parse_args()

    try:
        ok = asyncio.run(main(mode=args.mode))
    except KeyboardInterrupt:
        print("\nEngine stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    sys.exit(0 if ok else 1)

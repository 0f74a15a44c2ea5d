#!/usr/bin/env python3
"""Delete all trades and executions for a user.

Usage:
    python scripts/wipe_trades.py --user u1          # asks for confirmation
    python scripts/wipe_trades.py --user u1 --yes    # no prompt
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger(__name__)


def main() -> int:
    from tradeledger.errors import ConfigurationError
    from tradeledger.ingest.admin import wipe_user_data
    from tradeledger.store.repository import build_repository

    parser = argparse.ArgumentParser(description="Wipe a user's trade ledger")
    parser.add_argument("--user", required=True, help="User id to wipe")
    parser.add_argument("--db", default=None, help="SQLite path (sqlite backend only)")
    parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args()

    if not args.yes:
        answer = input(f"Delete ALL trades and executions for user {args.user}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1

    try:
        result = wipe_user_data(args.user, build_repository(args.db))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if not result.success:
        print(f"Wipe failed: {result.error}", file=sys.stderr)
        return 1

    print(f"Deleted {result.trades_deleted} trades, {result.executions_deleted} executions")
    for warning in result.warnings:
        print(f"WARNING: {warning}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Import a broker execution export into the trade ledger.

Usage:
    # Tradovate Orders CSV, broker-local times in Chicago
    python scripts/import_trades.py orders.csv --user u1 --account 12345 \
        --format tradovate --timezone America/Chicago

    # Canonical fills (JSON lines), report as JSON
    python scripts/import_trades.py fills.jsonl --user u1 --account acc-1 \
        --format generic --json

    # Use a specific SQLite file
    python scripts/import_trades.py orders.csv --user u1 --account 12345 --db /tmp/ledger.db
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

log = logging.getLogger(__name__)


def _load_rows(path: Path, fmt: str) -> list:
    from tradeledger.importers.formats import read_csv_rows, read_json_lines

    text = path.read_text(encoding="utf-8-sig")
    if path.suffix.lower() in (".jsonl", ".ndjson") or (fmt == "generic" and path.suffix.lower() != ".csv"):
        return read_json_lines(text)
    return read_csv_rows(text)


def main() -> int:
    from tradeledger.errors import ConfigurationError
    from tradeledger.ingest.orchestrator import import_batch
    from tradeledger.logging_config import setup_logging
    from tradeledger.store.repository import build_repository

    parser = argparse.ArgumentParser(description="Import broker executions into the trade ledger")
    parser.add_argument("file", type=Path, help="CSV or JSON-lines export")
    parser.add_argument("--user", required=True, help="Owner user id")
    parser.add_argument("--account", required=True, help="Broker account id")
    parser.add_argument("--format", default="tradovate", help="tradovate | tradingview | generic")
    parser.add_argument("--broker", default=None, help="Broker name (default: same as --format)")
    parser.add_argument("--timezone", default=None, help="Timezone for naive timestamps")
    parser.add_argument("--db", default=None, help="SQLite path (sqlite backend only)")
    parser.add_argument("--workers", type=int, default=None, help="Parallel symbol groups")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    import_id = setup_logging(user_id=args.user, account_id=args.account)
    log.info("Import %s started: %s", import_id, args.file)

    if not args.file.exists():
        print(f"File not found: {args.file}", file=sys.stderr)
        return 2

    cancel_event = threading.Event()
    # SIGTERM: 開始済みグループは完走させ、未開始グループはスキップ
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())

    try:
        rows = _load_rows(args.file, args.format.lower())
        result = import_batch(
            args.user,
            args.account,
            args.broker or args.format.lower(),
            rows,
            args.format,
            repository=build_repository(args.db),
            timezone=args.timezone,
            cancel_event=cancel_event,
            max_workers=args.workers,
        )
    except ConfigurationError as e:
        log.error("Import %s aborted: %s", import_id, e)
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(result.format_summary())
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())

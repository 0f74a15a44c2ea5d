#!/usr/bin/env python3
"""Trade journal performance report.

Usage:
    python scripts/report_trades.py --user u1                 # Print to stdout
    python scripts/report_trades.py --user u1 --account 12345
    python scripts/report_trades.py --user u1 --save          # Also save markdown report
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def generate_report(user_id: str, account_id: str | None = None, db: str | None = None) -> str:
    """Generate trade journal report as markdown."""
    from tradeledger.ledger.stats import compute_trade_stats
    from tradeledger.store.models import TradeStatus
    from tradeledger.store.repository import build_repository

    trades = build_repository(db).list_trades(user_id, account_id)
    stats = compute_trade_stats(trades)

    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    lines: list[str] = []

    lines.append("# Trade Journal Report")
    lines.append(f"User: {user_id}" + (f" / Account: {account_id}" if account_id else ""))
    lines.append(f"Generated: {now}\n")

    # --- Summary ---
    lines.append("## Summary\n")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Total trades | {stats.total_trades} |")
    lines.append(f"| Closed | {stats.closed_trades} |")
    lines.append(f"| Open | {stats.open_trades} |")
    lines.append(f"| Wins | {stats.winning_trades} |")
    lines.append(f"| Losses | {stats.losing_trades} |")
    lines.append(f"| Win rate | {stats.win_rate:.1%} |")
    lines.append(f"| Net PnL | ${stats.total_pnl:+.2f} |")
    lines.append(f"| Avg win | ${stats.avg_win:+.2f} |")
    lines.append(f"| Avg loss | ${stats.avg_loss:+.2f} |")
    lines.append(f"| Profit factor | {stats.profit_factor:.2f} |")
    lines.append(f"| Fees + commissions | ${stats.fees + stats.commissions:.2f} |")
    lines.append(f"| Max drawdown | ${stats.max_drawdown:.2f} |")
    lines.append(f"| Sharpe ratio | {stats.sharpe_ratio:.2f} |")
    lines.append("")

    # --- Open positions ---
    open_trades = [t for t in trades if t.status == TradeStatus.OPEN]
    if open_trades:
        lines.append("## Open Positions\n")
        lines.append("| Symbol | Side | Qty | Entry | Since |")
        lines.append("|--------|------|-----|-------|-------|")
        for t in sorted(open_trades, key=lambda t: t.symbol):
            lines.append(
                f"| {t.symbol} | {t.side} | {t.quantity:g} | {t.entry_price:.2f} "
                f"| {t.entry_time:%Y-%m-%d %H:%M} |"
            )
        lines.append("")

    # --- By symbol ---
    by_symbol: dict[str, list[float]] = {}
    for t in trades:
        if t.status == TradeStatus.CLOSED:
            by_symbol.setdefault(t.symbol, []).append(t.pnl or 0.0)
    if by_symbol:
        lines.append("## By Symbol\n")
        lines.append("| Symbol | Trades | PnL |")
        lines.append("|--------|--------|-----|")
        for symbol in sorted(by_symbol):
            pnls = by_symbol[symbol]
            lines.append(f"| {symbol} | {len(pnls)} | ${sum(pnls):+.2f} |")
        lines.append("")

    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description="Trade journal report")
    parser.add_argument("--user", required=True, help="User id")
    parser.add_argument("--account", default=None, help="Limit to one account")
    parser.add_argument("--db", default=None, help="SQLite path (sqlite backend only)")
    parser.add_argument("--save", action="store_true", help="Save to data/reports/")
    args = parser.parse_args()

    report = generate_report(args.user, args.account, args.db)
    print(report)

    if args.save:
        reports_dir = Path(__file__).resolve().parent.parent / "data" / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        path = reports_dir / f"trades_{args.user}_{date_str}.md"
        path.write_text(report, encoding="utf-8")
        print(f"\nSaved to {path}")


if __name__ == "__main__":
    main()

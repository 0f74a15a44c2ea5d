"""Pure P&L calculation functions for reconstructed trades.

No DB access or side effects beyond mutating the trade passed in.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from tradeledger.store.models import Execution, StoredTrade, TradeSide, TradeStatus

# 浮動小数点の残数量をゼロとみなす閾値
QTY_EPSILON = 1e-9


def side_sign(side: TradeSide) -> int:
    return 1 if side == TradeSide.LONG else -1


def weighted_average(qty_a: float, price_a: float, qty_b: float, price_b: float) -> float:
    """Quantity-weighted average of two (quantity, price) legs."""
    total = qty_a + qty_b
    if total <= 0:
        return price_b
    return (qty_a * price_a + qty_b * price_b) / total


def realized_gross(reduce_qty: float, entry_price: float, exit_price: float, side: TradeSide) -> float:
    """Gross P&L for closing reduce_qty units, before fees.

    reduce_qty × (exit − entry) × sign(side)
    """
    return reduce_qty * (exit_price - entry_price) * side_sign(side)


def split_costs(execution: Execution, portion_qty: float) -> tuple[float, float]:
    """Fees and commissions of an execution attributable to portion_qty of it."""
    if execution.quantity <= 0:
        return 0.0, 0.0
    ratio = min(portion_qty / execution.quantity, 1.0)
    return execution.fees * ratio, execution.commissions * ratio


def finalize_trade(trade: StoredTrade) -> None:
    """Close a trade whose open quantity reached zero and set pnl / pnl_points.

    pnl sums the realized gross of every reducing fill minus all fees and
    commissions attributed to the trade. pnl_points is the per-unit price move,
    i.e. realized gross divided by the total closed quantity.
    """
    trade.quantity = 0.0
    trade.status = TradeStatus.CLOSED
    trade.pnl = trade.realized_gross - trade.fees - trade.commissions
    if trade.closed_quantity > QTY_EPSILON:
        trade.pnl_points = trade.realized_gross / trade.closed_quantity
    else:
        trade.pnl_points = 0.0


@dataclass
class BatchMetrics:
    """Totals across the trades touched by one import."""

    closed_trades: int = 0
    open_trades: int = 0
    realized_pnl: float = 0.0
    fees: float = 0.0
    commissions: float = 0.0
    symbols: list[str] = field(default_factory=list)
    first_entry: datetime | None = None
    last_entry: datetime | None = None


def summarize_trades(trades: Iterable[StoredTrade]) -> BatchMetrics:
    metrics = BatchMetrics()
    symbols: set[str] = set()
    for t in trades:
        symbols.add(t.symbol)
        metrics.fees += t.fees
        metrics.commissions += t.commissions
        if t.status == TradeStatus.CLOSED:
            metrics.closed_trades += 1
            metrics.realized_pnl += t.pnl or 0.0
        else:
            metrics.open_trades += 1
        if metrics.first_entry is None or t.entry_time < metrics.first_entry:
            metrics.first_entry = t.entry_time
        if metrics.last_entry is None or t.entry_time > metrics.last_entry:
            metrics.last_entry = t.entry_time
    metrics.symbols = sorted(symbols)
    return metrics

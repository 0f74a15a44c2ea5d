"""Journal statistics over reconstructed trades."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from itertools import accumulate
from statistics import mean, stdev

from tradeledger.store.models import StoredTrade, TradeStatus

# 損失ゼロ時の profit factor 上限
PROFIT_FACTOR_CAP = 999.0


@dataclass(frozen=True)
class TradeStats:
    total_trades: int
    closed_trades: int
    open_trades: int
    winning_trades: int
    losing_trades: int
    total_pnl: float
    fees: float
    commissions: float
    avg_win: float
    avg_loss: float
    win_rate: float
    profit_factor: float
    max_drawdown: float
    sharpe_ratio: float
    volume: float


def max_drawdown(pnl_series: Sequence[float]) -> float:
    """Largest peak-to-trough drop of the equity curve, starting from zero."""
    equity = list(accumulate(pnl_series, initial=0.0))
    peaks = accumulate(equity, max)
    return max((peak - value for peak, value in zip(peaks, equity)), default=0.0)


def per_trade_sharpe(pnl_series: Sequence[float]) -> float:
    """Mean over sample stdev of per-trade P&L; 0.0 when undefined."""
    if len(pnl_series) < 2:
        return 0.0
    spread = stdev(pnl_series)
    return mean(pnl_series) / spread if spread else 0.0


def compute_trade_stats(trades: Iterable[StoredTrade]) -> TradeStats:
    """Win/loss statistics over closed trades, ordered by exit time.

    A closed trade with pnl <= 0 counts as a loss. profit_factor is gross
    wins over gross losses, capped at PROFIT_FACTOR_CAP when there are wins
    but no losses.
    """
    trades = list(trades)
    closed = sorted(
        (t for t in trades if t.status == TradeStatus.CLOSED),
        key=lambda t: (t.exit_time or t.entry_time, t.id),
    )
    pnl_series = [t.pnl or 0.0 for t in closed]
    wins = [p for p in pnl_series if p > 0]
    losses = [p for p in pnl_series if p <= 0]

    win_sum = sum(wins)
    loss_sum = abs(sum(losses))
    if loss_sum > 0:
        profit_factor = min(win_sum / loss_sum, PROFIT_FACTOR_CAP)
    else:
        profit_factor = PROFIT_FACTOR_CAP if win_sum > 0 else 0.0

    return TradeStats(
        total_trades=len(trades),
        closed_trades=len(closed),
        open_trades=len(trades) - len(closed),
        winning_trades=len(wins),
        losing_trades=len(losses),
        total_pnl=sum(pnl_series),
        fees=sum(t.fees for t in trades),
        commissions=sum(t.commissions for t in trades),
        avg_win=win_sum / len(wins) if wins else 0.0,
        avg_loss=-loss_sum / len(losses) if losses else 0.0,
        win_rate=len(wins) / len(closed) if closed else 0.0,
        profit_factor=profit_factor,
        max_drawdown=max_drawdown(pnl_series),
        sharpe_ratio=per_trade_sharpe(pnl_series),
        volume=sum(t.closed_quantity for t in closed),
    )

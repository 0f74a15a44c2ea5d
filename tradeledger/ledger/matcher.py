"""Position matcher: folds a time-ordered fill stream into StoredTrade records.

Trades live in an arena (a plain list); the matcher keeps one index per
(account_id, symbol) pointing at the currently open trade, if any. A new fill
either opens a trade, adds to it, or reduces it. A reducing fill larger than
the open quantity closes the trade and opens the opposite side with the
remainder (a flip).

Fills for one (account, symbol) must be applied sequentially in execution-time
order. Separate instruments are independent and may use separate matchers.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

from tradeledger.errors import MatchError
from tradeledger.ledger.metrics import (
    QTY_EPSILON,
    finalize_trade,
    realized_gross,
    split_costs,
    weighted_average,
)
from tradeledger.store.models import (
    Execution,
    ExecutionSide,
    PositionEffect,
    StoredTrade,
    TradeSide,
    TradeStatus,
)

logger = logging.getLogger(__name__)


class MatchAction(StrEnum):
    OPEN = "open"
    ADD = "add"
    REDUCE = "reduce"
    CLOSE = "close"
    FLIP = "flip"


@dataclass
class MatchStep:
    """What a single execution did to the ledger."""

    execution_id: str
    action: MatchAction
    trade_id: str
    opened_trade_id: str | None = None  # flip で新規に建てたトレード


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _adds_to(trade_side: TradeSide, fill_side: ExecutionSide) -> bool:
    return (trade_side == TradeSide.LONG and fill_side == ExecutionSide.BUY) or (
        trade_side == TradeSide.SHORT and fill_side == ExecutionSide.SELL
    )


class PositionMatcher:
    def __init__(
        self,
        user_id: str,
        open_trades: Iterable[StoredTrade] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.user_id = user_id
        self._clock = clock
        self._trades: list[StoredTrade] = []
        self._open: dict[tuple[str, str], int] = {}
        self._touched: dict[int, None] = {}  # 挿入順を保持する set

        for trade in sorted(open_trades, key=lambda t: t.entry_time):
            key = (trade.account_id, trade.symbol)
            if key in self._open:
                logger.warning(
                    "Multiple open trades for %s/%s, keeping %s and ignoring %s",
                    trade.account_id,
                    trade.symbol,
                    self._trades[self._open[key]].id,
                    trade.id,
                )
                continue
            # 呼び出し元のオブジェクトは変更しない (グループ失敗時に状態を汚さない)
            self._open[key] = self._add(dataclasses.replace(trade))

    @property
    def trades(self) -> list[StoredTrade]:
        return list(self._trades)

    def open_trade(self, account_id: str, symbol: str) -> StoredTrade | None:
        idx = self._open.get((account_id, symbol))
        return self._trades[idx] if idx is not None else None

    def touched_trades(self) -> list[StoredTrade]:
        """Trades created or mutated since construction, in first-touch order."""
        return [self._trades[i] for i in self._touched]

    def apply(self, execution: Execution) -> MatchStep:
        """Apply one fill. Raises MatchError for a closing fill with nothing open."""
        key = (execution.account_id, execution.symbol)
        idx = self._open.get(key)

        if idx is None:
            if execution.position_effect == PositionEffect.CLOSE:
                raise MatchError(
                    execution.symbol,
                    execution.external_id,
                    f"{execution.side} closing fill with no open position",
                )
            trade = self._open_new(
                execution, execution.quantity, execution.fees, execution.commissions
            )
            return MatchStep(execution.id, MatchAction.OPEN, trade.id)

        trade = self._trades[idx]
        if execution.executed_at < trade.entry_time:
            raise MatchError(
                execution.symbol,
                execution.external_id,
                f"fill at {execution.executed_at.isoformat()} predates open trade "
                f"entry {trade.entry_time.isoformat()}",
            )
        self._touch(idx)
        trade.updated_at = self._clock()

        if _adds_to(trade.side, execution.side):
            trade.entry_price = weighted_average(
                trade.quantity, trade.entry_price, execution.quantity, execution.price
            )
            trade.quantity += execution.quantity
            trade.fees += execution.fees
            trade.commissions += execution.commissions
            return MatchStep(execution.id, MatchAction.ADD, trade.id)

        reduce_qty = min(trade.quantity, execution.quantity)
        remainder = execution.quantity - reduce_qty
        if remainder > QTY_EPSILON:
            fees, commissions = split_costs(execution, reduce_qty)
        else:
            fees, commissions = execution.fees, execution.commissions

        trade.exit_price = weighted_average(
            trade.closed_quantity, trade.exit_price or 0.0, reduce_qty, execution.price
        )
        trade.realized_gross += realized_gross(
            reduce_qty, trade.entry_price, execution.price, trade.side
        )
        trade.closed_quantity += reduce_qty
        trade.quantity -= reduce_qty
        trade.exit_time = execution.executed_at
        trade.close_execution_id = execution.id
        trade.fees += fees
        trade.commissions += commissions

        if trade.quantity > QTY_EPSILON:
            return MatchStep(execution.id, MatchAction.REDUCE, trade.id)

        finalize_trade(trade)
        del self._open[key]
        if remainder <= QTY_EPSILON:
            return MatchStep(execution.id, MatchAction.CLOSE, trade.id)

        if execution.position_effect == PositionEffect.CLOSE:
            logger.warning(
                "Closing fill %s on %s exceeds open quantity by %.4f, opening %s remainder",
                execution.external_id,
                execution.symbol,
                remainder,
                "SHORT" if execution.side == ExecutionSide.SELL else "LONG",
            )
        flipped = self._open_new(
            execution,
            remainder,
            execution.fees - fees,
            execution.commissions - commissions,
        )
        logger.debug(
            "Flip %s: closed %s, opened %s %.4f @ %.4f",
            execution.symbol,
            trade.id,
            flipped.side,
            remainder,
            execution.price,
        )
        return MatchStep(execution.id, MatchAction.FLIP, trade.id, flipped.id)

    def _add(self, trade: StoredTrade) -> int:
        self._trades.append(trade)
        return len(self._trades) - 1

    def _touch(self, idx: int) -> None:
        self._touched[idx] = None

    def _open_new(
        self,
        execution: Execution,
        quantity: float,
        fees: float,
        commissions: float,
    ) -> StoredTrade:
        now = self._clock()
        trade = StoredTrade(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            account_id=execution.account_id,
            broker=execution.broker,
            symbol=execution.symbol,
            side=TradeSide.LONG if execution.side == ExecutionSide.BUY else TradeSide.SHORT,
            quantity=quantity,
            entry_price=execution.price,
            entry_time=execution.executed_at,
            status=TradeStatus.OPEN,
            instrument_type=execution.instrument_type,
            currency=execution.currency,
            created_at=now,
            updated_at=now,
            product=execution.product,
            description=execution.description,
            fees=fees,
            commissions=commissions,
            open_execution_id=execution.id,
        )
        idx = self._add(trade)
        self._open[(execution.account_id, execution.symbol)] = idx
        self._touch(idx)
        return trade

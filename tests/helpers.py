"""Shared test helpers. Import in test files: from tests.helpers import make_execution."""

from __future__ import annotations

import dataclasses
import threading
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from tradeledger.errors import PersistenceError
from tradeledger.ledger.dedup import DedupKey
from tradeledger.store.models import (
    Execution,
    ExecutionSide,
    ImportJob,
    InstrumentType,
    PositionEffect,
    StoredTrade,
    TradeStatus,
)

T0 = datetime(2025, 12, 4, 14, 30, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def make_execution(
    side: str,
    quantity: float,
    price: float,
    minute: int = 0,
    symbol: str = "MESZ5",
    external_id: str | None = None,
    fees: float = 0.0,
    commissions: float = 0.0,
    position_effect: PositionEffect | None = None,
    account_id: str = "acc-1",
) -> Execution:
    """Build an Execution with sensible defaults."""
    return Execution(
        id=uuid.uuid4().hex,
        user_id="u1",
        account_id=account_id,
        broker="tradovate",
        external_id=external_id or uuid.uuid4().hex[:8],
        symbol=symbol,
        side=ExecutionSide(side),
        quantity=quantity,
        price=price,
        executed_at=at(minute),
        currency="USD",
        created_at=T0,
        fees=fees,
        commissions=commissions,
        instrument_type=InstrumentType.FUTURE,
        position_effect=position_effect,
    )


def tradovate_row(
    order_id: str,
    side: str,
    qty: float | str,
    price: float | str,
    fill_time: str = "12/04/2025 09:30:00",
    contract: str = "MESZ5",
    status: str = " Filled",
    **extra: str,
) -> dict[str, str]:
    """One row of a Tradovate Orders CSV export, as read_csv_rows yields it."""
    row = {
        "orderId": order_id,
        "Account": "DEMO12345",
        "Order ID": order_id,
        "B/S": side,
        "Contract": contract,
        "Product": contract[:-2],
        "Product Description": "Micro E-mini S&P 500",
        "avgPrice": str(price),
        "filledQty": str(qty),
        "Fill Time": fill_time,
        "Status": status,
        "Avg Fill Price": str(price),
        "Filled Qty": str(qty),
    }
    row.update(extra)
    return row


def generic_row(**fields) -> dict:
    defaults = {
        "external_id": "f1",
        "symbol": "AAPL",
        "side": "BUY",
        "quantity": 10,
        "price": 100.0,
        "executed_at": "2025-12-04T14:30:00Z",
    }
    defaults.update(fields)
    return {k: v for k, v in defaults.items() if v is not None}


class InMemoryRepository:
    """LedgerRepository fake with the same uniqueness and atomicity rules as the stores.

    fail_saves: symbol -> list of PersistenceErrors raised (in order) by save_group.
    """

    def __init__(self) -> None:
        self.executions: dict[tuple[str, str, str, str], Execution] = {}
        self.trades: dict[str, StoredTrade] = {}
        self.jobs: list[ImportJob] = []
        self.fail_saves: dict[str, list[PersistenceError]] = {}
        self.fail_loads: list[PersistenceError] = []
        self.fail_delete_trades: PersistenceError | None = None
        self.fail_delete_executions: PersistenceError | None = None
        self.fail_record_job: PersistenceError | None = None
        self.save_calls: list[str] = []
        self._lock = threading.Lock()

    def load_dedup_keys(self, user_id: str, account_id: str, broker: str) -> set[DedupKey]:
        if self.fail_loads:
            raise self.fail_loads.pop(0)
        return {
            DedupKey(b, a, ext)
            for (u, a, b, ext) in self.executions
            if u == user_id and a == account_id and b == broker
        }

    def load_open_trades(self, user_id: str, account_id: str) -> list[StoredTrade]:
        return [
            dataclasses.replace(t)
            for t in self.trades.values()
            if t.user_id == user_id and t.account_id == account_id and t.is_open
        ]

    def save_group(self, executions: Sequence[Execution], trades: Sequence[StoredTrade]) -> None:
        symbol = executions[0].symbol if executions else trades[0].symbol
        with self._lock:
            self.save_calls.append(symbol)
            pending = self.fail_saves.get(symbol)
            if pending:
                raise pending.pop(0)
            keys = [(e.user_id, e.account_id, e.broker, e.external_id) for e in executions]
            if any(k in self.executions for k in keys) or len(set(keys)) != len(keys):
                raise PersistenceError("duplicate execution", transient=False)
            for key, e in zip(keys, executions):
                self.executions[key] = e
            for t in trades:
                self.trades[t.id] = dataclasses.replace(t)

    def list_trades(
        self,
        user_id: str,
        account_id: str | None = None,
        status: TradeStatus | None = None,
    ) -> list[StoredTrade]:
        return sorted(
            (
                t
                for t in self.trades.values()
                if t.user_id == user_id
                and (account_id is None or t.account_id == account_id)
                and (status is None or t.status == status)
            ),
            key=lambda t: t.entry_time,
            reverse=True,
        )

    def delete_trades(self, user_id: str) -> int:
        if self.fail_delete_trades:
            raise self.fail_delete_trades
        ids = [tid for tid, t in self.trades.items() if t.user_id == user_id]
        for tid in ids:
            del self.trades[tid]
        return len(ids)

    def delete_executions(self, user_id: str) -> int:
        if self.fail_delete_executions:
            raise self.fail_delete_executions
        keys = [k for k in self.executions if k[0] == user_id]
        for k in keys:
            del self.executions[k]
        return len(keys)

    def record_import_job(self, job: ImportJob) -> None:
        if self.fail_record_job:
            raise self.fail_record_job
        self.jobs.append(job)

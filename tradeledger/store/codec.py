"""Row <-> dataclass conversion shared by the SQLite and PostgREST stores.

Timestamps are stored as ISO-8601 text; enums as their string values.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from tradeledger.store.models import (
    Execution,
    ExecutionSide,
    InstrumentType,
    PositionEffect,
    StoredTrade,
    TradeSide,
    TradeStatus,
)

EXECUTION_COLUMNS = [
    "id", "user_id", "account_id", "broker", "external_id", "symbol", "product",
    "description", "side", "quantity", "price", "executed_at", "currency", "created_at",
    "fees", "commissions", "instrument_type", "position_effect",
]

TRADE_COLUMNS = [
    "id", "user_id", "account_id", "broker", "symbol", "product", "description", "side",
    "quantity", "entry_price", "exit_price", "entry_time", "exit_time", "pnl", "pnl_points",
    "fees", "commissions", "status", "instrument_type", "currency", "open_execution_id",
    "close_execution_id", "created_at", "updated_at", "closed_quantity", "realized_gross",
]


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def execution_to_row(e: Execution) -> dict:
    return {
        "id": e.id,
        "user_id": e.user_id,
        "account_id": e.account_id,
        "broker": e.broker,
        "external_id": e.external_id,
        "symbol": e.symbol,
        "product": e.product,
        "description": e.description,
        "side": str(e.side),
        "quantity": e.quantity,
        "price": e.price,
        "executed_at": iso(e.executed_at),
        "currency": e.currency,
        "created_at": iso(e.created_at),
        "fees": e.fees,
        "commissions": e.commissions,
        "instrument_type": str(e.instrument_type),
        "position_effect": str(e.position_effect) if e.position_effect else None,
    }


def trade_to_row(t: StoredTrade) -> dict:
    return {
        "id": t.id,
        "user_id": t.user_id,
        "account_id": t.account_id,
        "broker": t.broker,
        "symbol": t.symbol,
        "product": t.product,
        "description": t.description,
        "side": str(t.side),
        "quantity": t.quantity,
        "entry_price": t.entry_price,
        "exit_price": t.exit_price,
        "entry_time": iso(t.entry_time),
        "exit_time": iso(t.exit_time),
        "pnl": t.pnl,
        "pnl_points": t.pnl_points,
        "fees": t.fees,
        "commissions": t.commissions,
        "status": str(t.status),
        "instrument_type": str(t.instrument_type),
        "currency": t.currency,
        "open_execution_id": t.open_execution_id,
        "close_execution_id": t.close_execution_id,
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
        "closed_quantity": t.closed_quantity,
        "realized_gross": t.realized_gross,
    }


def row_to_execution(row: Mapping) -> Execution:
    return Execution(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        broker=row["broker"],
        external_id=row["external_id"],
        symbol=row["symbol"],
        side=ExecutionSide(row["side"]),
        quantity=float(row["quantity"]),
        price=float(row["price"]),
        executed_at=parse_dt(row["executed_at"]),
        currency=row["currency"],
        created_at=parse_dt(row["created_at"]),
        product=row["product"] or "",
        description=row["description"] or "",
        fees=float(row["fees"] or 0.0),
        commissions=float(row["commissions"] or 0.0),
        instrument_type=InstrumentType(row["instrument_type"]),
        position_effect=PositionEffect(row["position_effect"]) if row["position_effect"] else None,
    )


def row_to_trade(row: Mapping) -> StoredTrade:
    return StoredTrade(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        broker=row["broker"],
        symbol=row["symbol"],
        side=TradeSide(row["side"]),
        quantity=float(row["quantity"]),
        entry_price=float(row["entry_price"]),
        entry_time=parse_dt(row["entry_time"]),
        status=TradeStatus(row["status"]),
        instrument_type=InstrumentType(row["instrument_type"]),
        currency=row["currency"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
        product=row["product"] or "",
        description=row["description"] or "",
        exit_price=row["exit_price"],
        exit_time=parse_dt(row["exit_time"]),
        pnl=row["pnl"],
        pnl_points=row["pnl_points"],
        fees=float(row["fees"] or 0.0),
        commissions=float(row["commissions"] or 0.0),
        open_execution_id=row["open_execution_id"],
        close_execution_id=row["close_execution_id"],
        closed_quantity=float(row["closed_quantity"] or 0.0),
        realized_gross=float(row["realized_gross"] or 0.0),
    )

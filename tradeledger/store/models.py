"""Data models for the execution ledger.

Dataclasses only, no DB access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ExecutionSide(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class TradeSide(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class InstrumentType(StrEnum):
    FUTURE = "future"
    STOCK = "stock"
    OPTION = "option"
    FOREX = "forex"
    CRYPTO = "crypto"
    CFD = "cfd"


class PositionEffect(StrEnum):
    OPEN = "open"
    CLOSE = "close"


@dataclass
class ParsedExecution:
    """Row parser output: normalized, not yet deduplicated, no id."""

    external_id: str
    account: str
    symbol: str
    side: ExecutionSide
    quantity: float
    price: float
    executed_at: datetime
    currency: str = "USD"
    product: str = ""
    description: str = ""
    fees: float = 0.0
    commissions: float = 0.0
    instrument_type: InstrumentType = InstrumentType.FUTURE
    position_effect: PositionEffect | None = None
    row_number: int = 0


@dataclass(frozen=True)
class Execution:
    id: str
    user_id: str
    account_id: str
    broker: str
    external_id: str
    symbol: str
    side: ExecutionSide
    quantity: float
    price: float
    executed_at: datetime
    currency: str
    created_at: datetime
    product: str = ""
    description: str = ""
    fees: float = 0.0
    commissions: float = 0.0
    instrument_type: InstrumentType = InstrumentType.FUTURE
    position_effect: PositionEffect | None = None


@dataclass
class StoredTrade:
    id: str
    user_id: str
    account_id: str
    broker: str
    symbol: str
    side: TradeSide
    quantity: float
    entry_price: float
    entry_time: datetime
    status: TradeStatus
    instrument_type: InstrumentType
    currency: str
    created_at: datetime
    updated_at: datetime
    product: str = ""
    description: str = ""
    exit_price: float | None = None
    exit_time: datetime | None = None
    pnl: float | None = None
    pnl_points: float | None = None
    fees: float = 0.0
    commissions: float = 0.0
    open_execution_id: str | None = None
    close_execution_id: str | None = None
    # 部分決済の累積 (バッチを跨いで継続するため永続化)
    closed_quantity: float = 0.0
    realized_gross: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN


@dataclass
class ImportResult:
    """Report of one import run. Not persisted."""

    success: bool = True
    executions_imported: int = 0
    trades_created: int = 0
    trades_updated: int = 0
    skipped_rows: int = 0
    duplicates_skipped: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Wire shape returned by the import endpoint."""
        return {
            "success": self.success,
            "executionsImported": self.executions_imported,
            "tradesCreated": self.trades_created,
            "tradesUpdated": self.trades_updated,
            "skippedRows": self.skipped_rows,
            "duplicatesSkipped": self.duplicates_skipped,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
        }

    def format_summary(self) -> str:
        status = "OK" if self.success else "PARTIAL" if self.executions_imported else "FAILED"
        lines = [
            f"Import {status}",
            f"Executions imported: {self.executions_imported}",
            f"Trades created: {self.trades_created} | updated: {self.trades_updated}",
            f"Skipped rows: {self.skipped_rows} (duplicates: {self.duplicates_skipped})",
        ]
        if self.cancelled:
            lines.append("Cancelled before all instruments were processed")
        if self.errors:
            lines.append("")
            lines.append("Errors:")
            lines.extend(f"  {e}" for e in self.errors)
        return "\n".join(lines)


@dataclass
class WipeResult:
    success: bool
    trades_deleted: int = 0
    executions_deleted: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class ImportJob:
    """Metadata row describing a completed import."""

    user_id: str
    account_id: str
    broker: str
    trades_imported: int
    executions_imported: int
    duplicates_skipped: int
    symbols: list[str]
    total_pnl: float
    created_at: datetime
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None

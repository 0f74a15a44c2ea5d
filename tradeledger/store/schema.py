"""Database schema DDL and migration helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "data" / "ledger.db"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS executions (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    account_id      TEXT NOT NULL,
    broker          TEXT NOT NULL,
    external_id     TEXT NOT NULL,
    symbol          TEXT NOT NULL,
    product         TEXT NOT NULL DEFAULT '',
    description     TEXT NOT NULL DEFAULT '',
    side            TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
    quantity        REAL NOT NULL CHECK (quantity > 0),
    price           REAL NOT NULL CHECK (price > 0),
    executed_at     TEXT NOT NULL,
    currency        TEXT NOT NULL DEFAULT 'USD',
    created_at      TEXT NOT NULL,
    UNIQUE(user_id, account_id, broker, external_id)
);

CREATE TABLE IF NOT EXISTS trades (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    account_id          TEXT NOT NULL,
    broker              TEXT NOT NULL,
    symbol              TEXT NOT NULL,
    product             TEXT NOT NULL DEFAULT '',
    description         TEXT NOT NULL DEFAULT '',
    side                TEXT NOT NULL CHECK (side IN ('LONG', 'SHORT')),
    quantity            REAL NOT NULL CHECK (quantity >= 0),
    entry_price         REAL NOT NULL,
    exit_price          REAL,
    entry_time          TEXT NOT NULL,
    exit_time           TEXT,
    pnl                 REAL,
    pnl_points          REAL,
    fees                REAL NOT NULL DEFAULT 0.0,
    commissions         REAL NOT NULL DEFAULT 0.0,
    status              TEXT NOT NULL DEFAULT 'open',
    instrument_type     TEXT NOT NULL DEFAULT 'future',
    currency            TEXT NOT NULL DEFAULT 'USD',
    open_execution_id   TEXT,
    close_execution_id  TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
"""

IMPORT_JOBS_SQL = """
CREATE TABLE IF NOT EXISTS import_jobs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT NOT NULL,
    account_id          TEXT NOT NULL,
    broker              TEXT NOT NULL,
    trades_imported     INTEGER NOT NULL DEFAULT 0,
    executions_imported INTEGER NOT NULL DEFAULT 0,
    duplicates_skipped  INTEGER NOT NULL DEFAULT 0,
    date_range_start    TEXT,
    date_range_end      TEXT,
    symbols             TEXT NOT NULL DEFAULT '[]',
    total_pnl           REAL NOT NULL DEFAULT 0.0,
    created_at          TEXT NOT NULL
);
"""

# 約定ごとの手数料・商品区分 (既存 DB との後方互換性のため ALTER TABLE で追加)
_EXECUTION_COST_COLUMNS = [
    ("fees", "REAL NOT NULL DEFAULT 0.0"),
    ("commissions", "REAL NOT NULL DEFAULT 0.0"),
    ("instrument_type", "TEXT NOT NULL DEFAULT 'future'"),
    ("position_effect", "TEXT"),
]


def _ensure_execution_cost_columns(conn: sqlite3.Connection) -> None:
    """Add cost columns to executions table if they don't exist."""
    existing = {row[1] for row in conn.execute("PRAGMA table_info(executions)").fetchall()}
    for col_name, col_def in _EXECUTION_COST_COLUMNS:
        if col_name not in existing:
            conn.execute(f"ALTER TABLE executions ADD COLUMN {col_name} {col_def}")
    conn.commit()


# 部分決済の累積カラム
_TRADE_ACCUMULATOR_COLUMNS = [
    ("closed_quantity", "REAL NOT NULL DEFAULT 0.0"),
    ("realized_gross", "REAL NOT NULL DEFAULT 0.0"),
]


def _ensure_trade_accumulator_columns(conn: sqlite3.Connection) -> None:
    """Add partial-close accumulator columns to trades table if they don't exist."""
    existing = {row[1] for row in conn.execute("PRAGMA table_info(trades)").fetchall()}
    for col_name, col_def in _TRADE_ACCUMULATOR_COLUMNS:
        if col_name not in existing:
            conn.execute(f"ALTER TABLE trades ADD COLUMN {col_name} {col_def}")
    conn.commit()


def _ensure_indexes(conn: sqlite3.Connection) -> None:
    """Create lookup indexes if they don't exist."""
    indexes = [
        "CREATE INDEX IF NOT EXISTS idx_executions_user_account "
        "ON executions(user_id, account_id)",
        "CREATE INDEX IF NOT EXISTS idx_trades_user_account ON trades(user_id, account_id)",
        "CREATE INDEX IF NOT EXISTS idx_trades_open "
        "ON trades(user_id, account_id, symbol, status)",
        "CREATE INDEX IF NOT EXISTS idx_trades_entry_time ON trades(entry_time)",
        "CREATE INDEX IF NOT EXISTS idx_import_jobs_user ON import_jobs(user_id)",
    ]
    for sql in indexes:
        conn.execute(sql)
    conn.commit()


def _connect(db_path: Path | str = DEFAULT_DB_PATH, timeout: float = 10.0) -> sqlite3.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SCHEMA_SQL)
    conn.executescript(IMPORT_JOBS_SQL)
    _ensure_execution_cost_columns(conn)
    _ensure_trade_accumulator_columns(conn)
    _ensure_indexes(conn)
    return conn

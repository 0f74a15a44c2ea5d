"""SQLite store for executions, reconstructed trades and import jobs."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from tradeledger.config import settings
from tradeledger.errors import PersistenceError
from tradeledger.ledger.dedup import DedupKey
from tradeledger.store.codec import (
    EXECUTION_COLUMNS,
    TRADE_COLUMNS,
    execution_to_row,
    iso,
    parse_dt,
    row_to_execution,
    row_to_trade,
    trade_to_row,
)
from tradeledger.store.models import Execution, ImportJob, StoredTrade, TradeStatus
from tradeledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ("locked", "busy", "disk i/o")

_INSERT_EXECUTION_SQL = (
    f"INSERT INTO executions ({', '.join(EXECUTION_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in EXECUTION_COLUMNS)})"
)

_UPSERT_TRADE_SQL = (
    f"INSERT INTO trades ({', '.join(TRADE_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in TRADE_COLUMNS)}) "
    "ON CONFLICT(id) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in TRADE_COLUMNS if c not in ("id", "created_at"))
)


def _is_transient(exc: sqlite3.Error) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


@contextmanager
def _open(db_path: Path | str, what: str) -> Iterator[sqlite3.Connection]:
    """Connection scope that maps sqlite3 failures onto PersistenceError."""
    conn = None
    try:
        conn = _connect(db_path, timeout=settings.persistence_timeout_sec)
        yield conn
    except sqlite3.IntegrityError as e:
        raise PersistenceError(f"{what}: {e}", transient=False) from e
    except sqlite3.OperationalError as e:
        raise PersistenceError(f"{what}: {e}", transient=_is_transient(e)) from e
    except sqlite3.DatabaseError as e:
        raise PersistenceError(f"{what}: {e}", transient=False) from e
    finally:
        if conn is not None:
            conn.close()


def get_dedup_keys(
    user_id: str,
    account_id: str,
    broker: str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> set[DedupKey]:
    """All (broker, account_id, external_id) keys already stored for this user/account."""
    with _open(db_path, "load dedup keys") as conn:
        rows = conn.execute(
            """SELECT broker, account_id, external_id FROM executions
               WHERE user_id = ? AND account_id = ? AND broker = ?""",
            (user_id, account_id, broker),
        ).fetchall()
    return {DedupKey(r["broker"], r["account_id"], r["external_id"]) for r in rows}


def get_open_trades(
    user_id: str,
    account_id: str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[StoredTrade]:
    with _open(db_path, "load open trades") as conn:
        rows = conn.execute(
            """SELECT * FROM trades
               WHERE user_id = ? AND account_id = ? AND status = 'open'
               ORDER BY entry_time""",
            (user_id, account_id),
        ).fetchall()
    return [row_to_trade(r) for r in rows]


def get_trades(
    user_id: str,
    account_id: str | None = None,
    status: TradeStatus | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[StoredTrade]:
    """List trades for a user, newest entry first."""
    sql = "SELECT * FROM trades WHERE user_id = ?"
    params: list = [user_id]
    if account_id:
        sql += " AND account_id = ?"
        params.append(account_id)
    if status:
        sql += " AND status = ?"
        params.append(str(status))
    sql += " ORDER BY entry_time DESC"
    with _open(db_path, "list trades") as conn:
        rows = conn.execute(sql, params).fetchall()
    return [row_to_trade(r) for r in rows]


def get_executions(
    user_id: str,
    account_id: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[Execution]:
    sql = "SELECT * FROM executions WHERE user_id = ?"
    params: list = [user_id]
    if account_id:
        sql += " AND account_id = ?"
        params.append(account_id)
    sql += " ORDER BY executed_at, external_id"
    with _open(db_path, "list executions") as conn:
        rows = conn.execute(sql, params).fetchall()
    return [row_to_execution(r) for r in rows]


def save_group(
    executions: Sequence[Execution],
    trades: Sequence[StoredTrade],
    db_path: Path | str = DEFAULT_DB_PATH,
) -> None:
    """Insert new executions and upsert touched trades in a single transaction.

    A UNIQUE violation on executions means another import stored the same fill
    concurrently; the whole group is rolled back.
    """
    with _open(db_path, "save group") as conn:
        with conn:
            conn.executemany(_INSERT_EXECUTION_SQL, [execution_to_row(e) for e in executions])
            conn.executemany(_UPSERT_TRADE_SQL, [trade_to_row(t) for t in trades])


def delete_trades(user_id: str, db_path: Path | str = DEFAULT_DB_PATH) -> int:
    with _open(db_path, "delete trades") as conn:
        with conn:
            deleted = conn.execute("DELETE FROM trades WHERE user_id = ?", (user_id,)).rowcount
    return deleted


def delete_executions(user_id: str, db_path: Path | str = DEFAULT_DB_PATH) -> int:
    with _open(db_path, "delete executions") as conn:
        with conn:
            deleted = conn.execute(
                "DELETE FROM executions WHERE user_id = ?", (user_id,)
            ).rowcount
    return deleted


def log_import_job(job: ImportJob, db_path: Path | str = DEFAULT_DB_PATH) -> int:
    with _open(db_path, "log import job") as conn:
        with conn:
            cur = conn.execute(
                """INSERT INTO import_jobs
                   (user_id, account_id, broker, trades_imported, executions_imported,
                    duplicates_skipped, date_range_start, date_range_end, symbols,
                    total_pnl, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    job.user_id, job.account_id, job.broker, job.trades_imported,
                    job.executions_imported, job.duplicates_skipped,
                    iso(job.date_range_start), iso(job.date_range_end),
                    json.dumps(job.symbols), job.total_pnl, iso(job.created_at),
                ),
            )
            job_id = cur.lastrowid
    return job_id


def get_import_jobs(user_id: str, db_path: Path | str = DEFAULT_DB_PATH) -> list[ImportJob]:
    with _open(db_path, "list import jobs") as conn:
        rows = conn.execute(
            "SELECT * FROM import_jobs WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
    return [
        ImportJob(
            user_id=r["user_id"],
            account_id=r["account_id"],
            broker=r["broker"],
            trades_imported=r["trades_imported"],
            executions_imported=r["executions_imported"],
            duplicates_skipped=r["duplicates_skipped"],
            symbols=json.loads(r["symbols"]),
            total_pnl=r["total_pnl"],
            created_at=parse_dt(r["created_at"]),
            date_range_start=parse_dt(r["date_range_start"]),
            date_range_end=parse_dt(r["date_range_end"]),
        )
        for r in rows
    ]


class SQLiteRepository:
    """LedgerRepository backed by a local SQLite file."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = db_path

    def load_dedup_keys(self, user_id: str, account_id: str, broker: str) -> set[DedupKey]:
        return get_dedup_keys(user_id, account_id, broker, db_path=self.db_path)

    def load_open_trades(self, user_id: str, account_id: str) -> list[StoredTrade]:
        return get_open_trades(user_id, account_id, db_path=self.db_path)

    def save_group(self, executions: Sequence[Execution], trades: Sequence[StoredTrade]) -> None:
        save_group(executions, trades, db_path=self.db_path)

    def list_trades(
        self,
        user_id: str,
        account_id: str | None = None,
        status: TradeStatus | None = None,
    ) -> list[StoredTrade]:
        return get_trades(user_id, account_id, status, db_path=self.db_path)

    def delete_trades(self, user_id: str) -> int:
        return delete_trades(user_id, db_path=self.db_path)

    def delete_executions(self, user_id: str) -> int:
        return delete_executions(user_id, db_path=self.db_path)

    def record_import_job(self, job: ImportJob) -> None:
        log_import_job(job, db_path=self.db_path)

"""Import orchestrator: raw broker rows -> executions + reconstructed trades.

One batch is best-effort. Row-level problems (parse errors, unmatched closing
fills) skip the row; a persistence failure skips only its instrument group.
Only configuration problems abort the batch, and they do so before any
storage access.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone

from tradeledger.config import settings
from tradeledger.errors import MatchError, PersistenceError
from tradeledger.importers.formats import BrokerFormat, parse_rows, resolve_format, resolve_timezone
from tradeledger.ledger.dedup import DedupKey, dedup_key, is_duplicate
from tradeledger.ledger.matcher import PositionMatcher
from tradeledger.ledger.metrics import summarize_trades
from tradeledger.store.models import Execution, ImportJob, ImportResult, ParsedExecution, StoredTrade
from tradeledger.store.repository import LedgerRepository, build_repository
from tradeledger.store.retry import call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class GroupOutcome:
    """Result of matching and persisting one symbol's executions."""

    symbol: str
    executions_saved: int = 0
    trades_created: int = 0
    trades_updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    failed: bool = False
    cancelled: bool = False
    trades: list[StoredTrade] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def _to_execution(
    parsed: ParsedExecution,
    key: DedupKey,
    user_id: str,
    account_id: str,
    broker: str,
    created_at: datetime,
) -> Execution:
    return Execution(
        id=uuid.uuid4().hex,
        user_id=user_id,
        account_id=account_id,
        broker=broker,
        external_id=key.external_id,
        symbol=parsed.symbol,
        side=parsed.side,
        quantity=parsed.quantity,
        price=parsed.price,
        executed_at=parsed.executed_at,
        currency=parsed.currency,
        created_at=created_at,
        product=parsed.product,
        description=parsed.description,
        fees=parsed.fees,
        commissions=parsed.commissions,
        instrument_type=parsed.instrument_type,
        position_effect=parsed.position_effect,
    )


def _no_executions_message(fmt: BrokerFormat) -> str:
    if fmt in (BrokerFormat.TRADOVATE, BrokerFormat.TRADINGVIEW):
        return "No valid executions found. Check that the Status column contains 'Filled' rows."
    return "No valid executions found."


def _cap_errors(errors: list[str], limit: int) -> list[str]:
    if limit <= 0 or len(errors) <= limit:
        return errors
    return errors[:limit] + [f"... and {len(errors) - limit} more errors"]


def run_group(
    symbol: str,
    executions: list[Execution],
    open_trades: list[StoredTrade],
    user_id: str,
    repository: LedgerRepository,
    cancel_event: threading.Event | None = None,
) -> GroupOutcome:
    """Match one symbol's executions in time order, then persist them atomically.

    A cancelled group does nothing. Once started, a group always runs to the
    end so no trade is left half-updated.
    """
    outcome = GroupOutcome(symbol=symbol)
    if cancel_event is not None and cancel_event.is_set():
        outcome.cancelled = True
        return outcome

    existing_ids = {t.id for t in open_trades}
    matcher = PositionMatcher(user_id, open_trades)
    applied: list[Execution] = []
    for execution in executions:
        try:
            matcher.apply(execution)
        except MatchError as e:
            logger.warning("Skipping fill: %s", e)
            outcome.skipped += 1
            outcome.errors.append(str(e))
            continue
        applied.append(execution)

    touched = matcher.touched_trades()
    if not applied and not touched:
        return outcome

    try:
        call_with_retry(lambda: repository.save_group(applied, touched), f"save {symbol}")
    except PersistenceError as e:
        logger.error("Group %s not saved (%d executions): %s", symbol, len(applied), e)
        outcome.failed = True
        outcome.skipped += len(applied)
        outcome.errors.append(f"{symbol}: failed to save {len(applied)} executions: {e}")
        return outcome

    outcome.executions_saved = len(applied)
    outcome.trades = touched
    for trade in touched:
        if trade.id in existing_ids:
            outcome.trades_updated += 1
        else:
            outcome.trades_created += 1
    logger.info(
        "Group %s: %d executions, %d trades created, %d updated",
        symbol,
        outcome.executions_saved,
        outcome.trades_created,
        outcome.trades_updated,
    )
    return outcome


def import_batch(
    user_id: str,
    account_id: str,
    broker: str,
    raw_rows: Iterable[Mapping | str],
    broker_format: BrokerFormat | str,
    *,
    repository: LedgerRepository | None = None,
    timezone: str | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int | None = None,
) -> ImportResult:
    """Import one batch of raw broker rows for a user's account.

    Raises ConfigurationError for an unknown format, timezone, or storage
    backend. Everything else is reported in the returned ImportResult.
    """
    fmt = resolve_format(broker_format)
    resolve_timezone(timezone)
    repo = repository if repository is not None else build_repository()
    rows = list(raw_rows)
    result = ImportResult()

    try:
        existing_keys = call_with_retry(
            lambda: repo.load_dedup_keys(user_id, account_id, broker), "load dedup keys"
        )
        open_trades = call_with_retry(
            lambda: repo.load_open_trades(user_id, account_id), "load open trades"
        )
    except PersistenceError as e:
        logger.error("Import aborted for %s/%s: %s", user_id, account_id, e)
        result.success = False
        result.skipped_rows = len(rows)
        result.errors.append(f"Failed to load existing ledger state: {e}")
        return result

    batch = parse_rows(rows, fmt, timezone)
    result.skipped_rows += batch.skipped
    result.errors.extend(str(e) for e in batch.errors)

    # 既存キーのコピーに追加していく (バッチ内重複も除外)
    seen: set[DedupKey] = set(existing_keys)
    created_at = _utcnow()
    groups: dict[str, list[Execution]] = defaultdict(list)
    for parsed in batch.executions:
        if is_duplicate(parsed, broker, account_id, seen):
            result.duplicates_skipped += 1
            result.skipped_rows += 1
            continue
        key = dedup_key(parsed, broker, account_id)
        seen.add(key)
        execution = _to_execution(parsed, key, user_id, account_id, broker, created_at)
        groups[execution.symbol].append(execution)

    if rows and not batch.executions:
        result.success = False
        if not result.errors:
            # 全行が未約定などで無視された場合
            result.errors.append(_no_executions_message(fmt))
        result.errors = _cap_errors(result.errors, settings.import_max_errors)
        logger.warning("No valid executions in %d rows", len(rows))
        return result

    trades_by_symbol: dict[str, list[StoredTrade]] = defaultdict(list)
    for trade in open_trades:
        trades_by_symbol[trade.symbol].append(trade)

    symbols = sorted(groups)
    for symbol in symbols:
        groups[symbol].sort(key=lambda e: (e.executed_at, e.external_id))

    workers = max_workers or settings.import_max_workers
    outcomes: list[GroupOutcome] = []
    if symbols:
        with ThreadPoolExecutor(max_workers=max(1, min(workers, len(symbols)))) as pool:
            futures = [
                pool.submit(
                    run_group,
                    symbol,
                    groups[symbol],
                    trades_by_symbol.get(symbol, []),
                    user_id,
                    repo,
                    cancel_event,
                )
                for symbol in symbols
            ]
            outcomes = [f.result() for f in futures]

    touched: list[StoredTrade] = []
    not_started = 0
    for outcome in outcomes:
        if outcome.cancelled:
            result.cancelled = True
            not_started += len(groups[outcome.symbol])
            continue
        result.executions_imported += outcome.executions_saved
        result.trades_created += outcome.trades_created
        result.trades_updated += outcome.trades_updated
        result.skipped_rows += outcome.skipped
        result.errors.extend(outcome.errors)
        touched.extend(outcome.trades)
        if outcome.failed:
            result.success = False

    if result.cancelled:
        result.success = False
        result.skipped_rows += not_started
        result.errors.append(f"Import cancelled: {not_started} executions not processed")

    result.errors = _cap_errors(result.errors, settings.import_max_errors)

    if result.trades_created > 0:
        _record_job(repo, user_id, account_id, broker, result, touched)

    logger.info(
        "Import %s/%s (%s): %d executions, %d created, %d updated, %d skipped (%d duplicates)",
        user_id,
        account_id,
        fmt,
        result.executions_imported,
        result.trades_created,
        result.trades_updated,
        result.skipped_rows,
        result.duplicates_skipped,
    )
    return result


def _record_job(
    repo: LedgerRepository,
    user_id: str,
    account_id: str,
    broker: str,
    result: ImportResult,
    trades: list[StoredTrade],
) -> None:
    metrics = summarize_trades(trades)
    job = ImportJob(
        user_id=user_id,
        account_id=account_id,
        broker=broker,
        trades_imported=result.trades_created,
        executions_imported=result.executions_imported,
        duplicates_skipped=result.duplicates_skipped,
        symbols=metrics.symbols,
        total_pnl=metrics.realized_pnl,
        created_at=_utcnow(),
        date_range_start=metrics.first_entry,
        date_range_end=metrics.last_entry,
    )
    try:
        repo.record_import_job(job)
    except PersistenceError as e:
        # 取り込み自体は成功しているのでログのみ
        logger.warning("Failed to record import job: %s", e)

"""Tests for import_batch: idempotence, partial failure, retries, cancellation."""

from __future__ import annotations

import threading

import pytest

from tests.helpers import InMemoryRepository, generic_row, tradovate_row
from tradeledger.errors import ConfigurationError, PersistenceError
from tradeledger.ingest.orchestrator import import_batch
from tradeledger.store.db import SQLiteRepository, get_executions, get_import_jobs
from tradeledger.store.models import TradeSide, TradeStatus

FIFO_ROWS = [
    tradovate_row("1001", "Buy", 10, 100, fill_time="12/04/2025 09:30:00", Fees="1.00"),
    tradovate_row("1002", "Sell", 4, 110, fill_time="12/04/2025 09:31:00", Fees="0.40"),
    tradovate_row("1003", "Sell", 6, 120, fill_time="12/04/2025 09:32:00", Fees="0.60"),
]


def _import(repo, rows, fmt="tradovate", **kwargs):
    return import_batch("u1", "acc-1", "tradovate", rows, fmt, repository=repo, **kwargs)


class TestHappyPath:
    def test_fifo_round_trip(self, repo):
        result = _import(repo, FIFO_ROWS)

        assert result.success
        assert result.executions_imported == 3
        assert result.trades_created == 1
        assert result.trades_updated == 0
        assert result.skipped_rows == 0
        assert result.errors == []

        (trade,) = repo.list_trades("u1")
        assert trade.status == TradeStatus.CLOSED
        assert trade.exit_price == pytest.approx(116.0)
        assert trade.pnl == pytest.approx(160.0 - 2.0)

    def test_reimport_is_idempotent(self, repo):
        _import(repo, FIFO_ROWS)
        before = {t.id: t for t in repo.list_trades("u1")}

        result = _import(repo, FIFO_ROWS)
        assert result.success
        assert result.executions_imported == 0
        assert result.trades_created == 0
        assert result.trades_updated == 0
        assert result.skipped_rows == 3
        assert result.duplicates_skipped == 3
        assert result.errors == []
        assert {t.id: t for t in repo.list_trades("u1")} == before
        assert len(repo.executions) == 3

    def test_open_trade_continues_across_batches(self, repo):
        first = _import(repo, FIFO_ROWS[:2])
        assert first.trades_created == 1
        (open_trade,) = repo.list_trades("u1", status=TradeStatus.OPEN)
        assert open_trade.quantity == 6

        second = _import(repo, FIFO_ROWS)
        assert second.executions_imported == 1
        assert second.duplicates_skipped == 2
        assert second.trades_created == 0
        assert second.trades_updated == 1

        (trade,) = repo.list_trades("u1")
        assert trade.id == open_trade.id
        assert trade.status == TradeStatus.CLOSED
        assert trade.pnl == pytest.approx(158.0)

    def test_flip_counts_one_updated_one_created(self, repo):
        _import(repo, [tradovate_row("1", "Buy", 2, 100)])
        result = _import(repo, [tradovate_row("2", "Sell", 5, 90, fill_time="12/04/2025 09:45:00")])
        assert result.trades_updated == 1
        assert result.trades_created == 1
        sides = {t.side: t.status for t in repo.list_trades("u1")}
        assert sides == {TradeSide.LONG: TradeStatus.CLOSED, TradeSide.SHORT: TradeStatus.OPEN}

    def test_rows_sorted_by_time_within_group(self, repo):
        rows = [FIFO_ROWS[2], FIFO_ROWS[0], FIFO_ROWS[1]]
        result = _import(repo, rows)
        assert result.trades_created == 1
        assert repo.list_trades("u1")[0].exit_price == pytest.approx(116.0)

    def test_duplicate_inside_one_batch(self, repo):
        rows = [FIFO_ROWS[0], dict(FIFO_ROWS[0])]
        result = _import(repo, rows)
        assert result.executions_imported == 1
        assert result.duplicates_skipped == 1
        assert result.skipped_rows == 1
        assert result.errors == []

    def test_missing_ids_use_fingerprint(self, repo):
        rows = [generic_row(external_id=None, quantity=1)]
        first = _import(repo, rows, fmt="generic")
        second = _import(repo, rows, fmt="generic")
        assert first.executions_imported == 1
        assert second.duplicates_skipped == 1
        (ext,) = [k[3] for k in repo.executions]
        assert ext.startswith("fp:")

    def test_import_job_recorded(self, repo):
        _import(repo, FIFO_ROWS)
        (job,) = repo.jobs
        assert job.trades_imported == 1
        assert job.executions_imported == 3
        assert job.symbols == ["MESZ5"]
        assert job.total_pnl == pytest.approx(158.0)

    def test_import_job_failure_does_not_fail_import(self, repo):
        repo.fail_record_job = PersistenceError("jobs table missing")
        result = _import(repo, FIFO_ROWS)
        assert result.success
        assert repo.jobs == []


class TestRowErrors:
    def test_parse_errors_skip_rows(self, repo):
        rows = FIFO_ROWS[:1] + [tradovate_row("x", "Buy", "abc", 100)]
        result = _import(repo, rows)
        assert result.success
        assert result.executions_imported == 1
        assert result.skipped_rows == 1
        assert result.errors == ["Row 3: Invalid quantity"]

    def test_unfilled_rows_are_skipped_without_error(self, repo):
        rows = FIFO_ROWS[:1] + [tradovate_row("x", "Buy", 0, 0, status="Canceled")]
        result = _import(repo, rows)
        assert result.skipped_rows == 1
        assert result.errors == []

    def test_closing_fill_without_position(self, repo):
        rows = [generic_row(external_id="s1", side="SELL", position_effect="close")]
        result = _import(repo, rows, fmt="generic")
        assert result.success
        assert result.executions_imported == 0
        assert result.skipped_rows == 1
        assert len(result.errors) == 1
        assert "no open position" in result.errors[0]
        assert repo.list_trades("u1") == []
        assert repo.executions == {}

    def test_all_rows_invalid_is_failure(self, repo):
        result = _import(repo, [tradovate_row("1", "Buy", "?", 100), tradovate_row("2", "Buy", 1, "?")])
        assert not result.success
        assert result.skipped_rows == 2
        assert len(result.errors) == 2

    def test_only_unfilled_rows_explains_failure(self, repo):
        rows = [
            tradovate_row("1", "Buy", 0, 0, status="Canceled"),
            tradovate_row("2", "Sell", 0, 0, status="Rejected"),
        ]
        result = _import(repo, rows)
        assert not result.success
        assert result.skipped_rows == 2
        assert result.errors == [
            "No valid executions found. Check that the Status column contains 'Filled' rows."
        ]
        assert repo.save_calls == []

    def test_duplicate_check_goes_through_deduplicator(self, repo, monkeypatch):
        calls = []

        def fake_is_duplicate(parsed, broker, account_id, existing_keys):
            calls.append(parsed.external_id)
            return parsed.external_id == "1002"

        monkeypatch.setattr("tradeledger.ingest.orchestrator.is_duplicate", fake_is_duplicate)
        result = _import(repo, FIFO_ROWS)
        assert calls == ["1001", "1002", "1003"]
        assert result.duplicates_skipped == 1
        assert result.executions_imported == 2

    def test_error_list_is_capped(self, repo, monkeypatch):
        monkeypatch.setattr("tradeledger.ingest.orchestrator.settings.import_max_errors", 2)
        rows = FIFO_ROWS[:1] + [tradovate_row(str(i), "Buy", "bad", 100) for i in range(5)]
        result = _import(repo, rows)
        assert result.skipped_rows == 5
        assert result.errors[:2] == ["Row 3: Invalid quantity", "Row 4: Invalid quantity"]
        assert result.errors[2] == "... and 3 more errors"

    def test_empty_batch(self, repo):
        result = _import(repo, [])
        assert result.success
        assert result.executions_imported == 0


class TestGroupFailures:
    ROWS = [
        tradovate_row("1", "Buy", 1, 100, contract="MESZ5"),
        tradovate_row("2", "Buy", 1, 200, contract="MNQZ5"),
    ]

    def test_group_failure_does_not_abort_siblings(self, repo):
        repo.fail_saves["MNQZ5"] = [PersistenceError("constraint failed", transient=False)]
        result = _import(repo, self.ROWS)

        assert not result.success
        assert result.executions_imported == 1
        assert result.trades_created == 1
        assert result.skipped_rows == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("MNQZ5: failed to save 1 executions")
        assert [t.symbol for t in repo.list_trades("u1")] == ["MESZ5"]

    def test_transient_failure_is_retried(self, repo):
        repo.fail_saves["MESZ5"] = [PersistenceError("database is locked", transient=True)]
        result = _import(repo, self.ROWS)
        assert result.success
        assert result.executions_imported == 2
        assert repo.save_calls.count("MESZ5") == 2

    def test_retries_exhausted(self, repo, monkeypatch):
        monkeypatch.setattr("tradeledger.store.retry.settings.persistence_max_retries", 2)
        repo.fail_saves["MESZ5"] = [PersistenceError("timeout", transient=True) for _ in range(3)]
        result = _import(repo, self.ROWS)
        assert not result.success
        assert repo.save_calls.count("MESZ5") == 3
        assert result.executions_imported == 1

    def test_failed_group_leaves_open_trade_untouched(self, repo):
        _import(repo, [tradovate_row("1", "Buy", 2, 100)])
        repo.fail_saves["MESZ5"] = [PersistenceError("boom")]
        result = _import(repo, [tradovate_row("2", "Sell", 2, 110, fill_time="12/04/2025 10:00:00")])
        assert not result.success
        (trade,) = repo.list_trades("u1")
        assert trade.is_open
        assert trade.quantity == 2

        # 再取り込みで回復する
        retry = _import(repo, [tradovate_row("2", "Sell", 2, 110, fill_time="12/04/2025 10:00:00")])
        assert retry.success
        assert retry.trades_updated == 1
        assert repo.list_trades("u1")[0].status == TradeStatus.CLOSED

    def test_load_failure_aborts_with_report(self, repo):
        repo.fail_loads = [PersistenceError("permission denied")]
        result = _import(repo, FIFO_ROWS)
        assert not result.success
        assert result.skipped_rows == 3
        assert "Failed to load existing ledger state" in result.errors[0]
        assert repo.executions == {}


class TestCancellation:
    def test_cancel_before_start(self, repo):
        cancel = threading.Event()
        cancel.set()
        result = _import(repo, FIFO_ROWS, cancel_event=cancel)
        assert not result.success
        assert result.cancelled
        assert result.executions_imported == 0
        assert result.skipped_rows == 3
        assert repo.save_calls == []

    def test_cancel_between_groups(self):
        cancel = threading.Event()

        class CancellingRepository(InMemoryRepository):
            def save_group(self, executions, trades):
                super().save_group(executions, trades)
                cancel.set()

        repo = CancellingRepository()
        rows = [
            tradovate_row("1", "Buy", 1, 100, contract="MESZ5"),
            tradovate_row("2", "Buy", 1, 200, contract="MNQZ5"),
        ]
        result = _import(repo, rows, cancel_event=cancel, max_workers=1)
        assert result.cancelled
        assert not result.success
        assert result.executions_imported == 1
        assert repo.save_calls == ["MESZ5"]
        assert result.skipped_rows == 1


class TestConfiguration:
    def test_unsupported_format(self, repo):
        with pytest.raises(ConfigurationError):
            _import(repo, FIFO_ROWS, fmt="ninjatrader")
        assert repo.save_calls == []

    def test_unknown_timezone(self, repo):
        with pytest.raises(ConfigurationError):
            _import(repo, FIFO_ROWS, timezone="Nowhere/Special")

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setattr("tradeledger.store.repository.settings.storage_backend", "mongo")
        with pytest.raises(ConfigurationError, match="Unknown storage backend"):
            import_batch("u1", "acc-1", "tradovate", FIFO_ROWS, "tradovate")

    def test_supabase_without_credentials(self, monkeypatch):
        monkeypatch.setattr("tradeledger.store.repository.settings.storage_backend", "supabase")
        monkeypatch.setattr("tradeledger.store.repository.settings.supabase_url", "")
        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            import_batch("u1", "acc-1", "tradovate", FIFO_ROWS, "tradovate")


class TestSQLiteEndToEnd:
    def test_import_twice(self, db_path):
        repo = SQLiteRepository(db_path)
        first = _import(repo, FIFO_ROWS)
        second = _import(repo, FIFO_ROWS)

        assert first.success and first.executions_imported == 3 and first.trades_created == 1
        assert second.executions_imported == 0
        assert second.duplicates_skipped == 3
        assert len(get_executions("u1", db_path=db_path)) == 3
        (trade,) = repo.list_trades("u1")
        assert trade.pnl == pytest.approx(158.0)
        assert len(get_import_jobs("u1", db_path=db_path)) == 1

    def test_accounts_are_isolated(self, db_path):
        repo = SQLiteRepository(db_path)
        import_batch("u1", "acc-1", "tradovate", FIFO_ROWS, "tradovate", repository=repo)
        other = import_batch("u1", "acc-2", "tradovate", FIFO_ROWS, "tradovate", repository=repo)
        assert other.executions_imported == 3
        assert other.duplicates_skipped == 0
        assert len(repo.list_trades("u1")) == 2

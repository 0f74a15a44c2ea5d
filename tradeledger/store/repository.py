"""Storage interface used by the import orchestrator and admin operations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from tradeledger.config import settings
from tradeledger.errors import ConfigurationError
from tradeledger.ledger.dedup import DedupKey
from tradeledger.store.models import Execution, ImportJob, StoredTrade, TradeStatus


class LedgerRepository(Protocol):
    def load_dedup_keys(self, user_id: str, account_id: str, broker: str) -> set[DedupKey]: ...

    def load_open_trades(self, user_id: str, account_id: str) -> list[StoredTrade]: ...

    def save_group(
        self, executions: Sequence[Execution], trades: Sequence[StoredTrade]
    ) -> None:
        """Persist one instrument group atomically: all or nothing."""
        ...

    def list_trades(
        self,
        user_id: str,
        account_id: str | None = None,
        status: TradeStatus | None = None,
    ) -> list[StoredTrade]: ...

    def delete_trades(self, user_id: str) -> int: ...

    def delete_executions(self, user_id: str) -> int: ...

    def record_import_job(self, job: ImportJob) -> None: ...


def build_repository(db_path: str | None = None) -> LedgerRepository:
    """Repository for the configured storage backend.

    Raises ConfigurationError when the backend is unknown or its credentials
    are missing.
    """
    backend = settings.storage_backend.strip().lower()
    if backend == "sqlite":
        from tradeledger.store.db import SQLiteRepository
        from tradeledger.store.db_path import resolve_db_path

        return SQLiteRepository(resolve_db_path(db_path))
    if backend == "supabase":
        from tradeledger.store.supabase import SupabaseRepository

        return SupabaseRepository(settings.supabase_url, settings.supabase_service_key)
    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend}")

"""Supabase (PostgREST) store for executions and trades.

Group writes go through the `ingest_execution_group` RPC so that a group's
executions and trades commit in one Postgres transaction. The executions
table carries UNIQUE(user_id, account_id, broker, external_id); a 409 from the
RPC means another import stored the same fill first.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from tradeledger.config import settings
from tradeledger.errors import ConfigurationError, PersistenceError
from tradeledger.ledger.dedup import DedupKey
from tradeledger.store.codec import execution_to_row, iso, row_to_trade, trade_to_row
from tradeledger.store.models import Execution, ImportJob, StoredTrade, TradeStatus

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


def _count_from_range(content_range: str | None) -> int:
    """'0-4/5' or '*/5' -> 5."""
    if not content_range or "/" not in content_range:
        return 0
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class SupabaseRepository:
    """LedgerRepository backed by Supabase's REST API."""

    def __init__(self, url: str, service_key: str) -> None:
        if not url or not service_key:
            raise ConfigurationError("Supabase storage requires SUPABASE_URL and SUPABASE_SERVICE_KEY")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        what: str,
        *,
        params: dict | None = None,
        json: object | None = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = httpx.request(
                method,
                f"{self.base_url}/{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=settings.persistence_timeout_sec,
            )
        except httpx.TransportError as e:
            # タイムアウト・接続失敗はリトライ対象
            raise PersistenceError(f"{what}: {e}", transient=True) from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise PersistenceError(
                f"{what}: HTTP {resp.status_code} {resp.text[:200]}", transient=True
            )
        if resp.status_code >= 400:
            raise PersistenceError(
                f"{what}: HTTP {resp.status_code} {resp.text[:200]}", transient=False
            )
        return resp

    def _select_all(self, table: str, params: dict, what: str) -> list[dict]:
        """Fetch every matching row, PAGE_SIZE at a time.

        limit/offset paging needs a total order or pages may overlap or skip
        rows, so params must carry an `order` ending in a unique column.
        """
        if "order" not in params:
            raise ValueError(f"{what}: paginated select needs an order")
        rows: list[dict] = []
        offset = 0
        while True:
            page = self._request(
                "GET",
                table,
                what,
                params={**params, "limit": PAGE_SIZE, "offset": offset},
            ).json()
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    def load_dedup_keys(self, user_id: str, account_id: str, broker: str) -> set[DedupKey]:
        rows = self._select_all(
            "executions",
            {
                "select": "broker,account_id,external_id",
                "user_id": f"eq.{user_id}",
                "account_id": f"eq.{account_id}",
                "broker": f"eq.{broker}",
                "order": "id.asc",
            },
            "load dedup keys",
        )
        return {DedupKey(r["broker"], r["account_id"], r["external_id"]) for r in rows}

    def load_open_trades(self, user_id: str, account_id: str) -> list[StoredTrade]:
        rows = self._select_all(
            "trades",
            {
                "select": "*",
                "user_id": f"eq.{user_id}",
                "account_id": f"eq.{account_id}",
                "status": "eq.open",
                "order": "entry_time.asc,id.asc",
            },
            "load open trades",
        )
        return [row_to_trade(r) for r in rows]

    def save_group(self, executions: Sequence[Execution], trades: Sequence[StoredTrade]) -> None:
        self._request(
            "POST",
            "rpc/ingest_execution_group",
            "save group",
            json={
                "p_executions": [execution_to_row(e) for e in executions],
                "p_trades": [trade_to_row(t) for t in trades],
            },
        )

    def list_trades(
        self,
        user_id: str,
        account_id: str | None = None,
        status: TradeStatus | None = None,
    ) -> list[StoredTrade]:
        params = {"select": "*", "user_id": f"eq.{user_id}", "order": "entry_time.desc,id.desc"}
        if account_id:
            params["account_id"] = f"eq.{account_id}"
        if status:
            params["status"] = f"eq.{status}"
        return [row_to_trade(r) for r in self._select_all("trades", params, "list trades")]

    def _delete_for_user(self, table: str, user_id: str) -> int:
        resp = self._request(
            "DELETE",
            table,
            f"delete {table}",
            params={"user_id": f"eq.{user_id}"},
            prefer="count=exact",
        )
        return _count_from_range(resp.headers.get("content-range"))

    def delete_trades(self, user_id: str) -> int:
        return self._delete_for_user("trades", user_id)

    def delete_executions(self, user_id: str) -> int:
        return self._delete_for_user("executions", user_id)

    def record_import_job(self, job: ImportJob) -> None:
        self._request(
            "POST",
            "import_jobs",
            "record import job",
            json={
                "user_id": job.user_id,
                "account_id": job.account_id,
                "broker": job.broker,
                "trades_imported": job.trades_imported,
                "executions_imported": job.executions_imported,
                "duplicates_skipped": job.duplicates_skipped,
                "date_range_start": iso(job.date_range_start),
                "date_range_end": iso(job.date_range_end),
                "symbols": job.symbols,
                "total_pnl": job.total_pnl,
                "created_at": iso(job.created_at),
            },
            prefer="return=minimal",
        )

"""Admin operations on a user's ledger."""

from __future__ import annotations

import logging

from tradeledger.errors import PersistenceError
from tradeledger.store.models import WipeResult
from tradeledger.store.repository import LedgerRepository, build_repository
from tradeledger.store.retry import call_with_retry

logger = logging.getLogger(__name__)


def wipe_user_data(user_id: str, repository: LedgerRepository | None = None) -> WipeResult:
    """Delete every trade and execution belonging to user_id.

    Trades go first. If that fails nothing else is attempted. A failure
    deleting executions after the trades are gone is reported as a warning:
    leftover executions only block re-import of the same fills.
    """
    repo = repository if repository is not None else build_repository()

    try:
        trades_deleted = call_with_retry(lambda: repo.delete_trades(user_id), "delete trades")
    except PersistenceError as e:
        logger.error("Wipe failed for user %s: %s", user_id, e)
        return WipeResult(success=False, error=f"Failed to delete trades: {e}")

    result = WipeResult(success=True, trades_deleted=trades_deleted)
    try:
        result.executions_deleted = call_with_retry(
            lambda: repo.delete_executions(user_id), "delete executions"
        )
    except PersistenceError as e:
        logger.warning("Trades wiped for %s but executions remain: %s", user_id, e)
        result.warnings.append(f"Failed to delete executions: {e}")

    logger.info(
        "Wiped user %s: %d trades, %d executions",
        user_id,
        result.trades_deleted,
        result.executions_deleted,
    )
    return result

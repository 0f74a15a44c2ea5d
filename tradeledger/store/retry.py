"""Bounded retry for storage calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from tradeledger.config import settings
from tradeledger.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    what: str,
    max_retries: int | None = None,
    backoff_sec: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run fn, retrying transient PersistenceErrors with exponential backoff.

    Non-transient errors and the last transient error are re-raised.
    """
    retries = settings.persistence_max_retries if max_retries is None else max_retries
    backoff = settings.persistence_retry_backoff_sec if backoff_sec is None else backoff_sec
    attempt = 0
    while True:
        try:
            return fn()
        except PersistenceError as e:
            if not e.transient or attempt >= retries:
                if e.transient:
                    logger.error("%s failed after %d retries: %s", what, attempt, e)
                raise
            delay = backoff * (2**attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.2fs", what, e, attempt, retries, delay
            )
            sleep(delay)

"""
services/transactions.py — Commit-with-retry for score-mutating operations.

Routes normally call one service function and then db.session.commit().
Operations that mutate credit state go through run_in_transaction()
instead, so a lost update is retried with fresh reads rather than
surfaced immediately.

A conflict is any of:
  - ConcurrencyConflict raised by a service (stale version on flush,
    dedupe-key unique violation)
  - StaleDataError raised at commit time
  - a PostgreSQL serialization failure or deadlock (SQLSTATE 40001 / 40P01)

Anything else rolls back and propagates unchanged.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from splitcredit.app.errors import ConcurrencyConflict


logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_conflict(error: BaseException) -> bool:
    if isinstance(error, (ConcurrencyConflict, StaleDataError)):
        return True
    if isinstance(error, DBAPIError):
        return getattr(error.orig, "pgcode", None) in _RETRYABLE_SQLSTATES
    return False


def run_in_transaction(
        session: Session,
        operation: Callable[[], T],
        attempts: int = 3,
) -> T:
    """
    Runs `operation`, commits, and returns its result.

    On a conflict the session is rolled back (expiring every loaded object,
    so the next attempt re-reads current rows) and the operation runs again,
    up to `attempts` times in total. The last conflict is raised as
    ConcurrencyConflict (409).
    """
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            session.commit()
            return result
        except Exception as error:
            session.rollback()
            if not is_conflict(error):
                raise
            logger.warning(
                "Concurrency conflict on attempt %d/%d: %s",
                attempt,
                attempts,
                error,
            )
            if attempt == attempts:
                if isinstance(error, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    "The request conflicted with a concurrent update. Please retry."
                ) from error

    # attempts < 1
    raise ValueError("attempts must be at least 1.")

# Overview: Row locking and retry helpers shared by the payment services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Payment and Citation also carry a version_id column, so a stale write
    raises StaleDataError even where the lock is a no-op.
    Rows already in the session are refreshed from the locked read.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    linear: bool = False,
    should_retry=None,
    on_failure=None,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    By default retries OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). should_retry(exc) overrides that choice;
    on_failure(attempt, exc) is called after every failed attempt. The
    session is rolled back after each failure. Backoff is exponential, or
    backoff_base * attempt when linear is set.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except Exception as exc:
            db.session.rollback()
            if on_failure is not None:
                on_failure(attempt, exc)
            if should_retry is not None:
                retryable = should_retry(exc)
            else:
                retryable = isinstance(exc, (OperationalError, StaleDataError))
            if not retryable or attempt >= attempts:
                raise
            delay = backoff_base * attempt if linear else backoff_base * (2 ** (attempt - 1))
            if delay > 0:
                time.sleep(delay)

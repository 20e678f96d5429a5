# Overview: Optimistic-locking retry helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Versioned rows (version_id_col) still detect lost updates on SQLite.
    """
    return query.with_for_update()


def _retry_policy(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    config = current_app.config
    if attempts is None:
        attempts = int(config.get("CONCURRENCY_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(config.get("CONCURRENCY_RETRY_BACKOFF", 0.05))
    return max(1, attempts), max(0.0, backoff_base)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    func must re-read everything it mutates: on StaleDataError (a versioned
    row changed underneath us) or OperationalError (lock/deadlock) the
    session is rolled back and func runs again from scratch.
    """
    attempts, backoff_base = _retry_policy(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Concurrent update detected (%s); retrying %d/%d",
                type(exc).__name__, attempt + 1, attempts - 1,
            )
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
    return None

# Overview: Retry and row-lock helpers shared by the stock, sales and purchasing services.

"""
Concurrency helpers.

Two conflicts are expected when requests race on the same rows:
- OperationalError: the database refused a lock (SQLite "database is locked")
- StaleDataError: a version_id check matched no row because another session
  changed or deleted it first

Either one leaves the session unusable until it is rolled back. The retry
wrapper rolls back and replays the whole unit of work, so a unit must re-read
everything it depends on and must not have committed part of itself.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE where the backend honours it (SQLite ignores it)."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run a unit of work, replaying it after a lock or version conflict.

    Defaults come from STOCK_RETRY_ATTEMPTS / STOCK_RETRY_BACKOFF. Backoff
    doubles after every failed attempt. Other exceptions propagate untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 5)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.05)

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                current_app.logger.warning(
                    "Giving up after %s attempt(s): %s", attempts, type(exc).__name__,
                )
                raise
            current_app.logger.debug(
                "Retrying after %s (attempt %s of %s)", type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))

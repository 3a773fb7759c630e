# Overview: Row locking and retry helpers shared by the order, garment, and payment services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Lock the selected rows until the surrounding transaction ends.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id columns still
    catch lost updates there (StaleDataError on flush).
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work, retrying when another writer got there first.

    The session is rolled back before each retry so the next attempt
    re-reads current rows. Domain errors raised by func propagate untouched.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent write conflict, retrying (attempt %s of %s)", attempt + 2, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))

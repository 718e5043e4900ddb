# Overview: Row locking and retry helpers shared by every service that mutates documents.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (writes are serialized by the
    database lock instead); other backends honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation, retrying on lock contention and stale versions.

    OperationalError covers "database is locked"; StaleDataError is raised by
    version_id_col when another writer updated the row first.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning("Retrying after concurrency conflict (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def get_singleton(model, *, lock: bool = False, **defaults):
    """
    Return the single row of a one-row table, creating it on first use.

    Used for FiscalSettings and SubscriptionState.
    """
    query = db.session.query(model).order_by(model.id.asc())
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is None:
        row = model(**defaults)
        db.session.add(row)
        db.session.flush()
    return row

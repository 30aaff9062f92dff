# Overview: Unit-of-work helpers: row locks, serialized transactions and lock-timeout retries.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the identity map are overwritten with what the
    database holds now, so checks made under the lock never see stale state.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole unit of
    work is serialized by atomic() instead.
    """
    return query.with_for_update().populate_existing()


@contextmanager
def atomic():
    """
    One all-or-nothing unit of work on db.session.

    On SQLite the write lock is taken up front (BEGIN IMMEDIATE) so two
    sales can never interleave their stock checks. The block commits on
    normal exit and rolls back on any exception, which is re-raised.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock timeouts.

    Only OperationalError (database locked, deadlock) is retried. Business
    failures, including stock conflicts, propagate on the first attempt.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Database busy, retrying (attempt %s/%s): %s", attempt + 1, attempts, exc.orig
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

# Overview: Row locking, retry and savepoint helpers shared by every write path.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .event_service import pending_count, discard_since


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() serializes
    writers there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction eagerly.

    On SQLite this takes the database write lock up front (BEGIN IMMEDIATE)
    so a check-then-write sequence cannot interleave with another writer,
    and so savepoints nest inside a real transaction. Other dialects rely
    on lock_for_update() row locks.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls back and
    propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


@contextmanager
def savepoint():
    """
    Isolate one unit of work inside the current transaction.

    A failure rolls back only this savepoint and discards the events it
    queued; the enclosing transaction keeps going.
    """
    begin_write()
    mark = pending_count(db.session)
    try:
        with db.session.begin_nested():
            yield
    except Exception:
        discard_since(db.session, mark)
        raise

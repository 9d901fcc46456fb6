# Overview: Unit of Work, row locking and retry for multi-entity transactions.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Contended rows also carry version_id_col, so a lost update still
    surfaces as StaleDataError on SQLite.
    """
    return query.with_for_update()


class UnitOfWork:
    """
    Explicit transaction context passed to every sub-step of a multi-entity
    operation (order completion, handover submit/resolve, stock primitives).

    Sub-steps never commit. They read through ``get``/``lock`` and write via
    ``add``/``flush``; the runner that created the UnitOfWork owns the
    commit/rollback boundary.
    """

    def __init__(self, session=None):
        self.session = session or db.session
        self.after_commit: list[Callable[[], None]] = []

    def query(self, *entities):
        return self.session.query(*entities)

    def lock(self, query):
        return lock_for_update(query)

    def get(self, model, ident, *, lock: bool = False):
        query = self.session.query(model).filter(model.id == ident)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def add(self, obj):
        self.session.add(obj)
        return obj

    def delete(self, obj):
        self.session.delete(obj)

    def flush(self):
        self.session.flush()

    def on_commit(self, callback: Callable[[], None]):
        """Register a side effect to run only after a successful commit."""
        self.after_commit.append(callback)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TX_RETRY_BACKOFF", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Transient DB conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func: Callable[[UnitOfWork], T], **retry_kwargs) -> T:
    """
    Run ``func(uow)`` as one atomic unit.

    Commits on success and rolls back on any exception, so a failed attempt
    leaves no partial state and a retry is equivalent to a fresh attempt.
    Callbacks registered with ``uow.on_commit`` run after the commit.
    """
    def _op():
        uow = UnitOfWork()
        try:
            result = func(uow)
            uow.session.commit()
        except Exception:
            uow.session.rollback()
            raise
        for callback in uow.after_commit:
            callback()
        return result

    return run_with_retry(_op, **retry_kwargs)

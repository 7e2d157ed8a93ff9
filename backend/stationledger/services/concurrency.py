# Overview: Per-key atomic units of work over the shared SQLAlchemy session.

from __future__ import annotations

import threading
from contextlib import ExitStack
from typing import Callable, Iterable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError, LedgerError, PersistenceError
from ..extensions import db

T = TypeVar("T")


class KeyedLocks:
    """
    In-process mutex per logical key ("owner:7", "inventory:1:4", ...).

    Operations on the same key serialize; different keys never share a lock.
    Locks are re-entrant so a unit may take a key its caller already holds.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def hold(self, keys: Iterable[str]) -> ExitStack:
        """
        Acquire every key in a fixed (sorted) order and return the stack
        that releases them. Sorted acquisition keeps two multi-key units
        from deadlocking each other.
        """
        stack = ExitStack()
        try:
            for key in sorted(set(keys)):
                stack.enter_context(self.get(key))
        except BaseException:
            stack.close()
            raise
        return stack


keyed_locks = KeyedLocks()


def owner_key(owner_id: int) -> str:
    return f"owner:{owner_id}"


def inventory_key(station_id: int, product_id: int) -> str:
    return f"inventory:{station_id}:{product_id}"


def invoice_key(invoice_id: int) -> str:
    return f"invoice:{invoice_id}"


def shift_key(shift_id: int) -> str:
    return f"shift:{shift_id}"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations and bypass stale
    identity-map copies.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The keyed in-process lock covers SQLite.
    """
    return query.with_for_update().populate_existing()


def run_atomic(func: Callable[[], T], *, keys: Iterable[str] = (), commit: bool = True) -> T:
    """
    Run func as one atomic read-modify-write unit.

    - Holds the keyed locks for the whole unit, commit included.
    - Single attempt: no retries here; retry policy belongs to the caller.
    - On any failure the session is rolled back and the error surfaces typed:
      LedgerError subclasses as-is, StaleDataError as
      ConcurrencyConflictError, other SQLAlchemy errors as PersistenceError.
    """
    with keyed_locks.hold(keys):
        try:
            result = func()
            if commit:
                db.session.commit()
            else:
                db.session.flush()
            return result
        except LedgerError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            raise ConcurrencyConflictError(
                "record was modified concurrently; reload and retry",
                keys=",".join(sorted(set(keys))),
            ) from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"persistence failure: {exc.__class__.__name__}") from exc

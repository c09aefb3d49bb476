# Overview: Service-layer helpers for transactions, locking and bounded retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConstraintViolationError, DuplicateKeyError, LockTimeoutError

_LOCK_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "lock wait timeout",
    "could not obtain lock",
    "could not serialize",
)

_UNIQUE_MARKERS = ("unique constraint", "duplicate key", "duplicate entry")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _is_lock_error(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def translate_integrity_error(exc: IntegrityError) -> Exception:
    """Map a database constraint failure onto the store's error taxonomy."""
    message = str(exc.orig)
    if any(marker in message.lower() for marker in _UNIQUE_MARKERS):
        return DuplicateKeyError("Unique key already exists", details={"db_error": message})
    return ConstraintViolationError("Database constraint violated", details={"db_error": message})


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation as one transaction with retry on lock contention.

    func does its own work and commit. Any failure rolls the session back so
    no partial multi-row change survives. Retries on lock-related
    OperationalError (locked database, deadlocks) and StaleDataError
    (optimistic locking conflicts); once attempts run out the failure is
    surfaced as LockTimeoutError. Domain errors are never retried.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_SECONDS", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not _is_lock_error(exc):
                raise
            if attempt >= attempts - 1:
                current_app.logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise LockTimeoutError(
                    "Timed out waiting for a database lock",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            raise translate_integrity_error(exc) from exc
        except Exception:
            db.session.rollback()
            raise

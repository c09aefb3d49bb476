# Overview: Storage-level integrity hooks installed by the app factory.

"""
Integrity hooks

- SQLite ships with foreign keys disabled; every new connection turns them on
  and gets a bounded busy timeout so lock waits surface as errors instead of
  hangs.
- Order items may only disappear together with their order. Deleting one
  directly (session.delete, or removing it from order.items) is refused at
  flush time.
"""

from __future__ import annotations

import sqlite3

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .models import Order, OrderItem
from .validation import ConstraintViolationError


def install_sqlite_pragmas(engine, lock_timeout_seconds: float) -> None:
    busy_timeout_ms = int(lock_timeout_seconds * 1000)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        if not isinstance(dbapi_connection, sqlite3.Connection):
            return
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()


@event.listens_for(Session, "before_flush")
def _guard_order_item_deletes(session, flush_context, instances):
    deleted_order_ids = {obj.id for obj in session.deleted if isinstance(obj, Order)}

    for obj in session.deleted:
        if isinstance(obj, OrderItem) and obj.order_id not in deleted_order_ids:
            raise ConstraintViolationError(
                "Order items can only be deleted by deleting their order",
                details={"order_id": obj.order_id, "order_item_id": obj.order_item_id},
            )

    for obj in session.dirty:
        if not isinstance(obj, Order):
            continue
        removed = inspect(obj).attrs["items"].history.deleted
        if removed:
            raise ConstraintViolationError(
                "Order items can only be deleted by deleting their order",
                details={"order_id": obj.id, "order_item_ids": [i.order_item_id for i in removed]},
            )

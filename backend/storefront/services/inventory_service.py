# Overview: Service-layer operations for warehouses and per-warehouse stock.

"""
Inventory Service

One InventoryRow per (product, warehouse). quantity never goes below zero.

adjust_stock applies a delta with a single conditional statement:

    UPDATE inventory
       SET quantity = quantity + :delta
     WHERE product_id = :p AND warehouse_id = :w AND quantity + :delta >= 0

The database serializes concurrent writers on the row, so two decrements
racing for the same units cannot both pass the guard. No affected row means
either the row is missing (created with max(0, delta)) or the delta would
drive the quantity negative (InsufficientStockError).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryRow, Product, Warehouse
from ..validation import (
    InsufficientStockError,
    NotFoundError,
    enforce_rules_stock_delta,
    optional_text,
    require_text,
)
from storefront.time_utils import utcnow
from .concurrency import run_with_retry


def create_warehouse(name: str, location: str | None = None) -> Warehouse:
    warehouse = Warehouse(
        name=require_text(name, "name", max_length=150),
        location=optional_text(location, "location", max_length=255),
    )

    def _op():
        db.session.add(warehouse)
        db.session.commit()
        return warehouse

    return run_with_retry(_op)


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if not warehouse:
        raise NotFoundError(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})
    return warehouse


def delete_warehouse(warehouse_id: int) -> None:
    """Delete a warehouse together with its inventory rows."""
    def _op():
        warehouse = get_warehouse(warehouse_id)
        db.session.delete(warehouse)
        db.session.commit()
        current_app.logger.info("Deleted warehouse %s", warehouse_id)

    run_with_retry(_op)


def _apply_delta(product_id: int, warehouse_id: int, delta: int) -> int:
    stmt = (
        update(InventoryRow)
        .where(
            InventoryRow.product_id == product_id,
            InventoryRow.warehouse_id == warehouse_id,
            InventoryRow.quantity + delta >= 0,
        )
        .values(
            quantity=InventoryRow.quantity + delta,
            version_id=InventoryRow.version_id + 1,
            last_updated=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def _ensure_references(product_id: int, warehouse_id: int) -> None:
    if not db.session.query(Product.id).filter(Product.id == product_id).first():
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    if not db.session.query(Warehouse.id).filter(Warehouse.id == warehouse_id).first():
        raise NotFoundError(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})


def adjust_stock(product_id: int, warehouse_id: int, delta: int) -> InventoryRow:
    """
    Apply delta to the stock of product_id at warehouse_id.

    - Missing row: created with quantity = max(0, delta).
    - Existing row: delta applied atomically; InsufficientStockError if the
      result would be negative (the row is left untouched).
    """
    delta = enforce_rules_stock_delta(delta)

    def _op():
        # The write comes first so the transaction takes the row lock before
        # any read can observe a stale quantity.
        if _apply_delta(product_id, warehouse_id, delta):
            db.session.commit()
            return _fetch_row(product_id, warehouse_id)

        existing = (
            db.session.query(InventoryRow.quantity)
            .filter_by(product_id=product_id, warehouse_id=warehouse_id)
            .first()
        )
        if existing is not None:
            current_app.logger.warning(
                "Insufficient stock for product %s at warehouse %s: have %s, delta %s",
                product_id, warehouse_id, existing.quantity, delta,
            )
            raise InsufficientStockError(
                "Stock adjustment would make quantity negative",
                details={
                    "product_id": product_id,
                    "warehouse_id": warehouse_id,
                    "quantity": existing.quantity,
                    "delta": delta,
                },
            )

        _ensure_references(product_id, warehouse_id)
        row = InventoryRow(product_id=product_id, warehouse_id=warehouse_id, quantity=max(0, delta))
        db.session.add(row)
        try:
            db.session.flush()
        except IntegrityError:
            # Another writer created the row first; apply the delta to theirs
            db.session.rollback()
            if not _apply_delta(product_id, warehouse_id, delta):
                raise InsufficientStockError(
                    "Stock adjustment would make quantity negative",
                    details={"product_id": product_id, "warehouse_id": warehouse_id, "delta": delta},
                )
        db.session.commit()
        return _fetch_row(product_id, warehouse_id)

    return run_with_retry(_op)


def _fetch_row(product_id: int, warehouse_id: int) -> InventoryRow:
    return db.session.get(InventoryRow, (product_id, warehouse_id), populate_existing=True)


def get_stock(product_id: int, warehouse_id: int) -> int:
    """Quantity of product_id at warehouse_id; 0 when no row exists."""
    qty = (
        db.session.query(InventoryRow.quantity)
        .filter_by(product_id=product_id, warehouse_id=warehouse_id)
        .scalar()
    )
    return int(qty or 0)


def list_stock(product_id: int) -> list[InventoryRow]:
    return (
        db.session.query(InventoryRow)
        .filter(InventoryRow.product_id == product_id)
        .order_by(InventoryRow.warehouse_id.asc())
        .all()
    )


def stock_across_warehouses(product_id: int) -> int:
    """
    Total quantity of a product over all warehouses.

    Pure read: a single aggregate statement, so it sees one committed state
    of the inventory table. Absent rows count as zero.
    """
    if not db.session.query(Product.id).filter(Product.id == product_id).first():
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    total = (
        db.session.query(func.coalesce(func.sum(InventoryRow.quantity), 0))
        .filter(InventoryRow.product_id == product_id)
        .scalar()
    )
    return int(total)

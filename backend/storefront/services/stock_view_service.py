# Overview: Read-only stock projection over products and inventory rows.

"""
Derived stock view

One row per product with the sum of its inventory over every warehouse.
LEFT OUTER JOIN keeps products that have no inventory rows (reported as 0).
Computed per call from current rows; nothing is cached or materialized.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryRow, Product


def _stock_query():
    total_quantity = func.coalesce(func.sum(InventoryRow.quantity), 0).label("total_quantity")
    return (
        db.session.query(Product.id, Product.sku, Product.name, total_quantity)
        .outerjoin(InventoryRow, InventoryRow.product_id == Product.id)
        .group_by(Product.id, Product.sku, Product.name)
    )


def product_stock_view() -> list[dict]:
    rows = _stock_query().order_by(Product.id.asc()).all()
    return [
        {
            "product_id": row.id,
            "sku": row.sku,
            "name": row.name,
            "total_quantity": int(row.total_quantity),
        }
        for row in rows
    ]


def product_stock_row(product_id: int) -> dict | None:
    row = _stock_query().filter(Product.id == product_id).first()
    if row is None:
        return None
    return {
        "product_id": row.id,
        "sku": row.sku,
        "name": row.name,
        "total_quantity": int(row.total_quantity),
    }

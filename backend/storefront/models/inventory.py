from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory_rows = db.relationship(
        "InventoryRow",
        back_populates="warehouse",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryRow(db.Model):
    """
    Stock count for one product at one warehouse.

    The composite primary key (product_id, warehouse_id) guarantees one row
    per pair. quantity is only changed through inventory_service.adjust_stock,
    which applies deltas with a single conditional UPDATE so concurrent
    decrements cannot race the quantity below zero.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_nonneg"),
    )

    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True,
    )
    warehouse_id = db.Column(
        db.Integer,
        db.ForeignKey("warehouses.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    quantity = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", back_populates="inventory_rows")
    warehouse = db.relationship("Warehouse", back_populates="inventory_rows")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryRow product_id={self.product_id} warehouse_id={self.warehouse_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "last_updated": to_utc_z(self.last_updated),
            "version_id": self.version_id,
        }

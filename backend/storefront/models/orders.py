from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from storefront.time_utils import to_utc_z


class Order(db.Model):
    """
    Purchase record (document-first: items and payments hang off it).

    LIFECYCLE: pending -> paid -> shipped -> delivered, with cancellation
    from pending or shipped. delivered and cancelled are terminal.

    DELETE POLICY:
    - items, payments: cascade (purging an order purges its record)
    - user: restrict (users with orders cannot be deleted)
    - shipping/billing address: set null when the address goes away

    total_amount_cents mirrors the sum of item line totals; order_service
    recomputes it on every item change and re-verifies it when the order
    is finalized (pending -> paid).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_orders_total_nonneg"),
        db.Index("ix_orders_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-000123")
    order_number = db.Column(db.String(50), nullable=False, unique=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    shipping_address_id = db.Column(
        db.Integer,
        db.ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )
    billing_address_id = db.Column(
        db.Integer,
        db.ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    # Lifecycle status
    status = db.Column(db.String(30), nullable=False, default="pending", index=True)

    placed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True, passive_deletes="all"))
    shipping_address = db.relationship("Address", foreign_keys=[shipping_address_id])
    billing_address = db.relationship("Address", foreign_keys=[billing_address_id])
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.order_item_id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "shipping_address_id": self.shipping_address_id,
            "billing_address_id": self.billing_address_id,
            "total_amount_cents": self.total_amount_cents,
            "currency": self.currency,
            "status": self.status,
            "placed_at": to_utc_z(self.placed_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line item on an order.

    Keyed by (order_id, order_item_id); order_item_id counts from 1 within
    each order. unit_price_cents is a snapshot of the product price when the
    line was added. line_total_cents is derived, never stored.

    Rows are only deleted together with their order (see
    storefront.integrity for the flush-time guard).
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_pos"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_unit_price_nonneg"),
    )

    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        primary_key=True,
    )
    order_item_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    @hybrid_property
    def line_total_cents(self):
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Payment recorded against an order.

    Split and partial payments are separate rows. Only status "completed"
    counts toward the order total; the sum of completed payments never
    exceeds total_amount_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_payments_amount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    paid_amount_cents = db.Column(db.Integer, nullable=False)

    # e.g., card, paypal
    method = db.Column(db.String(50), nullable=False, index=True)

    # Gateway reference (auth code, transaction id); opaque to the store
    provider_reference = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(50), nullable=False, default="completed", index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "paid_amount_cents": self.paid_amount_cents,
            "method": self.method,
            "provider_reference": self.provider_reference,
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Per-document-type number allocator (e.g. ORDER -> ORD-000001).

    Incremented with a single UPDATE so concurrent allocations never hand
    out the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

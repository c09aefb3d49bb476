# Overview: Service-layer operations for orders and their line items.

"""
Order Service

STATE MACHINE:
    pending -> paid -> shipped -> delivered
    pending -> cancelled
    shipped -> cancelled

    delivered and cancelled are terminal.

PRICE SNAPSHOT:
Each line copies the product's price_cents into unit_price_cents when it is
added. Later catalog price changes never reach existing orders.

TOTALS:
total_amount_cents is recomputed from the lines on every line change and
re-verified when the order is finalized (pending -> paid). Lines can only
change while the order is pending and has no payments recorded.

DELETION:
delete_order purges the order with its items and payments. Items are never
deleted on their own.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Address, Order, OrderItem, Payment, Product, User
from ..validation import (
    ConstraintViolationError,
    DuplicateKeyError,
    EmptyOrderError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    enforce_rules_order_line,
    require_int,
)
from .concurrency import lock_for_update, run_with_retry
from .numbering_service import next_document_number


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED)

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PAID, STATUS_CANCELLED},
    STATUS_PAID: {STATUS_SHIPPED},
    STATUS_SHIPPED: {STATUS_DELIVERED, STATUS_CANCELLED},
    STATUS_DELIVERED: set(),
    STATUS_CANCELLED: set(),
}

TERMINAL_STATUSES = {STATUS_DELIVERED, STATUS_CANCELLED}

PAYMENT_STATUS_COMPLETED = "completed"


def _parse_items(items) -> list[tuple[int, int]]:
    if not items:
        raise EmptyOrderError("Cannot create an order with no items")

    parsed = []
    for raw in items:
        if isinstance(raw, Mapping):
            product_id = raw.get("product_id")
            quantity = raw.get("quantity")
        elif isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 2:
            product_id, quantity = raw
        else:
            raise ValidationError("Each item must be a {product_id, quantity} mapping or a pair")
        parsed.append((require_int(product_id, "product_id"), enforce_rules_order_line(quantity)))
    return parsed


def _normalize_currency(currency: str | None) -> str:
    if currency is None:
        currency = current_app.config.get("DEFAULT_CURRENCY", "USD")
    value = str(currency).strip().upper()
    if len(value) != 3 or not value.isalpha():
        raise ValidationError("currency must be a 3-letter ISO code", details={"currency": currency})
    return value


def _require_user_address(user_id: int, address_id: int | None, field: str) -> None:
    if address_id is None:
        return
    address = db.session.get(Address, address_id)
    if not address:
        raise NotFoundError(f"Address {address_id} not found", details={field: address_id})
    if address.user_id != user_id:
        raise ConstraintViolationError(
            "Address belongs to another user",
            details={field: address_id, "user_id": user_id},
        )


def _load_orderable_products(product_ids) -> dict[int, Product]:
    ids = set(product_ids)
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}

    missing = sorted(ids - products.keys())
    if missing:
        raise NotFoundError("Products not found", details={"product_ids": missing})

    inactive = sorted(pid for pid, p in products.items() if not p.is_active)
    if inactive:
        raise ConstraintViolationError("Inactive products cannot be ordered", details={"product_ids": inactive})
    return products


def _order_number_exists(number: str) -> bool:
    return db.session.query(Order.id).filter(Order.order_number == number).first() is not None


def _recalculate_total(order: Order) -> int:
    order.total_amount_cents = sum(item.line_total_cents for item in order.items)
    return order.total_amount_cents


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter(Order.order_number == order_number).first()
    if not order:
        raise NotFoundError(f"Order {order_number!r} not found", details={"order_number": order_number})
    return order


def list_orders(user_id: int | None = None, status: str | None = None) -> list[Order]:
    query = db.session.query(Order)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    if status is not None:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {list(ORDER_STATUSES)}")
        query = query.filter(Order.status == status)
    return query.order_by(Order.placed_at.desc(), Order.id.desc()).all()


def create_order(
    user_id: int,
    items,
    *,
    shipping_address_id: int | None = None,
    billing_address_id: int | None = None,
    currency: str | None = None,
    order_number: str | None = None,
) -> Order:
    """
    Create a pending order from (product_id, quantity) items, atomically.

    Unit prices are snapshotted from the catalog; total_amount_cents is the
    sum of the line totals.

    Raises:
        EmptyOrderError: items is empty
        InvalidQuantityError: a quantity is <= 0
        NotFoundError: user, product or address missing
        ConstraintViolationError: inactive user/product, foreign address
        DuplicateKeyError: explicit order_number already used
    """
    lines = _parse_items(items)
    currency = _normalize_currency(currency)

    def _op():
        if order_number is None:
            prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
            number = next_document_number(
                document_type="ORDER", prefix=prefix, is_taken=_order_number_exists,
            )
        else:
            number = str(order_number).strip()
            if not number:
                raise ValidationError("order_number cannot be blank")
            if _order_number_exists(number):
                raise DuplicateKeyError("Order number already exists", details={"order_number": number})

        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
        if not user.is_active:
            raise ConstraintViolationError("Inactive users cannot place orders", details={"user_id": user_id})

        _require_user_address(user_id, shipping_address_id, "shipping_address_id")
        _require_user_address(user_id, billing_address_id, "billing_address_id")

        products = _load_orderable_products(pid for pid, _ in lines)

        order = Order(
            order_number=number,
            user_id=user_id,
            shipping_address_id=shipping_address_id,
            billing_address_id=billing_address_id,
            currency=currency,
            status=STATUS_PENDING,
        )
        for index, (product_id, quantity) in enumerate(lines, start=1):
            order.items.append(
                OrderItem(
                    order_item_id=index,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_cents=products[product_id].price_cents,
                )
            )
        _recalculate_total(order)

        db.session.add(order)
        db.session.commit()
        current_app.logger.info(
            "Created order %s for user %s: %d items, total %d %s",
            order.order_number, user_id, len(lines), order.total_amount_cents, order.currency,
        )
        return order

    return run_with_retry(_op)


def add_order_item(order_id: int, product_id: int, quantity: int) -> OrderItem:
    """Append a line to a pending, unpaid order and recompute its total."""
    product_id = require_int(product_id, "product_id")
    quantity = enforce_rules_order_line(quantity)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        if order.status != STATUS_PENDING:
            raise ConstraintViolationError(
                f"Can only add items to {STATUS_PENDING} orders",
                details={"order_id": order_id, "status": order.status},
            )
        if order.payments:
            raise ConstraintViolationError(
                "Order items are locked once a payment is recorded",
                details={"order_id": order_id},
            )

        product = _load_orderable_products([product_id])[product_id]
        next_item_id = max((item.order_item_id for item in order.items), default=0) + 1
        item = OrderItem(
            order_item_id=next_item_id,
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=product.price_cents,
        )
        order.items.append(item)
        _recalculate_total(order)

        db.session.commit()
        return item

    return run_with_retry(_op)


def order_items_total_cents(order_id: int) -> int:
    """Sum of line totals computed by the database from quantity * unit price."""
    total = (
        db.session.query(func.coalesce(func.sum(OrderItem.line_total_cents), 0))
        .filter(OrderItem.order_id == order_id)
        .scalar()
    )
    return int(total)


def completed_payments_cents(order_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.paid_amount_cents), 0))
        .filter(Payment.order_id == order_id, Payment.status == PAYMENT_STATUS_COMPLETED)
        .scalar()
    )
    return int(total)


def _finalize_locked(order: Order) -> Order:
    """pending -> paid. Caller holds the order lock and commits."""
    items_total = order_items_total_cents(order.id)
    if order.total_amount_cents != items_total:
        raise ConstraintViolationError(
            "Order total does not match its items",
            details={
                "order_id": order.id,
                "total_amount_cents": order.total_amount_cents,
                "items_total_cents": items_total,
            },
        )

    paid = completed_payments_cents(order.id)
    if paid < order.total_amount_cents:
        raise ConstraintViolationError(
            "Order is not fully paid",
            details={
                "order_id": order.id,
                "total_amount_cents": order.total_amount_cents,
                "paid_cents": paid,
            },
        )

    order.status = STATUS_PAID
    return order


def _transition_locked(order: Order, new_status: str) -> Order:
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}. Must be one of {list(ORDER_STATUSES)}")

    if order.status == new_status:
        return order

    if new_status not in ALLOWED_TRANSITIONS.get(order.status, set()):
        raise InvalidTransitionError(
            f"Cannot move order from {order.status} to {new_status}",
            details={"order_id": order.id, "from": order.status, "to": new_status},
        )

    old_status = order.status
    if new_status == STATUS_PAID:
        _finalize_locked(order)
    else:
        order.status = new_status

    current_app.logger.info("Order %s: %s -> %s", order.order_number, old_status, new_status)
    return order


def transition_order(order_id: int, new_status: str) -> Order:
    """Move an order along its lifecycle. Re-applying the current status is a no-op."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        _transition_locked(order, new_status)
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int) -> Order:
    return transition_order(order_id, STATUS_CANCELLED)


def delete_order(order_id: int) -> None:
    """Purge an order record together with its items and payments."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        number = order.order_number
        db.session.delete(order)
        db.session.commit()
        current_app.logger.info("Purged order %s", number)

    run_with_retry(_op)


def find_total_mismatches() -> list[dict]:
    """Orders whose stored total disagrees with the sum of their items."""
    items_total = (
        db.session.query(
            OrderItem.order_id.label("order_id"),
            func.sum(OrderItem.line_total_cents).label("items_total_cents"),
        )
        .group_by(OrderItem.order_id)
        .subquery()
    )
    rows = (
        db.session.query(
            Order.id,
            Order.order_number,
            Order.status,
            Order.total_amount_cents,
            func.coalesce(items_total.c.items_total_cents, 0).label("items_total_cents"),
        )
        .outerjoin(items_total, items_total.c.order_id == Order.id)
        .filter(Order.total_amount_cents != func.coalesce(items_total.c.items_total_cents, 0))
        .order_by(Order.id.asc())
        .all()
    )
    return [
        {
            "order_id": row.id,
            "order_number": row.order_number,
            "status": row.status,
            "total_amount_cents": row.total_amount_cents,
            "items_total_cents": int(row.items_total_cents),
        }
        for row in rows
    ]

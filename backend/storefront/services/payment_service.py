# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Recording Service

WHY: Orders are paid through an external gateway; this service records the
outcome against the order. Gateway protocols are not handled here.

DESIGN PRINCIPLES:
- Payments are separate from orders (many-to-one relationship)
- Split payments: One order can have multiple payments
- Completed payments never add up to more than the order total; an
  overpayment is rejected with the amounts, not clamped
- Cancelled and delivered orders accept no payments
- The payment that completes a pending order's total finalizes the order
  (pending -> paid) in the same transaction
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, Payment
from ..validation import (
    InvalidAmountError,
    NotFoundError,
    OrderNotPayableError,
    ValidationError,
    enforce_rules_payment_amount,
    optional_text,
)
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import (
    PAYMENT_STATUS_COMPLETED,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    _finalize_locked,
    completed_payments_cents,
)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CARD = "card"
METHOD_PAYPAL = "paypal"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_MOBILE_MONEY = "mobile_money"
METHOD_GIFT_CARD = "gift_card"

VALID_METHODS = [
    METHOD_CARD,
    METHOD_PAYPAL,
    METHOD_BANK_TRANSFER,
    METHOD_MOBILE_MONEY,
    METHOD_GIFT_CARD,
]


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_FAILED = "failed"

VALID_PAYMENT_STATUSES = [
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_FAILED,
]


def add_payment(
    order_id: int,
    amount_cents: int,
    method: str,
    *,
    provider_reference: str | None = None,
    status: str = PAYMENT_STATUS_COMPLETED,
) -> Payment:
    """
    Record a payment against an order.

    Args:
        order_id: Order being paid
        amount_cents: Amount paid (in cents, >= 0)
        method: card, paypal, bank_transfer, mobile_money, gift_card
        provider_reference: Gateway reference (optional)
        status: completed (default), pending or failed; only completed
            payments count toward the order total

    Returns:
        Payment record

    Raises:
        NotFoundError: order missing
        OrderNotPayableError: order is cancelled or delivered
        InvalidAmountError: negative amount, or completed payments would
            exceed the order total
        ValidationError: unknown method or status
    """
    amount_cents = enforce_rules_payment_amount(amount_cents)

    method_key = str(method or "").strip().lower()
    if method_key not in VALID_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {VALID_METHODS}",
            details={"method": method},
        )
    if status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {status}. Must be one of {VALID_PAYMENT_STATUSES}")

    def _op():
        # Lock the order so concurrent payments see each other's totals
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        if order.status in TERMINAL_STATUSES:
            raise OrderNotPayableError(
                f"Cannot add payment to a {order.status} order",
                details={"order_id": order_id, "status": order.status},
            )

        already_paid = completed_payments_cents(order.id)
        if status == PAYMENT_STATUS_COMPLETED and already_paid + amount_cents > order.total_amount_cents:
            current_app.logger.warning(
                "Rejected overpayment on order %s: paid %d + %d > total %d",
                order.order_number, already_paid, amount_cents, order.total_amount_cents,
            )
            raise InvalidAmountError(
                "Payments would exceed the order total",
                details={
                    "order_id": order_id,
                    "total_amount_cents": order.total_amount_cents,
                    "paid_cents": already_paid,
                    "amount_cents": amount_cents,
                    "overpayment_cents": already_paid + amount_cents - order.total_amount_cents,
                },
            )

        payment = Payment(
            order_id=order.id,
            paid_amount_cents=amount_cents,
            method=method_key,
            provider_reference=optional_text(provider_reference, "provider_reference", max_length=255),
            status=status,
            paid_at=utcnow() if status == PAYMENT_STATUS_COMPLETED else None,
        )
        db.session.add(payment)
        db.session.flush()

        if (
            status == PAYMENT_STATUS_COMPLETED
            and order.status == STATUS_PENDING
            and already_paid + amount_cents == order.total_amount_cents
        ):
            _finalize_locked(order)
            current_app.logger.info("Order %s fully paid", order.order_number)

        db.session.commit()
        current_app.logger.info(
            "Recorded %s payment of %d on order %s", method_key, amount_cents, order.order_number
        )
        return payment

    return run_with_retry(_op)


def list_payments(order_id: int) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.id.asc())
        .all()
    )


def total_paid_cents(order_id: int) -> int:
    """Sum of completed payments on the order."""
    if not db.session.query(Order.id).filter(Order.id == order_id).first():
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return completed_payments_cents(order_id)


def balance_due_cents(order_id: int) -> int:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order.total_amount_cents - completed_payments_cents(order_id)

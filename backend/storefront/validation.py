from __future__ import annotations

import re
from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

MIN_RATING = 1
MAX_RATING = 5

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StorefrontError(Exception):
    """Base class for every error the store reports to its callers."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StorefrontError, ValueError):
    """400-level input problem."""


class InvalidQuantityError(ValidationError):
    """Quantity outside its bounds (order lines > 0, stock deltas != 0)."""


class InvalidRatingError(ValidationError):
    """Review rating outside [1, 5]."""


class InvalidAmountError(ValidationError):
    """Money or weight outside its bounds, or an overpayment."""


class EmptyOrderError(ValidationError):
    """Order created without items."""


class NotFoundError(StorefrontError, LookupError):
    """Reference to a nonexistent id."""


class ConflictError(StorefrontError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class DuplicateKeyError(ConflictError):
    """Unique key already taken: email, SKU, order number, category name/slug."""


class ReferencedByOrderError(ConflictError):
    """Product deletion refused because order items cite it."""


class InsufficientStockError(ConflictError):
    """Stock adjustment would take a quantity below zero."""


class CycleDetectedError(ConflictError):
    """Category parent change would make the tree cyclic."""


class OrderNotPayableError(ConflictError):
    """Payment attempted on a cancelled or delivered order."""


class ConstraintViolationError(ConflictError):
    """Generic invariant breach."""


class InvalidTransitionError(ConstraintViolationError):
    """Order status change not allowed by the lifecycle."""


class LockTimeoutError(StorefrontError):
    """Lock contention outlasted the retry budget. Safe to retry."""


def require_int(value: Any, field: str, error_cls: type[ValidationError] = ValidationError) -> int:
    # bool is an int subclass; True must not pass as quantity 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise error_cls(f"{field} must be an integer", details={field: value})
    return value


def normalize_email(email: Any) -> str:
    if email is None or not str(email).strip():
        raise ValidationError("email is required")
    value = str(email).strip().lower()
    if len(value) > 255:
        raise ValidationError("email exceeds max length 255")
    if not _EMAIL_RE.match(value):
        raise ValidationError("email is not a valid address", details={"email": value})
    return value


def require_text(value: Any, field: str, max_length: int | None = None) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if text == "":
        raise ValidationError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text == "":
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch:
        price = require_int(patch["price_cents"], "price_cents", InvalidAmountError)
        if price < 0:
            raise InvalidAmountError("price_cents must be >= 0", details={"price_cents": price})
        if price > MAX_PRICE_CENTS:
            raise InvalidAmountError(
                f"price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})",
                details={"price_cents": price},
            )

    if patch.get("weight_grams") is not None:
        weight = require_int(patch["weight_grams"], "weight_grams", InvalidAmountError)
        if weight < 0:
            raise InvalidAmountError("weight_grams must be >= 0", details={"weight_grams": weight})


def enforce_rules_order_line(quantity: Any) -> int:
    quantity = require_int(quantity, "quantity", InvalidQuantityError)
    if quantity <= 0:
        raise InvalidQuantityError("quantity must be > 0", details={"quantity": quantity})
    return quantity


def enforce_rules_stock_delta(delta: Any) -> int:
    delta = require_int(delta, "delta", InvalidQuantityError)
    if delta == 0:
        raise InvalidQuantityError("delta must be non-zero")
    return delta


def enforce_rules_payment_amount(amount_cents: Any) -> int:
    amount = require_int(amount_cents, "amount_cents", InvalidAmountError)
    if amount < 0:
        raise InvalidAmountError("amount_cents must be >= 0", details={"amount_cents": amount})
    return amount


def enforce_rules_rating(rating: Any) -> int:
    rating = require_int(rating, "rating", InvalidRatingError)
    if rating < MIN_RATING or rating > MAX_RATING:
        raise InvalidRatingError(
            f"rating must be between {MIN_RATING} and {MAX_RATING}",
            details={"rating": rating},
        )
    return rating

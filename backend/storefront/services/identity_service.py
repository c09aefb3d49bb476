# Overview: Service-layer operations for accounts, profiles and addresses.

"""
Identity Service

DELETE POLICY (users):
- profile, addresses: removed in the same transaction as the user
- reviews: kept, author reference nulled
- orders: block the deletion (order history is retained for audit)

PRIMARY ADDRESS:
At most one address per user carries is_primary. Switching the primary
address clears the previous one inside the same transaction.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Address, Order, ProductReview, User, UserProfile
from ..validation import (
    ConstraintViolationError,
    DuplicateKeyError,
    NotFoundError,
    ValidationError,
    normalize_email,
    optional_text,
    require_text,
)
from storefront.time_utils import parse_iso_date
from .concurrency import lock_for_update, run_with_retry

USER_MUTABLE_FIELDS = {"email", "password_hash", "is_active"}
PROFILE_FIELDS = {"first_name", "last_name", "phone", "birth_date", "bio"}


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def _ensure_email_free(email: str, exclude_user_id: int | None = None) -> None:
    query = db.session.query(User.id).filter(User.email == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first():
        raise DuplicateKeyError("Email already registered", details={"email": email})


def create_user(email: str, password_hash: str, *, is_active: bool = True) -> User:
    """Register an account. The credential arrives already hashed."""
    email = normalize_email(email)
    password_hash = require_text(password_hash, "password_hash", max_length=255)

    def _op():
        _ensure_email_free(email)
        user = User(email=email, password_hash=password_hash, is_active=bool(is_active))
        db.session.add(user)
        db.session.commit()
        return user

    return run_with_retry(_op)


def update_user(user_id: int, patch: dict) -> User:
    unknown = set(patch) - USER_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        user = get_user(user_id)
        if "email" in patch:
            email = normalize_email(patch["email"])
            if email != user.email:
                _ensure_email_free(email, exclude_user_id=user.id)
            user.email = email
        if "password_hash" in patch:
            user.password_hash = require_text(patch["password_hash"], "password_hash", max_length=255)
        if "is_active" in patch:
            user.is_active = bool(patch["is_active"])
        db.session.commit()
        return user

    return run_with_retry(_op)


def upsert_profile(user_id: int, **fields) -> UserProfile:
    """Create or update the one-to-one profile of a user."""
    unknown = set(fields) - PROFILE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        user = get_user(user_id)
        profile = user.profile
        if profile is None:
            profile = UserProfile(user_id=user.id)
            db.session.add(profile)

        for key, value in fields.items():
            if key == "birth_date":
                try:
                    value = parse_iso_date(value)
                except ValueError:
                    raise ValidationError("birth_date must be an ISO-8601 date")
            elif key == "bio":
                value = optional_text(value, key)
            else:
                value = optional_text(value, key, max_length=UserProfile.__table__.c[key].type.length)
            setattr(profile, key, value)

        db.session.commit()
        return profile

    return run_with_retry(_op)


def delete_user(user_id: int) -> None:
    """
    Delete a user with its profile and addresses, atomically.

    Refused while the user still has orders.
    """
    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

        order_count = db.session.query(Order.id).filter(Order.user_id == user_id).count()
        if order_count:
            current_app.logger.warning("Refused to delete user %s with %d orders", user_id, order_count)
            raise ConstraintViolationError(
                "Cannot delete a user that has orders",
                details={"user_id": user_id, "order_count": order_count},
            )

        db.session.execute(
            update(ProductReview)
            .where(ProductReview.user_id == user_id)
            .values(user_id=None)
            .execution_options(synchronize_session="fetch")
        )

        # profile and addresses go with the user (ORM cascade, FK cascade as backstop)
        db.session.delete(user)
        db.session.commit()
        current_app.logger.info("Deleted user %s", user_id)

    run_with_retry(_op)


# =============================================================================
# ADDRESSES
# =============================================================================

def _clear_primary(user_id: int, keep_address_id: int | None = None) -> None:
    stmt = update(Address).where(Address.user_id == user_id, Address.is_primary.is_(True))
    if keep_address_id is not None:
        stmt = stmt.where(Address.id != keep_address_id)
    db.session.execute(stmt.values(is_primary=False).execution_options(synchronize_session="fetch"))


def add_address(
    user_id: int,
    street: str,
    city: str,
    country: str,
    *,
    label: str | None = None,
    state: str | None = None,
    postal_code: str | None = None,
    is_primary: bool = False,
) -> Address:
    street = require_text(street, "street", max_length=255)
    city = require_text(city, "city", max_length=100)
    country = require_text(country, "country", max_length=100)

    def _op():
        get_user(user_id)
        if is_primary:
            _clear_primary(user_id)

        address = Address(
            user_id=user_id,
            label=optional_text(label, "label", max_length=50),
            street=street,
            city=city,
            state=optional_text(state, "state", max_length=100),
            postal_code=optional_text(postal_code, "postal_code", max_length=30),
            country=country,
            is_primary=bool(is_primary),
        )
        db.session.add(address)
        db.session.commit()
        return address

    return run_with_retry(_op)


def list_addresses(user_id: int) -> list[Address]:
    get_user(user_id)
    return (
        db.session.query(Address)
        .filter(Address.user_id == user_id)
        .order_by(Address.id.asc())
        .all()
    )


def get_primary_address(user_id: int) -> Address | None:
    return (
        db.session.query(Address)
        .filter(Address.user_id == user_id, Address.is_primary.is_(True))
        .first()
    )


def set_primary_address(user_id: int, address_id: int) -> Address:
    """Make address_id the only primary address of user_id."""
    def _op():
        # Lock the user row so two concurrent switches cannot both win
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

        address = (
            db.session.query(Address)
            .filter(Address.id == address_id, Address.user_id == user_id)
            .first()
        )
        if not address:
            raise NotFoundError(
                f"Address {address_id} not found for user {user_id}",
                details={"user_id": user_id, "address_id": address_id},
            )

        _clear_primary(user_id, keep_address_id=address.id)
        address.is_primary = True
        db.session.commit()
        return address

    return run_with_retry(_op)


def delete_address(address_id: int) -> None:
    """Delete an address; orders that pointed at it keep existing with a null reference."""
    def _op():
        address = db.session.get(Address, address_id)
        if not address:
            raise NotFoundError(f"Address {address_id} not found", details={"address_id": address_id})

        db.session.execute(
            update(Order)
            .where(Order.shipping_address_id == address_id)
            .values(shipping_address_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.session.execute(
            update(Order)
            .where(Order.billing_address_id == address_id)
            .values(billing_address_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.session.delete(address)
        db.session.commit()

    run_with_retry(_op)

# Overview: Service-layer operations for product reviews.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, ProductReview, User
from ..validation import NotFoundError, enforce_rules_rating, optional_text
from .concurrency import run_with_retry


def add_review(
    product_id: int,
    user_id: int | None,
    rating: int,
    title: str | None = None,
    body: str | None = None,
) -> ProductReview:
    """
    Record a review. user_id may be None (anonymous, or author since deleted).

    Raises:
        InvalidRatingError: rating outside [1, 5]
        NotFoundError: product or user missing
    """
    rating = enforce_rules_rating(rating)
    title = optional_text(title, "title", max_length=255)
    body = optional_text(body, "body")

    def _op():
        if not db.session.query(Product.id).filter(Product.id == product_id).first():
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if user_id is not None and not db.session.query(User.id).filter(User.id == user_id).first():
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

        review = ProductReview(product_id=product_id, user_id=user_id, rating=rating, title=title, body=body)
        db.session.add(review)
        db.session.commit()
        return review

    return run_with_retry(_op)


def list_reviews(product_id: int) -> list[ProductReview]:
    return (
        db.session.query(ProductReview)
        .filter(ProductReview.product_id == product_id)
        .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        .all()
    )


def average_rating(product_id: int) -> float | None:
    """Mean rating rounded to two places; None when the product has no reviews."""
    avg = (
        db.session.query(func.avg(ProductReview.rating))
        .filter(ProductReview.product_id == product_id)
        .scalar()
    )
    if avg is None:
        return None
    return round(float(avg), 2)

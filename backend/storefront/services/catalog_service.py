# Overview: Service-layer operations for suppliers, categories, products and images.

"""
Catalog Service

CATEGORY TREE:
categories.parent_id is a self-reference. A foreign key cannot stop a
category from becoming its own ancestor, so every parent assignment walks
the ancestor chain of the new parent (bounded by CATEGORY_MAX_DEPTH) and
refuses the change with CycleDetectedError if the category shows up.

PRODUCT DELETION:
- blocked with ReferencedByOrderError while any order item cites the product
- otherwise images, category links, inventory rows and reviews go with it

CATEGORY MEMBERSHIP:
attach/detach model set membership and are idempotent.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, OrderItem, Product, ProductCategory, ProductImage, Supplier
from ..validation import (
    CycleDetectedError,
    DuplicateKeyError,
    NotFoundError,
    ReferencedByOrderError,
    ValidationError,
    enforce_rules_product,
    optional_text,
    require_int,
    require_text,
)
from .concurrency import lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {"sku", "name", "description", "price_cents", "weight_grams", "supplier_id", "is_active"}


def _not_found(entity: str, entity_id: int) -> NotFoundError:
    return NotFoundError(f"{entity} {entity_id} not found", details={f"{entity.lower()}_id": entity_id})


# =============================================================================
# SUPPLIERS
# =============================================================================

def create_supplier(name: str, contact_email: str | None = None, phone: str | None = None) -> Supplier:
    supplier = Supplier(
        name=require_text(name, "name", max_length=255),
        contact_email=optional_text(contact_email, "contact_email", max_length=255),
        phone=optional_text(phone, "phone", max_length=50),
    )

    def _op():
        db.session.add(supplier)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise _not_found("Supplier", supplier_id)
    return supplier


def delete_supplier(supplier_id: int) -> None:
    """Delete a supplier; its products stay in the catalog without one."""
    def _op():
        supplier = get_supplier(supplier_id)
        db.session.execute(
            update(Product)
            .where(Product.supplier_id == supplier_id)
            .values(supplier_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.session.delete(supplier)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# CATEGORIES
# =============================================================================

def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise _not_found("Category", category_id)
    return category


def _ensure_category_unique(name: str, slug: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Category).filter((Category.name == name) | (Category.slug == slug))
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    existing = query.first()
    if existing:
        field = "name" if existing.name == name else "slug"
        raise DuplicateKeyError(
            f"Category {field} already exists",
            details={field: name if field == "name" else slug},
        )


def _check_parent(category_id: int | None, parent_id: int) -> None:
    """
    Walk up from parent_id; refuse if category_id is on the chain.

    The walk is bounded: a chain longer than CATEGORY_MAX_DEPTH can only come
    from corrupted data and is reported as a cycle too.
    """
    max_depth = current_app.config.get("CATEGORY_MAX_DEPTH", 32)
    seen: set[int] = set()
    current_id = parent_id
    depth = 0

    while current_id is not None:
        if current_id == category_id:
            raise CycleDetectedError(
                "Category cannot be placed below itself or one of its descendants",
                details={"category_id": category_id, "parent_id": parent_id},
            )
        if current_id in seen or depth >= max_depth:
            raise CycleDetectedError(
                "Category ancestor chain is cyclic or too deep",
                details={"parent_id": parent_id, "max_depth": max_depth},
            )
        seen.add(current_id)
        depth += 1

        row = db.session.query(Category.parent_id).filter(Category.id == current_id).first()
        if row is None:
            raise _not_found("Category", current_id)
        current_id = row.parent_id


def create_category(name: str, slug: str, parent_id: int | None = None) -> Category:
    name = require_text(name, "name", max_length=150)
    slug = require_text(slug, "slug", max_length=150).lower()

    def _op():
        _ensure_category_unique(name, slug)
        if parent_id is not None:
            # a new category has no descendants yet; this validates the chain itself
            _check_parent(None, parent_id)

        category = Category(name=name, slug=slug, parent_id=parent_id)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def set_category_parent(category_id: int, parent_id: int | None) -> Category:
    """Move a category in the tree (None makes it a root)."""
    def _op():
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if not category:
            raise _not_found("Category", category_id)

        if parent_id is not None:
            _check_parent(category.id, parent_id)

        category.parent_id = parent_id
        db.session.commit()
        return category

    return run_with_retry(_op)


def rename_category(category_id: int, *, name: str | None = None, slug: str | None = None) -> Category:
    def _op():
        category = get_category(category_id)
        new_name = require_text(name, "name", max_length=150) if name is not None else category.name
        new_slug = require_text(slug, "slug", max_length=150).lower() if slug is not None else category.slug
        _ensure_category_unique(new_name, new_slug, exclude_id=category.id)
        category.name = new_name
        category.slug = new_slug
        db.session.commit()
        return category

    return run_with_retry(_op)


def category_ancestors(category_id: int) -> list[Category]:
    """Ancestors nearest-first (parent, grandparent, ... root)."""
    category = get_category(category_id)
    max_depth = current_app.config.get("CATEGORY_MAX_DEPTH", 32)
    ancestors: list[Category] = []
    current = category.parent
    while current is not None:
        if len(ancestors) >= max_depth:
            raise CycleDetectedError(
                "Category ancestor chain is cyclic or too deep",
                details={"category_id": category_id, "max_depth": max_depth},
            )
        ancestors.append(current)
        current = current.parent
    return ancestors


def delete_category(category_id: int) -> None:
    """Delete a category. Children become roots; product links are removed."""
    def _op():
        category = get_category(category_id)
        db.session.execute(
            update(Category)
            .where(Category.parent_id == category_id)
            .values(parent_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# PRODUCTS
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise _not_found("Product", product_id)
    return product


def get_product_by_sku(sku: str) -> Product:
    sku = str(sku or "").strip().upper()
    product = db.session.query(Product).filter(Product.sku == sku).first()
    if not product:
        raise NotFoundError(f"Product with sku {sku!r} not found", details={"sku": sku})
    return product


def _normalize_product_patch(patch: dict) -> dict:
    unknown = set(patch) - PRODUCT_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    clean = dict(patch)
    if "sku" in clean:
        clean["sku"] = require_text(clean["sku"], "sku", max_length=100).upper()
    if "name" in clean:
        clean["name"] = require_text(clean["name"], "name", max_length=255)
    if "description" in clean:
        clean["description"] = optional_text(clean["description"], "description")
    if "is_active" in clean:
        clean["is_active"] = bool(clean["is_active"])
    if clean.get("supplier_id") is not None:
        require_int(clean["supplier_id"], "supplier_id")

    enforce_rules_product(clean)
    return clean


def create_product(
    sku: str,
    name: str,
    price_cents: int,
    *,
    description: str | None = None,
    weight_grams: int | None = None,
    supplier_id: int | None = None,
    is_active: bool = True,
) -> Product:
    patch = _normalize_product_patch({
        "sku": sku,
        "name": name,
        "price_cents": price_cents,
        "description": description,
        "weight_grams": weight_grams,
        "supplier_id": supplier_id,
        "is_active": is_active,
    })

    def _op():
        if db.session.query(Product.id).filter(Product.sku == patch["sku"]).first():
            raise DuplicateKeyError("SKU already exists.", details={"sku": patch["sku"]})
        if patch["supplier_id"] is not None:
            get_supplier(patch["supplier_id"])

        product = Product(**patch)
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict) -> Product:
    """
    Patch a product.

    Price changes only affect future order lines; existing lines carry
    their own unit_price_cents snapshot.
    """
    patch = _normalize_product_patch(patch)

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise _not_found("Product", product_id)

        if "sku" in patch and patch["sku"] != product.sku:
            existing = (
                db.session.query(Product.id)
                .filter(Product.sku == patch["sku"], Product.id != product.id)
                .first()
            )
            if existing:
                raise DuplicateKeyError("SKU already exists.", details={"sku": patch["sku"]})
        if patch.get("supplier_id") is not None:
            get_supplier(patch["supplier_id"])

        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def _order_item_count(product_id: int) -> int:
    return db.session.query(OrderItem.order_id).filter(OrderItem.product_id == product_id).count()


def delete_product(product_id: int) -> None:
    """
    Hard-delete a product that has never been ordered.

    Products cited by order items are refused with ReferencedByOrderError;
    deactivate them with update_product(..., {"is_active": False}) instead.
    """
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise _not_found("Product", product_id)

        order_refs = _order_item_count(product_id)
        if order_refs:
            current_app.logger.warning("Refused to delete product %s cited by %d order items", product_id, order_refs)
            raise ReferencedByOrderError(
                "Product is referenced by orders and cannot be deleted",
                details={"product_id": product_id, "order_item_count": order_refs},
            )

        db.session.delete(product)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # An order line citing the product committed after the count above;
            # the RESTRICT foreign key on order_items refused the delete.
            db.session.rollback()
            current_app.logger.warning("Refused to delete product %s cited by a concurrent order", product_id)
            raise ReferencedByOrderError(
                "Product is referenced by orders and cannot be deleted",
                details={"product_id": product_id},
            ) from exc
        db.session.commit()
        current_app.logger.info("Deleted product %s", product_id)

    run_with_retry(_op)


# =============================================================================
# CATEGORY MEMBERSHIP
# =============================================================================

def attach_category(product_id: int, category_id: int) -> ProductCategory:
    """Add product to category. Attaching an existing pair is a no-op."""
    def _op():
        get_product(product_id)
        get_category(category_id)

        link = db.session.get(ProductCategory, (product_id, category_id))
        if link is None:
            link = ProductCategory(product_id=product_id, category_id=category_id)
            db.session.add(link)
        db.session.commit()
        return link

    return run_with_retry(_op)


def detach_category(product_id: int, category_id: int) -> bool:
    """Remove product from category. Returns False if it was not a member."""
    def _op():
        link = db.session.get(ProductCategory, (product_id, category_id))
        if link is None:
            return False
        db.session.delete(link)
        db.session.commit()
        return True

    return run_with_retry(_op)


def list_product_categories(product_id: int) -> list[Category]:
    get_product(product_id)
    return (
        db.session.query(Category)
        .join(ProductCategory, ProductCategory.category_id == Category.id)
        .filter(ProductCategory.product_id == product_id)
        .order_by(Category.name.asc())
        .all()
    )


def list_category_products(category_id: int) -> list[Product]:
    get_category(category_id)
    return (
        db.session.query(Product)
        .join(ProductCategory, ProductCategory.product_id == Product.id)
        .filter(ProductCategory.category_id == category_id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )


# =============================================================================
# IMAGES
# =============================================================================

def add_product_image(product_id: int, url: str, alt_text: str | None = None, sort_order: int = 0) -> ProductImage:
    url = require_text(url, "url", max_length=2048)
    sort_order = require_int(sort_order, "sort_order")
    if sort_order < 0:
        raise ValidationError("sort_order must be >= 0")

    def _op():
        get_product(product_id)
        image = ProductImage(
            product_id=product_id,
            url=url,
            alt_text=optional_text(alt_text, "alt_text", max_length=255),
            sort_order=sort_order,
        )
        db.session.add(image)
        db.session.commit()
        return image

    return run_with_retry(_op)


def list_product_images(product_id: int) -> list[ProductImage]:
    get_product(product_id)
    return (
        db.session.query(ProductImage)
        .filter(ProductImage.product_id == product_id)
        .order_by(ProductImage.sort_order.asc(), ProductImage.id.asc())
        .all()
    )

from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_email": self.contact_email,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }


class Category(db.Model):
    """
    Category tree node.

    parent_id is a plain self-reference; the foreign key cannot express
    "not an ancestor of itself", so catalog_service walks the ancestor chain
    on every parent change. Deleting a parent turns its children into roots.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    slug = db.Column(db.String(150), nullable=False, unique=True)
    parent_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    parent = db.relationship(
        "Category",
        remote_side=[id],
        backref=db.backref("children", lazy=True, passive_deletes=True),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r} parent_id={self.parent_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "parent_id": self.parent_id,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Sellable catalog item.

    DELETE POLICY:
    - images, category links, inventory rows, reviews: cascade
    - order items: restrict (purchase history must keep its product)
    - supplier: products outlive it (supplier_id set null)

    Prices are authoritative in cents. Order lines snapshot price_cents at
    order time, so later price edits never touch historical orders.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        db.CheckConstraint("weight_grams IS NULL OR weight_grams >= 0", name="ck_products_weight_nonneg"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(100), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)
    weight_grams = db.Column(db.Integer, nullable=True)

    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True, passive_deletes=True))
    images = db.relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.sort_order",
    )
    category_links = db.relationship(
        "ProductCategory",
        back_populates="product",
        cascade="all, delete-orphan",
    )
    inventory_rows = db.relationship(
        "InventoryRow",
        back_populates="product",
        cascade="all, delete-orphan",
    )
    reviews = db.relationship(
        "ProductReview",
        back_populates="product",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "weight_grams": self.weight_grams,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductCategory(db.Model):
    """Join entity for product <-> category set membership."""
    __tablename__ = "product_categories"

    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True,
    )
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )

    product = db.relationship("Product", back_populates="category_links")
    category = db.relationship(
        "Category",
        backref=db.backref("product_links", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "category_id": self.category_id}


class ProductImage(db.Model):
    __tablename__ = "product_images"
    __table_args__ = (
        db.CheckConstraint("sort_order >= 0", name="ck_product_images_sort_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = db.Column(db.String(2048), nullable=False)
    alt_text = db.Column(db.String(255), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="images")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "url": self.url,
            "alt_text": self.alt_text,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
        }

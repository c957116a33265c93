from __future__ import annotations

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z, utcnow


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Sellable item or raw ingredient.

    WHY: One table serves both roles. A stock-tracked product (manage_stock)
    carries its own stock; a recipe-based product has no stock and consumes
    its Recipe ingredients instead.

    Stock is kept in whole units (e.g. one loaf). yield_per_unit is how many
    portions one unit produces; recipes reference portions.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_current >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_manage_stock", "manage_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost_unit = db.Column(db.Numeric(12, 4), nullable=False, default=0)

    manage_stock = db.Column(db.Boolean, nullable=False, default=False)
    stock_current = db.Column(db.Numeric(18, 8), nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=True)

    # Portions produced per stock unit (1 = no conversion)
    yield_per_unit = db.Column(db.Numeric(12, 4), nullable=False, default=1)
    portion_name = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    recipe_items = db.relationship(
        "Recipe",
        foreign_keys="Recipe.product_id",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "price": as_number(self.price),
            "cost_unit": as_number(self.cost_unit),
            "manage_stock": self.manage_stock,
            "stock_current": as_number(self.stock_current),
            "unit": self.unit,
            "yield_per_unit": as_number(self.yield_per_unit),
            "portion_name": self.portion_name,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class Recipe(db.Model):
    """Bill-of-materials edge: portions of an ingredient consumed per unit sold."""
    __tablename__ = "recipes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_recipes_product_ingredient"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    # Not a hard FK: recipes may outlive a deleted ingredient and are skipped then
    ingredient_id = db.Column(db.Integer, nullable=False, index=True)
    quantity_required = db.Column(db.Numeric(12, 4), nullable=False)

    product = db.relationship("Product", foreign_keys=[product_id], back_populates="recipe_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ingredient_id": self.ingredient_id,
            "quantity_required": as_number(self.quantity_required),
        }


class CafeTable(db.Model):
    """Dining table; occupied while a pending sale is attached to it."""
    __tablename__ = "cafe_tables"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="free")  # free, occupied
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "updated_at": to_utc_z(self.updated_at),
        }

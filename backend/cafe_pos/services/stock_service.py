# Overview: Service-layer operations for stock; batch validation, locked deduction and costing.

"""
Stock Validation & Deduction Engine

WHY: Two devices can sell the last croissant at the same moment. Stock
must never go negative and a sale must never be half-applied.

DESIGN PRINCIPLES:
- Requirements are accumulated per stock entity across the whole batch
  before anything is compared (see recipe_service.accumulate).
- validate_stock_for_items() is a read-only pre-check. The write path,
  validate_and_deduct(), locks the affected product rows (sorted by id to
  avoid lock-order deadlocks), re-reads them, re-validates and deducts in
  the caller's transaction.
- Deduction floors at zero: stock_current = max(0, stock_current - delta).
  Stock is stored at 8 places and the check forgives STOCK_TOLERANCE, so
  the last slice of a loaf is not lost to per-sale rounding.
- Every deducted entity emits stock:change after commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable

from ..extensions import db
from ..models import Product
from ..money import ZERO, quantize_stock, to_decimal
from .concurrency import lock_for_update, run_with_retry
from .realtime_service import emit_stock_change
from . import recipe_service
from .recipe_service import LineRequest, Requirement, yield_of

logger = logging.getLogger(__name__)

ONE = Decimal("1")
DISPLAY = Decimal("0.01")
# Rounding residue left by fractional portions; a shortfall this small still sells
STOCK_TOLERANCE = Decimal("0.0001")

STOCK_REASONS = ("sale", "recipe_deduction", "admin_update", "initial_stock")


class StockError(Exception):
    """Base class for stock errors."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class InsufficientStockError(StockError):
    """
    One or more stock entities cannot cover the batch.

    `shortfalls` is a list of {productName, ingredientName, required,
    available, unit} in display units.
    """

    def __init__(self, shortfalls: list[dict]):
        super().__init__(format_validation_errors(shortfalls))
        self.shortfalls = shortfalls


@dataclass(frozen=True)
class StockCheck:
    is_valid: bool
    errors: list

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "errors": self.errors,
            "message": format_validation_errors(self.errors) if self.errors else None,
        }


@dataclass(frozen=True)
class StockChange:
    product_id: int
    product_name: str
    previous_stock: Decimal
    new_stock: Decimal
    reason: str


# =============================================================================
# LOOKUPS
# =============================================================================

def _session_lookup():
    cache: dict[int, Product | None] = {}

    def get_product(product_id: int):
        if product_id not in cache:
            cache[product_id] = db.session.get(Product, product_id)
        return cache[product_id]

    return get_product


def _lines(items: Iterable) -> list[LineRequest]:
    return [recipe_service.line_from_item(item) for item in items]


def _lock_entities(entity_ids) -> None:
    """SELECT ... FOR UPDATE the product rows, in id order, refreshing stale state."""
    if not entity_ids:
        return
    query = (
        db.session.query(Product)
        .filter(Product.id.in_(sorted(entity_ids)))
        .order_by(Product.id)
        .populate_existing()
    )
    lock_for_update(query).all()


# =============================================================================
# VALIDATION
# =============================================================================

def _round_display(value: Decimal) -> float:
    return float(value.quantize(DISPLAY))


def _shortfall(requirement: Requirement) -> dict | None:
    entity = requirement.entity
    stock = to_decimal(entity.stock_current, ZERO)
    if stock + STOCK_TOLERANCE >= requirement.stock_units:
        return None

    yield_per_unit = yield_of(entity)
    if requirement.via_recipe and yield_per_unit > ONE:
        required = requirement.stock_units * yield_per_unit
        available = (stock * yield_per_unit).to_integral_value(rounding=ROUND_FLOOR)
        unit = entity.portion_name or "portions"
    else:
        required = requirement.stock_units
        available = stock
        unit = entity.unit or "unit"

    return {
        "productName": ", ".join(requirement.product_names),
        "ingredientName": entity.name if requirement.via_recipe else None,
        "productId": entity.id,
        "required": _round_display(required),
        "available": _round_display(available),
        "unit": unit,
    }


def _check(requirements: dict[int, Requirement]) -> list[dict]:
    errors = []
    for entity_id in sorted(requirements):
        shortfall = _shortfall(requirements[entity_id])
        if shortfall:
            errors.append(shortfall)
    return errors


def validate_stock_for_items(items: Iterable) -> StockCheck:
    """
    Read-only sufficiency check for a batch of lines.

    Safe to call outside a transaction as a pre-check; it takes no locks.
    """
    requirements = recipe_service.accumulate(_lines(items), _session_lookup())
    errors = _check(requirements)
    return StockCheck(is_valid=not errors, errors=errors)


def format_validation_errors(errors: list[dict]) -> str:
    if not errors:
        return ""
    lines = ["Insufficient stock:"]
    for error in errors:
        name = error.get("ingredientName") or error.get("productName")
        line = (
            f"{name}: need {error['required']:g} {error['unit']}, "
            f"only {error['available']:g} {error['unit']} available"
        )
        if error.get("ingredientName"):
            line += f" (for {error['productName']})"
        lines.append(line)
    return "\n".join(lines)


# =============================================================================
# DEDUCTION
# =============================================================================

def _apply(requirements: dict[int, Requirement]) -> list[StockChange]:
    changes = []
    for entity_id in sorted(requirements):
        requirement = requirements[entity_id]
        product = requirement.entity
        previous = to_decimal(product.stock_current, ZERO)
        new_stock = quantize_stock(max(ZERO, previous - requirement.stock_units))
        product.stock_current = new_stock

        reason = "recipe_deduction" if requirement.via_recipe else "sale"
        logger.info(
            "Stock %s (%s): %s -> %s [%s]",
            product.id, product.name, previous, new_stock, reason,
        )
        emit_stock_change(product, previous, new_stock, reason)
        changes.append(StockChange(product.id, product.name, previous, new_stock, reason))
    return changes


def _locked_requirements(lines: list[LineRequest]) -> dict[int, Requirement]:
    get_product = _session_lookup()
    entity_ids = recipe_service.accumulate(lines, get_product).keys()
    _lock_entities(entity_ids)
    # Re-resolve against the refreshed rows
    return recipe_service.accumulate(lines, _session_lookup())


def validate_and_deduct(items: Iterable) -> list[StockChange]:
    """
    Lock, re-validate and deduct in the caller's transaction.

    Raises InsufficientStockError before writing anything if any entity
    falls short. The caller owns commit / rollback.
    """
    lines = _lines(items)
    requirements = _locked_requirements(lines)

    errors = _check(requirements)
    if errors:
        raise InsufficientStockError(errors)

    return _apply(requirements)


def deduct_stock_for_items(items: Iterable) -> list[StockChange]:
    """
    Deduct without validating, flooring every entity at zero.

    The caller owns commit / rollback.
    """
    return _apply(_locked_requirements(_lines(items)))


def calculate_sale_cost(items: Iterable) -> Decimal:
    return recipe_service.calculate_cost(_lines(items), _session_lookup())


# =============================================================================
# ADMINISTRATION
# =============================================================================

def set_stock(product_id: int, new_stock, reason: str = "admin_update") -> Product:
    """
    Set a stock-tracked product's stock to an absolute value.

    Raises StockError for unknown products, non-tracked products, negative
    values or an unsupported reason.
    """
    if reason not in ("admin_update", "initial_stock"):
        raise StockError(f"Unsupported stock reason: {reason}")

    value = to_decimal(new_stock)
    if value is None or value < 0:
        raise StockError("stock_current must be a non-negative number")

    def _do():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise StockError("Product not found", 404)
        if not product.manage_stock:
            raise StockError("Product does not track stock")

        previous = to_decimal(product.stock_current, ZERO)
        product.stock_current = quantize_stock(value)
        logger.info("Stock %s (%s): %s -> %s [%s]", product.id, product.name, previous, value, reason)
        emit_stock_change(product, previous, product.stock_current, reason)
        db.session.commit()
        return product

    return run_with_retry(_do)

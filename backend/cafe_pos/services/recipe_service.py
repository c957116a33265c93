# Overview: Recipe expansion; resolves what stock a sold line actually consumes.

"""
Recipe Expansion Engine

WHY: A latte is not stocked; milk and coffee are. Selling a recipe-based
product consumes its ingredients, adjusted by per-line modifiers ("no milk",
"extra shot") and converted from recipe portions to stock units.

DESIGN PRINCIPLES:
- Pure: every function takes a product lookup callable instead of querying,
  so the same resolution runs against locked rows, plain reads, or fixtures.
- Deterministic: validation, deduction and costing resolve the same input
  to the same consumption.
- Recipes are one level deep. Ingredients are leaf stock entities.
- Modifiers are parsed once at the boundary into typed values.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional, Union

from ..money import to_decimal

logger = logging.getLogger(__name__)

ONE = Decimal("1")
ZERO = Decimal("0")


# =============================================================================
# MODIFIERS
# =============================================================================

@dataclass(frozen=True)
class ExcludedModifier:
    ingredient_id: int


@dataclass(frozen=True)
class ExtraModifier:
    ingredient_id: int
    count: Decimal = ONE


Modifier = Union[ExcludedModifier, ExtraModifier]


def _parse_extra_count(raw) -> Decimal:
    # Absent, non-numeric or zero counts mean one extra serving
    count = to_decimal(raw)
    if count is None or count == 0:
        return ONE
    return count


def parse_modifiers(raw) -> list[Modifier]:
    """
    Parse a device modifier payload (JSON string or list of dicts).

    Malformed entries are dropped; an unparseable payload means no modifiers.
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unparseable modifiers payload")
            return []

    if not isinstance(raw, list):
        return []

    modifiers: list[Modifier] = []
    for entry in raw:
        if isinstance(entry, (ExcludedModifier, ExtraModifier)):
            modifiers.append(entry)
            continue
        if not isinstance(entry, dict):
            continue

        try:
            ingredient_id = int(entry.get("ingredient_id"))
        except (TypeError, ValueError):
            continue

        kind = entry.get("type")
        if kind == "excluded":
            modifiers.append(ExcludedModifier(ingredient_id))
        elif kind == "extra":
            modifiers.append(ExtraModifier(ingredient_id, _parse_extra_count(entry.get("extra_count"))))

    return modifiers


def modifier_multiplier(modifiers: Iterable[Modifier], ingredient_id: int) -> Decimal:
    """
    Consumption multiplier for one ingredient.

    No entry -> 1, excluded -> 0, extra -> 1 + count. The first entry for the
    ingredient wins.
    """
    for modifier in modifiers:
        if modifier.ingredient_id != ingredient_id:
            continue
        if isinstance(modifier, ExcludedModifier):
            return ZERO
        return ONE + modifier.count
    return ONE


# =============================================================================
# CONSUMPTION
# =============================================================================

@dataclass(frozen=True)
class LineRequest:
    """One sold line, normalized: product, quantity and parsed modifiers."""
    product_id: int
    quantity: Decimal
    modifiers: tuple = ()


@dataclass(frozen=True)
class Consumption:
    """
    Stock consumed by one line from one entity.

    `stock_units` is in the entity's stock unit; `portions` is what the
    recipe asked for before yield conversion (equal for direct products).
    """
    entity_id: int
    stock_units: Decimal
    portions: Decimal
    source_product_id: int
    source_product_name: str
    via_recipe: bool
    stock_tracked: bool


@dataclass
class Requirement:
    """Accumulated need for one stock entity across a whole batch."""
    entity: object
    stock_units: Decimal = ZERO
    portions: Decimal = ZERO
    via_recipe: bool = False
    product_names: list[str] = field(default_factory=list)

    def add(self, consumption: Consumption) -> None:
        self.stock_units += consumption.stock_units
        self.portions += consumption.portions
        self.via_recipe = self.via_recipe or consumption.via_recipe
        if consumption.source_product_name not in self.product_names:
            self.product_names.append(consumption.source_product_name)


ProductLookup = Callable[[int], Optional[object]]


def yield_of(product) -> Decimal:
    value = to_decimal(product.yield_per_unit, ONE)
    return value if value > 0 else ONE


def portions_to_stock_units(portions: Decimal, ingredient) -> Decimal:
    """Recipes count portions; stock is kept in whole units."""
    yield_per_unit = yield_of(ingredient)
    if yield_per_unit > ONE:
        return portions / yield_per_unit
    return portions


def resolve_consumption(
    product_id: int,
    quantity: Decimal,
    modifiers: Iterable[Modifier],
    get_product: ProductLookup,
) -> list[Consumption]:
    """
    Resolve one sold line into the entities it consumes.

    A stock-tracked product consumes itself. A recipe-based product consumes
    each recipe ingredient: quantity_required x quantity x multiplier
    portions, converted to stock units by the ingredient's yield. Excluded
    ingredients and ingredients missing from the catalog are skipped.
    Entries for non-tracked ingredients are returned with
    stock_tracked=False so costing can still use them.
    """
    product = get_product(product_id)
    if product is None:
        logger.warning("Product %s not found; line consumes nothing", product_id)
        return []

    quantity = to_decimal(quantity, ZERO)

    if product.manage_stock:
        return [Consumption(
            entity_id=product.id,
            stock_units=quantity,
            portions=quantity,
            source_product_id=product.id,
            source_product_name=product.name,
            via_recipe=False,
            stock_tracked=True,
        )]

    modifiers = tuple(modifiers or ())
    consumed = []
    for recipe in product.recipe_items:
        multiplier = modifier_multiplier(modifiers, recipe.ingredient_id)
        if multiplier == 0:
            continue

        ingredient = get_product(recipe.ingredient_id)
        if ingredient is None:
            logger.warning(
                "Ingredient %s of product %s (%s) not found; skipping",
                recipe.ingredient_id, product.id, product.name,
            )
            continue

        portions = to_decimal(recipe.quantity_required, ZERO) * quantity * multiplier
        consumed.append(Consumption(
            entity_id=ingredient.id,
            stock_units=portions_to_stock_units(portions, ingredient),
            portions=portions,
            source_product_id=product.id,
            source_product_name=product.name,
            via_recipe=True,
            stock_tracked=bool(ingredient.manage_stock),
        ))

    return consumed


def accumulate(lines: Iterable[LineRequest], get_product: ProductLookup) -> dict[int, Requirement]:
    """
    Sum stock-tracked consumption per entity across every line of a batch.

    Two lines drawing on the same ingredient are checked and deducted as one
    requirement, never independently.
    """
    requirements: dict[int, Requirement] = {}
    for line in lines:
        for consumption in resolve_consumption(line.product_id, line.quantity, line.modifiers, get_product):
            if not consumption.stock_tracked:
                continue
            requirement = requirements.get(consumption.entity_id)
            if requirement is None:
                requirement = Requirement(entity=get_product(consumption.entity_id))
                requirements[consumption.entity_id] = requirement
            requirement.add(consumption)
    return requirements


def calculate_cost(lines: Iterable[LineRequest], get_product: ProductLookup) -> Decimal:
    """
    Cost of goods for a set of lines: cost_unit x stock units consumed.

    Direct products cost cost_unit x quantity. Recipe lines cost every
    resolved ingredient, tracked or not.
    """
    total = ZERO
    for line in lines:
        for consumption in resolve_consumption(line.product_id, line.quantity, line.modifiers, get_product):
            entity = get_product(consumption.entity_id)
            cost_unit = to_decimal(getattr(entity, "cost_unit", None), ZERO)
            total += cost_unit * consumption.stock_units
    return total


def line_from_item(item) -> LineRequest:
    """Normalize a SaleItem row or a plain dict into a LineRequest."""
    if isinstance(item, LineRequest):
        return item
    if isinstance(item, dict):
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        raw_modifiers = item.get("modifiers")
    else:
        product_id = item.product_id
        quantity = item.quantity
        raw_modifiers = item.modifiers
    return LineRequest(
        product_id=int(product_id),
        quantity=to_decimal(quantity, ZERO),
        modifiers=tuple(parse_modifiers(raw_modifiers)),
    )

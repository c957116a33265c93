"""
Recipe expansion tests.

The engine is pure, so these tests run against plain namespace objects
instead of database rows.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from cafe_pos.services.recipe_service import (
    ExcludedModifier,
    ExtraModifier,
    LineRequest,
    accumulate,
    calculate_cost,
    line_from_item,
    modifier_multiplier,
    parse_modifiers,
    portions_to_stock_units,
    resolve_consumption,
)


def product(id, name, *, manage_stock=True, stock="0", cost_unit="0",
            yield_per_unit="1", recipe=()):
    return SimpleNamespace(
        id=id,
        name=name,
        manage_stock=manage_stock,
        stock_current=Decimal(stock),
        cost_unit=Decimal(cost_unit),
        yield_per_unit=Decimal(yield_per_unit),
        recipe_items=[
            SimpleNamespace(ingredient_id=ingredient_id, quantity_required=Decimal(qty))
            for ingredient_id, qty in recipe
        ],
    )


@pytest.fixture
def products():
    """
    1 milk (l), 2 espresso shot, 3 bread loaf (6 slices, cost 600),
    10 latte = 0.25 milk + 1 espresso, 11 toast = 0.1667 bread,
    12 soda sold directly, 13 latte with a deleted ingredient.
    """
    rows = [
        product(1, "Milk", stock="2", cost_unit="4000"),
        product(2, "Espresso", stock="100", cost_unit="500"),
        product(3, "Bread", stock="10", cost_unit="600", yield_per_unit="6"),
        product(4, "Sugar", manage_stock=False, cost_unit="10"),
        product(10, "Latte", manage_stock=False, recipe=[(1, "0.25"), (2, "1"), (4, "2")]),
        product(11, "Toast", manage_stock=False, recipe=[(3, "0.1667")]),
        product(12, "Soda", stock="5", cost_unit="1500"),
        product(13, "Ghost latte", manage_stock=False, recipe=[(99, "1"), (2, "1")]),
    ]
    return {p.id: p for p in rows}


def lookup(products):
    return products.get


# =============================================================================
# MODIFIERS
# =============================================================================

class TestModifiers:

    def test_parse_json_string(self):
        mods = parse_modifiers('[{"type": "excluded", "ingredient_id": 1},'
                               ' {"type": "extra", "ingredient_id": "2", "extra_count": 2}]')
        assert mods == [ExcludedModifier(1), ExtraModifier(2, Decimal("2"))]

    def test_extra_count_defaults_to_one(self):
        assert parse_modifiers([{"type": "extra", "ingredient_id": 5}]) == [ExtraModifier(5, Decimal("1"))]
        assert parse_modifiers([{"type": "extra", "ingredient_id": 5, "extra_count": 0}]) == [
            ExtraModifier(5, Decimal("1"))
        ]
        assert parse_modifiers([{"type": "extra", "ingredient_id": 5, "extra_count": "lots"}]) == [
            ExtraModifier(5, Decimal("1"))
        ]

    def test_malformed_entries_dropped(self):
        mods = parse_modifiers([
            "nonsense",
            {"type": "excluded"},
            {"type": "unknown", "ingredient_id": 1},
            {"type": "excluded", "ingredient_id": "abc"},
            {"type": "excluded", "ingredient_id": 7},
        ])
        assert mods == [ExcludedModifier(7)]

    def test_unparseable_payload_means_no_modifiers(self):
        assert parse_modifiers("{not json") == []
        assert parse_modifiers(None) == []
        assert parse_modifiers("") == []
        assert parse_modifiers({"type": "extra"}) == []

    def test_multiplier(self):
        assert modifier_multiplier([], 1) == 1
        assert modifier_multiplier([ExcludedModifier(1)], 1) == 0
        assert modifier_multiplier([ExtraModifier(1, Decimal("1"))], 1) == 2
        assert modifier_multiplier([ExtraModifier(1, Decimal("3"))], 1) == 4
        assert modifier_multiplier([ExtraModifier(2, Decimal("1"))], 1) == 1

    def test_first_entry_wins(self):
        mods = [ExcludedModifier(1), ExtraModifier(1, Decimal("1"))]
        assert modifier_multiplier(mods, 1) == 0


# =============================================================================
# CONSUMPTION
# =============================================================================

class TestResolveConsumption:

    def test_direct_product_consumes_itself(self, products):
        [c] = resolve_consumption(12, Decimal("3"), (), lookup(products))
        assert c.entity_id == 12
        assert c.stock_units == Decimal("3")
        assert c.via_recipe is False

    def test_recipe_expands_ingredients(self, products):
        consumed = resolve_consumption(10, Decimal("2"), (), lookup(products))
        by_entity = {c.entity_id: c for c in consumed}
        assert by_entity[1].stock_units == Decimal("0.50")
        assert by_entity[2].stock_units == Decimal("2")
        assert by_entity[4].stock_tracked is False
        assert all(c.via_recipe for c in consumed)

    def test_yield_converts_portions_to_stock_units(self, products):
        """Two portions of an ingredient yielding six per unit is a third of a unit."""
        bread = products[3]
        assert portions_to_stock_units(Decimal("2"), bread) == Decimal("2") / Decimal("6")
        assert portions_to_stock_units(Decimal("2"), products[1]) == Decimal("2")

    def test_excluded_ingredient_skipped(self, products):
        consumed = resolve_consumption(10, Decimal("1"), (ExcludedModifier(1),), lookup(products))
        assert 1 not in {c.entity_id for c in consumed}

    def test_extra_doubles_consumption(self, products):
        consumed = resolve_consumption(10, Decimal("1"), (ExtraModifier(2, Decimal("1")),), lookup(products))
        shots = [c for c in consumed if c.entity_id == 2][0]
        assert shots.stock_units == Decimal("2")

    def test_missing_ingredient_skipped(self, products):
        consumed = resolve_consumption(13, Decimal("1"), (), lookup(products))
        assert [c.entity_id for c in consumed] == [2]

    def test_missing_product_consumes_nothing(self, products):
        assert resolve_consumption(404, Decimal("1"), (), lookup(products)) == []


class TestAccumulate:

    def test_same_ingredient_summed_across_lines(self, products):
        lines = [
            LineRequest(10, Decimal("2")),
            LineRequest(10, Decimal("4"), (ExtraModifier(1, Decimal("1")),)),
        ]
        requirements = accumulate(lines, lookup(products))
        # 2 x 0.25 + 4 x 0.25 x 2
        assert requirements[1].stock_units == Decimal("2.50")
        assert requirements[1].product_names == ["Latte"]
        assert requirements[1].via_recipe is True

    def test_untracked_ingredients_not_required(self, products):
        requirements = accumulate([LineRequest(10, Decimal("1"))], lookup(products))
        assert 4 not in requirements


class TestCost:

    def test_direct_product_cost(self, products):
        assert calculate_cost([LineRequest(12, Decimal("2"))], lookup(products)) == Decimal("3000")

    def test_recipe_cost_includes_untracked_ingredients(self, products):
        # 0.25 x 4000 + 1 x 500 + 2 x 10
        assert calculate_cost([LineRequest(10, Decimal("1"))], lookup(products)) == Decimal("1520.00")

    def test_yield_scenario(self, products):
        """Selling two toasts uses 0.3334 slices, about 0.0556 loaves."""
        [c] = resolve_consumption(11, Decimal("2"), (), lookup(products))
        assert c.stock_units.quantize(Decimal("0.0001")) == Decimal("0.0556")
        cost = calculate_cost([LineRequest(11, Decimal("2"))], lookup(products))
        assert cost.quantize(Decimal("0.01")) == Decimal("33.34")


class TestLineFromItem:

    def test_from_dict(self):
        line = line_from_item({"product_id": "10", "quantity": 2.5,
                               "modifiers": '[{"type": "excluded", "ingredient_id": 1}]'})
        assert line == LineRequest(10, Decimal("2.5"), (ExcludedModifier(1),))

    def test_from_row(self):
        row = SimpleNamespace(product_id=12, quantity=Decimal("1"), modifiers=None)
        assert line_from_item(row) == LineRequest(12, Decimal("1"), ())

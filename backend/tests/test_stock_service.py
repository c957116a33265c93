"""
Stock validation and deduction tests.

Catalog (see conftest): soda 5 unid, milk 2 l, espresso 100 shots,
bread 10 loaves of 6 slices; latte = 0.25 milk + 1 espresso,
sandwich = 1 slice of bread.
"""

from decimal import Decimal

import pytest

from cafe_pos.extensions import db
from cafe_pos.models import Product
from cafe_pos.services import stock_service
from cafe_pos.services.stock_service import InsufficientStockError, StockError

from factories import events_named


def line(product, quantity, modifiers=None):
    return {"product_id": product.id, "quantity": quantity, "modifiers": modifiers}


def stock_of(product):
    return db.session.get(Product, product.id).stock_current


# =============================================================================
# READ-ONLY VALIDATION
# =============================================================================

class TestValidateStock:

    def test_sufficient_stock(self, catalog):
        check = stock_service.validate_stock_for_items([line(catalog.latte, 2), line(catalog.soda, 5)])
        assert check.is_valid
        assert check.errors == []
        assert check.to_dict() == {"isValid": True, "errors": [], "message": None}

    def test_direct_product_shortfall(self, catalog):
        check = stock_service.validate_stock_for_items([line(catalog.soda, 6)])
        assert not check.is_valid
        [error] = check.errors
        assert error["productName"] == "Soda"
        assert error["ingredientName"] is None
        assert error["required"] == 6
        assert error["available"] == 5
        assert error["unit"] == "unid"

    def test_yield_ingredient_reported_in_portions(self, catalog):
        check = stock_service.validate_stock_for_items([line(catalog.sandwich, 61)])
        [error] = check.errors
        assert error["ingredientName"] == "Bread"
        assert error["productName"] == "Sandwich"
        assert error["required"] == 61
        assert error["available"] == 60
        assert error["unit"] == "slices"

    def test_requirements_accumulate_across_lines(self, catalog):
        """Each line fits on its own; together they need 2.25 l of 2 l."""
        items = [line(catalog.latte, 5), line(catalog.latte, 4)]
        for item in items:
            assert stock_service.validate_stock_for_items([item]).is_valid

        check = stock_service.validate_stock_for_items(items)
        [error] = check.errors
        assert error["ingredientName"] == "Milk"
        assert error["required"] == 2.25
        assert error["available"] == 2
        assert error["unit"] == "l"

    def test_excluded_ingredient_not_required(self, catalog):
        no_milk = [{"type": "excluded", "ingredient_id": catalog.milk.id}]
        assert stock_service.validate_stock_for_items([line(catalog.latte, 20, no_milk)]).is_valid

    def test_untracked_direct_product_always_valid(self, catalog):
        loose = stock_service.validate_stock_for_items([line(catalog.latte, 1)])
        assert loose.is_valid

    def test_message_format(self, catalog):
        check = stock_service.validate_stock_for_items([line(catalog.latte, 9), line(catalog.soda, 7)])
        message = check.to_dict()["message"]
        assert message.splitlines() == [
            "Insufficient stock:",
            "Soda: need 7 unid, only 5 unid available",
            "Milk: need 2.25 l, only 2 l available (for Latte)",
        ]


# =============================================================================
# DEDUCTION
# =============================================================================

class TestValidateAndDeduct:

    def test_deducts_recipe_ingredients(self, catalog, events):
        changes = stock_service.validate_and_deduct([line(catalog.latte, 2)])
        db.session.commit()

        assert {c.product_id for c in changes} == {catalog.milk.id, catalog.espresso.id}
        assert stock_of(catalog.milk) == Decimal("1.5")
        assert stock_of(catalog.espresso) == Decimal("98")

        published = events_named(events, "stock:change")
        assert {p["reason"] for p in published} == {"recipe_deduction"}
        milk_event = [p for p in published if p["productId"] == catalog.milk.id][0]
        assert milk_event["previousStock"] == 2
        assert milk_event["newStock"] == 1.5
        assert "timestamp" in milk_event

    def test_direct_sale_reason(self, catalog, events):
        stock_service.validate_and_deduct([line(catalog.soda, 2)])
        db.session.commit()

        assert stock_of(catalog.soda) == Decimal("3")
        [change] = events_named(events, "stock:change")
        assert change["reason"] == "sale"

    def test_yield_conversion(self, catalog):
        stock_service.validate_and_deduct([line(catalog.sandwich, 3)])
        db.session.commit()
        assert stock_of(catalog.bread) == Decimal("9.5")

    def test_every_slice_of_a_loaf_sells(self, catalog):
        """Six one-slice sales empty one loaf; the seventh is refused."""
        stock_service.set_stock(catalog.bread.id, 1)

        for _ in range(6):
            stock_service.validate_and_deduct([line(catalog.sandwich, 1)])
            db.session.commit()

        assert stock_of(catalog.bread) == 0
        with pytest.raises(InsufficientStockError):
            stock_service.validate_and_deduct([line(catalog.sandwich, 1)])
        db.session.rollback()

    def test_shortfall_writes_nothing(self, catalog, events):
        with pytest.raises(InsufficientStockError) as exc:
            stock_service.validate_and_deduct([line(catalog.soda, 1), line(catalog.latte, 9)])
        db.session.rollback()

        assert exc.value.shortfalls[0]["ingredientName"] == "Milk"
        assert stock_of(catalog.soda) == Decimal("5")
        assert stock_of(catalog.milk) == Decimal("2")
        assert events == []

    def test_rollback_discards_events(self, catalog, events):
        stock_service.validate_and_deduct([line(catalog.soda, 1)])
        db.session.rollback()

        assert stock_of(catalog.soda) == Decimal("5")
        assert events == []


class TestFloorAtZero:

    def test_unvalidated_deduction_never_goes_negative(self, catalog):
        stock_service.deduct_stock_for_items([line(catalog.soda, 8), line(catalog.latte, 10)])
        db.session.commit()

        assert stock_of(catalog.soda) == 0
        assert stock_of(catalog.milk) == 0
        assert stock_of(catalog.espresso) == Decimal("90")


class TestCost:

    def test_sale_cost(self, catalog):
        # 2 sodas at 1500 + one latte (0.25 l at 4000 + 1 shot at 500)
        cost = stock_service.calculate_sale_cost([line(catalog.soda, 2), line(catalog.latte, 1)])
        assert cost == Decimal("4500")


# =============================================================================
# ADMINISTRATION
# =============================================================================

class TestSetStock:

    def test_set_stock(self, catalog, events):
        product = stock_service.set_stock(catalog.soda.id, 12)
        assert product.stock_current == Decimal("12")

        [change] = events_named(events, "stock:change")
        assert change["reason"] == "admin_update"
        assert change["previousStock"] == 5
        assert change["newStock"] == 12

    def test_initial_stock_reason(self, catalog, events):
        stock_service.set_stock(catalog.milk.id, "4.5", reason="initial_stock")
        assert events_named(events, "stock:change")[0]["reason"] == "initial_stock"

    def test_rejects_bad_input(self, catalog):
        with pytest.raises(StockError):
            stock_service.set_stock(catalog.soda.id, -1)
        with pytest.raises(StockError):
            stock_service.set_stock(catalog.soda.id, 3, reason="sale")
        with pytest.raises(StockError):
            stock_service.set_stock(catalog.latte.id, 3)

    def test_unknown_product(self, catalog):
        with pytest.raises(StockError) as exc:
            stock_service.set_stock(9999, 3)
        assert exc.value.status_code == 404

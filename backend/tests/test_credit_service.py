"""
Credit ledger tests: FIFO allocation, overpayment, opening balances and
the debt invariant.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from cafe_pos.extensions import db
from cafe_pos.models import CreditTransaction, Customer, Movement
from cafe_pos.services import credit_service
from cafe_pos.services.credit_service import CreditError
from cafe_pos.time_utils import utcnow

from factories import events_named


def add_charge(customer, amount, minutes_ago):
    charge = CreditTransaction(
        customer_id=customer.id,
        type="charge",
        amount=Decimal(amount),
        remaining=Decimal(amount),
        created_at=utcnow() - timedelta(minutes=minutes_ago),
    )
    db.session.add(charge)
    customer.current_debt = customer.current_debt + Decimal(amount)
    db.session.commit()
    return charge


def ledger_balance(customer_id):
    rows = db.session.query(CreditTransaction).filter_by(customer_id=customer_id).all()
    charged = sum((r.amount for r in rows if r.type != "payment"), Decimal("0"))
    paid = sum((r.amount for r in rows if r.type == "payment"), Decimal("0"))
    return charged - paid


@pytest.fixture
def tab(customer):
    """An older 100 charge and a newer 50 charge."""
    older = add_charge(customer, "100", minutes_ago=60)
    newer = add_charge(customer, "50", minutes_ago=5)
    return customer, older, newer


# =============================================================================
# FIFO PAYMENTS
# =============================================================================

class TestRegisterPayment:

    def test_fifo_allocation(self, tab, open_shift, cashier, events):
        customer, older, newer = tab

        result = credit_service.register_payment(customer.id, 120, "shift-open", created_by_id=cashier.id)

        assert db.session.get(CreditTransaction, older.id).remaining == Decimal("0")
        assert db.session.get(CreditTransaction, newer.id).remaining == Decimal("30")
        assert db.session.get(Customer, customer.id).current_debt == Decimal("30")
        assert result.unallocated == 0
        assert [(p.related_charge_id, p.amount) for p in result.payments] == [
            (older.id, Decimal("100")),
            (newer.id, Decimal("20")),
        ]

        assert {"movement:create", "credit:payment", "credit:customer_update"} <= {n for n, _ in events}
        [payment_event] = events_named(events, "credit:payment")
        assert payment_event["amount"] == 120
        assert payment_event["allocations"] == [
            {"chargeId": older.id, "amount": 100},
            {"chargeId": newer.id, "amount": 20},
        ]

    def test_payment_is_a_cash_movement(self, tab, open_shift):
        customer, _, _ = tab
        result = credit_service.register_payment(customer.id, 40, "shift-open")

        movement = db.session.get(Movement, result.movement.id)
        assert movement.type == "abono"
        assert movement.amount == Decimal("40")
        assert movement.shift_id == "shift-open"
        assert all(p.movement_id == movement.id for p in result.payments)

    def test_overpayment_leaves_credit_in_favor(self, tab, open_shift):
        customer, older, newer = tab

        result = credit_service.register_payment(customer.id, 200, "shift-open")

        assert result.unallocated == Decimal("50")
        assert db.session.get(CreditTransaction, older.id).remaining == 0
        assert db.session.get(CreditTransaction, newer.id).remaining == 0
        assert db.session.get(Customer, customer.id).current_debt == Decimal("-50")
        assert result.payments[-1].related_charge_id is None

    def test_invariant_holds(self, tab, open_shift):
        customer, _, _ = tab
        credit_service.create_opening_balance(customer.id, 25)
        credit_service.register_payment(customer.id, 60, "shift-open")
        credit_service.register_payment(customer.id, 200, "shift-open")

        current_debt = db.session.get(Customer, customer.id).current_debt
        assert current_debt == ledger_balance(customer.id)
        assert current_debt == Decimal("-85")

    def test_remaining_matches_debt_without_overpayment(self, tab, open_shift):
        customer, _, _ = tab
        credit_service.register_payment(customer.id, 70, "shift-open")

        remaining = sum(
            (c.remaining for c in db.session.query(CreditTransaction).filter_by(type="charge")),
            Decimal("0"),
        )
        assert remaining == db.session.get(Customer, customer.id).current_debt == Decimal("80")

    def test_rejects_bad_input(self, tab, open_shift):
        customer, _, _ = tab
        with pytest.raises(CreditError):
            credit_service.register_payment(customer.id, 0, "shift-open")
        with pytest.raises(CreditError):
            credit_service.register_payment(customer.id, 10, None)

        with pytest.raises(CreditError) as exc:
            credit_service.register_payment(9999, 10, "shift-open")
        assert exc.value.status_code == 404

        with pytest.raises(CreditError) as exc:
            credit_service.register_payment(customer.id, 10, "no-shift")
        assert exc.value.status_code == 404

        assert db.session.get(Customer, customer.id).current_debt == Decimal("150")
        assert db.session.query(Movement).count() == 0


# =============================================================================
# OPENING BALANCE & CUSTOMERS
# =============================================================================

class TestOpeningBalance:

    def test_opening_balance_is_settled_like_a_charge(self, customer, open_shift):
        txn = credit_service.create_opening_balance(customer.id, 100, description="Cuaderno")

        assert txn.type == "opening_balance"
        assert txn.remaining == Decimal("100")
        assert db.session.get(Customer, customer.id).current_debt == Decimal("100")

        credit_service.register_payment(customer.id, 100, "shift-open")
        assert db.session.get(CreditTransaction, txn.id).remaining == 0

    def test_positive_amount_required(self, customer):
        with pytest.raises(CreditError):
            credit_service.create_opening_balance(customer.id, -10)


class TestCustomers:

    def test_create_and_update(self, db_session, events):
        customer = credit_service.create_customer({"name": " Luis ", "phone": "300", "credit_limit": "50000"})
        assert customer.name == "Luis"
        assert customer.current_debt == 0

        credit_service.update_customer(customer.id, {"notes": "paga los viernes"})
        assert db.session.get(Customer, customer.id).notes == "paga los viernes"
        assert events_named(events, "credit:customer_update")[0]["customerId"] == customer.id

    def test_name_required(self, db_session):
        with pytest.raises(CreditError):
            credit_service.create_customer({"phone": "300"})

    def test_search_and_debtors(self, tab):
        credit_service.create_customer({"name": "Marta"})
        assert [c.name for c in credit_service.list_customers(search="rosa")] == ["Doña Rosa"]
        assert [c.name for c in credit_service.list_customers(only_debtors=True)] == ["Doña Rosa"]
        assert len(credit_service.list_customers()) == 2

    def test_transactions_newest_first(self, tab):
        customer, older, newer = tab
        assert [t.id for t in credit_service.customer_transactions(customer.id)] == [newer.id, older.id]

    def test_portfolio(self, tab):
        credit_service.create_customer({"name": "Marta"})
        summary = credit_service.portfolio_summary()

        assert summary["customer_count"] == 2
        assert summary["debtor_count"] == 1
        assert summary["total_debt"] == 150
        assert summary["top_debtors"][0]["name"] == "Doña Rosa"

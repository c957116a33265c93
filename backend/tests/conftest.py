"""
Pytest fixtures for cafe POS backend tests.

Provides an in-memory database, a test client, staff accounts with auth
headers, a small catalog (direct and recipe products), tables, shifts and
an event recorder subscribed to the broadcast channel.
"""

from decimal import Decimal

import pytest

from cafe_pos import create_app
from cafe_pos.extensions import db, broadcaster
from cafe_pos.models import CafeTable, Customer, Shift
from cafe_pos.services.auth_service import create_user
from cafe_pos.time_utils import utcnow

from factories import PASSWORD, add_recipe, auth_headers, get_auth_token, make_product


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'SYNC_MAX_BATCH': 50,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def events(app):
    """Record every published event as (name, payload)."""
    received = []
    unsubscribe = broadcaster.subscribe(lambda name, payload: received.append((name, payload)))
    yield received
    unsubscribe()


# =============================================================================
# STAFF
# =============================================================================

@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin", PASSWORD, "Admin", role="admin")


@pytest.fixture(scope='function')
def cashier(db_session):
    return create_user("ana", PASSWORD, "Ana", role="cashier", pin="1234")


@pytest.fixture(scope='function')
def waiter(db_session):
    return create_user("beto", PASSWORD, "Beto", role="waiter")


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, "ana"))


@pytest.fixture(scope='function')
def waiter_headers(client, waiter):
    return auth_headers(get_auth_token(client, "beto"))


# =============================================================================
# CATALOG
# =============================================================================

class Catalog:
    pass


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    soda      direct, 5 unid
    milk      ingredient, 2 l
    espresso  ingredient, 100 shots
    bread     ingredient, 10 loaves, 6 slices per loaf, cost 600
    latte     recipe: 0.25 milk + 1 espresso
    sandwich  recipe: 1 slice of bread
    """
    c = Catalog()
    c.soda = make_product("Soda", stock="5", price="3000", cost_unit="1500")
    c.milk = make_product("Milk", stock="2", unit="l", cost_unit="4000")
    c.espresso = make_product("Espresso shot", stock="100", unit="shot", cost_unit="500")
    c.bread = make_product("Bread", stock="10", unit="loaf", yield_per_unit="6",
                           portion_name="slices", cost_unit="600")
    c.latte = make_product("Latte", manage_stock=False, price="6000")
    c.sandwich = make_product("Sandwich", manage_stock=False, price="8000")
    add_recipe(c.latte, c.milk, "0.25")
    add_recipe(c.latte, c.espresso, "1")
    add_recipe(c.sandwich, c.bread, "1")
    db.session.commit()
    return c


@pytest.fixture(scope='function')
def table(db_session):
    t = CafeTable(name="Mesa 1", status="free")
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def open_shift(db_session, cashier):
    shift = Shift(
        id="shift-open",
        opened_by_id=cashier.id,
        opened_by_name=cashier.name,
        start_time=utcnow(),
        initial_cash=Decimal("100000"),
        status="open",
    )
    db_session.add(shift)
    db_session.commit()
    return shift


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Doña Rosa", phone="3001234567", current_debt=Decimal("0"))
    db_session.add(c)
    db_session.commit()
    return c

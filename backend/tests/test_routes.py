"""
API route tests.

Covers authentication, role checks, the sync endpoints and their refusal
codes, and the smaller sale, table, shift, credit and inventory routes.
"""

from decimal import Decimal

from cafe_pos.extensions import db
from cafe_pos.models import Product, Sale

from factories import PASSWORD, auth_headers, events_named, get_auth_token, item_record, sale_record


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestAuthentication:

    def test_missing_token(self, client, db_session):
        response = client.post('/api/sync', json={})
        assert response.status_code == 401
        assert response.json['error'] == 'Authentication required'

    def test_invalid_token(self, client, db_session):
        response = client.get('/api/auth/me', headers=auth_headers('not-a-token'))
        assert response.status_code == 401
        assert response.json['error'] == 'Invalid or expired token'

    def test_login_with_password(self, client, waiter):
        response = client.post('/api/auth/login', json={'username': 'beto', 'password': PASSWORD})
        assert response.status_code == 200
        assert response.json['user']['role'] == 'waiter'
        assert len(response.json['token']) == 64
        assert response.json['expires_at'].endswith('Z')

    def test_login_with_pin(self, client, cashier):
        response = client.post('/api/auth/login', json={'username': 'ana', 'pin': '1234'})
        assert response.status_code == 200
        assert response.json['user']['username'] == 'ana'

    def test_bad_credentials(self, client, cashier):
        assert client.post('/api/auth/login', json={'username': 'ana', 'password': 'Wrong1234'}).status_code == 401
        assert client.post('/api/auth/login', json={'username': 'ana', 'pin': '9999'}).status_code == 401
        assert client.post('/api/auth/login', json={'username': 'ana'}).status_code == 400

    def test_me(self, client, cashier_headers):
        response = client.get('/api/auth/me', headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['user']['role'] == 'cashier'

    def test_logout_revokes_token(self, client, cashier):
        headers = auth_headers(get_auth_token(client, 'ana'))
        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401


class TestRoles:

    def test_waiter_cannot_set_stock(self, client, waiter_headers, catalog):
        response = client.patch(f'/api/inventory/products/{catalog.soda.id}/stock',
                                json={'stock_current': 10}, headers=waiter_headers)
        assert response.status_code == 403
        assert response.json['required_roles'] == ['admin']

    def test_admin_sets_stock(self, client, admin_headers, catalog, events):
        response = client.patch(f'/api/inventory/products/{catalog.soda.id}/stock',
                                json={'stock_current': 10, 'reason': 'initial_stock'}, headers=admin_headers)
        assert response.status_code == 200
        assert db.session.get(Product, catalog.soda.id).stock_current == Decimal('10')
        assert events_named(events, 'stock:change')[0]['reason'] == 'initial_stock'

    def test_admin_unknown_product(self, client, admin_headers, catalog):
        response = client.patch('/api/inventory/products/9999/stock',
                                json={'stock_current': 10}, headers=admin_headers)
        assert response.status_code == 404

    def test_opening_balance_admin_only(self, client, waiter_headers, admin_headers, customer):
        body = {'customer_id': customer.id, 'amount': 250}
        assert client.post('/api/credit/opening-balance', json=body, headers=waiter_headers).status_code == 403

        response = client.post('/api/credit/opening-balance', json=body, headers=admin_headers)
        assert response.status_code == 201
        assert response.json['transaction']['remaining'] == 250


# =============================================================================
# SYNC
# =============================================================================

class TestSyncRoutes:

    def test_batch_with_record_errors_is_200(self, client, cashier_headers, catalog, open_shift):
        response = client.post('/api/sync', headers=cashier_headers, json={
            'sales': [sale_record('s-1'), sale_record('s-2', status='lost')],
            'sale_items': [item_record('i-1', 's-1', catalog.soda, 1)],
        })

        assert response.status_code == 200
        assert response.json['status'] == 'partial'
        data = response.json['data']
        assert data['sales']['synced'] == 1
        assert data['sales']['errors'][0]['id'] == 's-2'
        assert data['sale_items']['synced'] == 1

    def test_stock_shortfall_is_400(self, client, cashier_headers, catalog, open_shift):
        response = client.post('/api/sync/sales', headers=cashier_headers, json={
            'sales': [sale_record('s-1', 'completed')],
            'sale_items': [item_record('i-1', 's-1', catalog.latte, 9)],
        })

        assert response.status_code == 400
        assert response.json['error'] == 'Insufficient stock'
        assert response.json['details'][0]['ingredientName'] == 'Milk'
        assert 'Milk: need 2.25 l' in response.json['message']
        assert db.session.get(Sale, 's-1') is None

    def test_duplicate_open_shift_is_409(self, client, waiter_headers, waiter, open_shift):
        response = client.post('/api/sync', headers=waiter_headers, json={
            'shifts': [{'id': 'shift-2', 'status': 'open', 'opened_by_id': waiter.id}],
        })

        assert response.status_code == 409
        assert response.json['existing_shift']['id'] == 'shift-open'

    def test_malformed_envelope_is_400(self, client, cashier_headers, db_session):
        response = client.post('/api/sync', headers=cashier_headers, json={'sales': 'nope'})
        assert response.status_code == 400
        assert response.json['details'] == {'sales': 'must be a list'}

    def test_movements_endpoint(self, client, cashier_headers, open_shift):
        response = client.post('/api/sync/movements', headers=cashier_headers, json={
            'movements': [{'id': 'm-1', 'type': 'ingreso', 'amount': 20000, 'shift_id': 'shift-open'}],
        })
        assert response.status_code == 200
        assert response.json['data']['movements']['synced'] == 1

    def test_single_sale_created_then_resent(self, client, cashier_headers, catalog, open_shift):
        body = sale_record('s-1', 'completed', items=[item_record('i-1', 's-1', catalog.soda, 2)])

        first = client.post('/api/sync/sale', headers=cashier_headers, json=body)
        second = client.post('/api/sync/sale', headers=cashier_headers, json=body)

        assert first.status_code == 201
        assert first.json['sale']['total'] == 6000
        assert len(first.json['sale']['items']) == 1
        assert second.status_code == 200
        assert db.session.get(Product, catalog.soda.id).stock_current == Decimal('3')

    def test_single_sale_bad_timestamp_is_400(self, client, cashier_headers, catalog, open_shift):
        body = sale_record('s-1', created_at='yesterday', items=[item_record('i-1', 's-1', catalog.soda, 1)])

        response = client.post('/api/sync/sale', headers=cashier_headers, json=body)

        assert response.status_code == 400
        assert response.json['details'] == {'created_at': 'invalid datetime'}
        assert db.session.get(Sale, 's-1') is None

    def test_batch_bad_shift_timestamp_fails_alone(self, client, cashier_headers, cashier, db_session):
        response = client.post('/api/sync', headers=cashier_headers, json={
            'shifts': [{'id': 'shift-1', 'status': 'open', 'opened_by_id': cashier.id, 'start_time': '31/12/2026'}],
            'sales': [sale_record('s-1', shift_id=None)],
        })

        assert response.status_code == 200
        data = response.json['data']
        assert data['shifts']['synced'] == 0
        assert data['shifts']['errors'][0]['id'] == 'shift-1'
        assert data['sales']['synced'] == 1

    def test_sync_status(self, client, cashier_headers, open_shift):
        client.post('/api/sync', headers=cashier_headers, json={'sales': [sale_record('s-1')]})

        response = client.get('/api/sync/status', headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['device_id'] == 'tablet-1'
        assert response.json['last_status'] == 'success'
        assert response.json['counts']['sales'] == 1


# =============================================================================
# SALES & TABLES
# =============================================================================

class TestSaleRoutes:

    def _pending_sale(self, client, headers, catalog, table):
        client.post('/api/sync', headers=headers, json={
            'sales': [sale_record('s-1', table_id=table.id)],
            'sale_items': [
                item_record('i-1', 's-1', catalog.soda, 1),
                item_record('i-2', 's-1', catalog.latte, 1),
            ],
        })

    def test_get_sale(self, client, cashier_headers, catalog, table, open_shift):
        self._pending_sale(client, cashier_headers, catalog, table)
        response = client.get('/api/sales/s-1', headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['sale']['total'] == 9000
        assert client.get('/api/sales/ghost', headers=cashier_headers).status_code == 404

    def test_delete_item_recomputes_total(self, client, cashier_headers, catalog, table, open_shift):
        self._pending_sale(client, cashier_headers, catalog, table)
        response = client.delete('/api/sales/s-1/items/i-2', headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['sale']['total'] == 3000
        assert [i['id'] for i in response.json['sale']['items']] == ['i-1']

    def test_kitchen_status(self, client, waiter_headers, catalog, table, open_shift, events):
        self._pending_sale(client, waiter_headers, catalog, table)
        response = client.patch('/api/sales/s-1/items/i-2/status', json={'status': 'ready'},
                                headers=waiter_headers)
        assert response.status_code == 200
        assert response.json['item']['preparation_status'] == 'ready'
        assert events_named(events, 'kitchen:update')[0]['itemId'] == 'i-2'

        bad = client.patch('/api/sales/s-1/items/i-2/status', json={'status': 'burnt'}, headers=waiter_headers)
        assert bad.status_code == 400

    def test_cancel_frees_table(self, client, cashier_headers, catalog, table, open_shift):
        self._pending_sale(client, cashier_headers, catalog, table)
        order = client.get(f'/api/tables/{table.id}/current-order', headers=cashier_headers)
        assert order.json['sale']['id'] == 's-1'

        response = client.post('/api/sales/s-1/cancel', headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['sale']['status'] == 'cancelled'
        assert response.json['sale']['total'] == 0
        assert response.json['sale']['items'] == []

        tables = client.get('/api/tables', headers=cashier_headers).json['tables']
        assert tables[0]['status'] == 'free'
        order = client.get(f'/api/tables/{table.id}/current-order', headers=cashier_headers)
        assert order.json['sale'] is None

        again = client.post('/api/sales/s-1/cancel', headers=cashier_headers)
        assert again.status_code == 400

    def test_manual_table_status(self, client, cashier_headers, table):
        response = client.put(f'/api/tables/{table.id}/status', json={'status': 'occupied'},
                              headers=cashier_headers)
        assert response.status_code == 200
        assert response.json['table']['status'] == 'occupied'
        assert client.put('/api/tables/999/status', json={'status': 'free'},
                          headers=cashier_headers).status_code == 404


# =============================================================================
# SHIFTS
# =============================================================================

class TestShiftRoutes:

    def test_open_then_conflict(self, client, cashier_headers, waiter_headers):
        first = client.post('/api/shifts', json={'initial_cash': 50000}, headers=cashier_headers)
        assert first.status_code == 201
        shift_id = first.json['shift']['id']

        second = client.post('/api/shifts', json={'initial_cash': 0}, headers=waiter_headers)
        assert second.status_code == 409
        assert second.json['existing_shift']['id'] == shift_id

        active = client.get('/api/shifts/active', headers=waiter_headers)
        assert active.json['shift']['id'] == shift_id

    def test_shift_detail_and_close(self, client, cashier_headers, open_shift):
        detail = client.get('/api/shifts/shift-open', headers=cashier_headers)
        assert detail.json['shift']['expected_cash_now'] == 100000

        closed = client.post('/api/shifts/shift-open/close', json={'final_cash_reported': 99000},
                             headers=cashier_headers)
        assert closed.status_code == 200
        assert closed.json['shift']['cash_difference'] == -1000

    def test_activate_requires_cash(self, client, waiter_headers):
        response = client.patch('/api/shifts/whatever/activate', json={}, headers=waiter_headers)
        assert response.status_code == 400

    def test_atomic_handover(self, client, cashier_headers, waiter, open_shift):
        response = client.post('/api/shifts/shift-open/atomic-handover', headers=cashier_headers,
                               json={'receiver_user_id': waiter.id, 'final_cash_reported': 100000})
        assert response.status_code == 200
        assert response.json['shift']['status'] == 'waiting_initial_cash'
        assert response.json['shift']['opened_by_id'] == waiter.id

    def test_handover_missing_sales_404(self, client, cashier_headers, open_shift):
        response = client.patch('/api/shifts/handover', headers=cashier_headers,
                                json={'sale_ids': ['ghost'], 'target_shift_id': 'shift-open'})
        assert response.status_code == 404
        assert response.json['details'] == {'sale_ids': ['ghost']}


# =============================================================================
# CREDIT, INVENTORY, HEALTH
# =============================================================================

class TestCreditRoutes:

    def test_payment(self, client, admin_headers, cashier_headers, customer, open_shift):
        client.post('/api/credit/opening-balance', headers=admin_headers,
                    json={'customer_id': customer.id, 'amount': 100})

        response = client.post('/api/credit/payment', headers=cashier_headers,
                               json={'customer_id': customer.id, 'amount': 40, 'shift_id': 'shift-open'})
        assert response.status_code == 201
        assert response.json['customer']['current_debt'] == 60
        assert response.json['movement']['type'] == 'abono'

        detail = client.get(f'/api/credit/customers/{customer.id}', headers=cashier_headers)
        assert [t['type'] for t in detail.json['transactions']] == ['payment', 'opening_balance']

        portfolio = client.get('/api/credit/portfolio', headers=cashier_headers)
        assert portfolio.json['total_debt'] == 60

    def test_payment_validation(self, client, cashier_headers, customer, open_shift):
        assert client.post('/api/credit/payment', headers=cashier_headers,
                           json={'amount': 40, 'shift_id': 'shift-open'}).status_code == 400
        assert client.post('/api/credit/payment', headers=cashier_headers,
                           json={'customer_id': customer.id, 'amount': -1,
                                 'shift_id': 'shift-open'}).status_code == 400

    def test_create_customer(self, client, admin_headers, cashier_headers):
        response = client.post('/api/credit/customers', json={'name': 'Luis'}, headers=admin_headers)
        assert response.status_code == 201
        listed = client.get('/api/credit/customers?search=lu', headers=cashier_headers)
        assert [c['name'] for c in listed.json['customers']] == ['Luis']


class TestInventoryRoutes:

    def test_validate_cart(self, client, waiter_headers, catalog):
        response = client.post('/api/inventory/validate', headers=waiter_headers, json={
            'items': [{'product_id': catalog.sandwich.id, 'quantity': 61}],
        })
        assert response.status_code == 200
        assert response.json['isValid'] is False
        assert response.json['errors'][0]['unit'] == 'slices'

    def test_validate_requires_items(self, client, waiter_headers, catalog):
        response = client.post('/api/inventory/validate', headers=waiter_headers, json={})
        assert response.status_code == 400

    def test_stock_list(self, client, waiter_headers, catalog):
        response = client.get('/api/inventory/products', headers=waiter_headers)
        names = [p['name'] for p in response.json['products']]
        assert 'Latte' not in names
        assert 'Milk' in names


class TestDeviceDownloads:

    def test_full_catalog(self, client, waiter_headers, catalog, table):
        response = client.get('/api/catalog/full', headers=waiter_headers)

        assert response.status_code == 200
        data = response.json['data']
        bread = next(p for p in data['products'] if p['name'] == 'Bread')
        assert bread['yield_per_unit'] == 6
        assert bread['portion_name'] == 'slices'
        assert {(r['product_id'], r['ingredient_id']) for r in data['recipes']} == {
            (catalog.latte.id, catalog.milk.id),
            (catalog.latte.id, catalog.espresso.id),
            (catalog.sandwich.id, catalog.bread.id),
        }
        assert [t['name'] for t in data['tables']] == ['Mesa 1']

    def test_full_catalog_requires_auth(self, client, db_session):
        assert client.get('/api/catalog/full').status_code == 401

    def test_users_for_offline_login(self, client, cashier_headers, cashier, waiter):
        waiter.is_active = False
        db.session.commit()

        response = client.get('/api/sync/users', headers=cashier_headers)

        assert response.status_code == 200
        assert response.json['count'] == 1
        [ana] = response.json['data']
        assert ana['username'] == 'ana'
        assert ana['pin_hash'].startswith('$2')
        assert ana['pin_hash'] != '1234'
        assert 'password_hash' not in ana


class TestHealth:

    def test_health(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'ok'
        assert response.json['checks']['database']['status'] == 'healthy'

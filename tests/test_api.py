# =============================================================================
# Bison Books - REST API Tests (auth + resources)
# =============================================================================

from datetime import date, timedelta

import pytest

from app.extensions import db
from app.models.business import Business
from app.models.client import Client
from app.models.invoices import Invoice
from app.blueprints.api.decorators import create_refresh_token, create_access_token


# =============================================================================
# Authentication
# =============================================================================

class TestAuth:
    """JWT register / login / refresh / me round trip."""

    def test_register(self, client, app):
        response = client.post('/api/v1/auth/register', json={
            'email': 'New@Test.com',
            'password': 'Password123!',
            'first_name': 'Chidi',
            'last_name': 'Eze',
        })
        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['token_type'] == 'Bearer'
        assert data['user']['email'] == 'new@test.com'
        assert data['user']['current_plan_name'] == 'Free'

    def test_register_duplicate(self, client, user):
        response = client.post('/api/v1/auth/register', json={
            'email': user.email,
            'password': 'Password123!',
            'first_name': 'X',
            'last_name': 'Y',
        })
        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'email_taken'

    def test_register_validation(self, client, app):
        response = client.post('/api/v1/auth/register', json={'email': 'bad', 'password': 'short'})
        assert response.status_code == 422
        details = response.get_json()['error']['details']
        assert 'email' in details
        assert 'password' in details
        assert 'first_name' in details

    def test_login_and_me(self, client, user):
        response = client.post('/api/v1/auth/login', json={
            'email': 'owner@test.com',
            'password': 'Password123!',
        })
        assert response.status_code == 200
        token = response.get_json()['data']['access_token']

        response = client.get('/api/v1/auth/me', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 200
        assert response.get_json()['data']['email'] == 'owner@test.com'

    def test_login_wrong_password(self, client, user):
        response = client.post('/api/v1/auth/login', json={
            'email': 'owner@test.com',
            'password': 'nope',
        })
        assert response.status_code == 401
        assert db.session.get(type(user), user.id).failed_login_attempts == 1

    def test_login_missing_fields(self, client, app):
        response = client.post('/api/v1/auth/login', json={'email': ''})
        assert response.status_code == 422

    def test_refresh(self, client, user):
        refresh_token = create_refresh_token(user.id)
        response = client.post('/api/v1/auth/refresh', json={'refresh_token': refresh_token})
        assert response.status_code == 200
        assert 'access_token' in response.get_json()['data']

    def test_refresh_rejects_access_token(self, client, user):
        response = client.post('/api/v1/auth/refresh', json={'refresh_token': create_access_token(user.id)})
        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'wrong_token_type'

    def test_me_requires_token(self, client, app):
        response = client.get('/api/v1/auth/me')
        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'missing_token'

    def test_me_rejects_garbage_token(self, client, app):
        response = client.get('/api/v1/auth/me', headers={'Authorization': 'Bearer not.a.jwt'})
        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'invalid_token'

    def test_me_rejects_refresh_token(self, client, user):
        headers = {'Authorization': f'Bearer {create_refresh_token(user.id)}'}
        response = client.get('/api/v1/auth/me', headers=headers)
        assert response.status_code == 401


# =============================================================================
# Resources and plan limits
# =============================================================================

class TestBusinesses:

    def test_create_and_list(self, client, auth_headers):
        response = client.post('/api/v1/businesses', json={'name': 'Shop'}, headers=auth_headers)
        assert response.status_code == 201
        assert response.get_json()['data']['currency'] == 'NGN'

        response = client.get('/api/v1/businesses', headers=auth_headers)
        body = response.get_json()
        assert body['meta']['total'] == 1
        assert body['data'][0]['name'] == 'Shop'

    def test_free_limit_reached(self, client, user, auth_headers):
        for i in range(5):
            db.session.add(Business(user_id=user.id, name=f'B{i}'))
        db.session.commit()

        response = client.post('/api/v1/businesses', json={'name': 'Sixth'}, headers=auth_headers)

        assert response.status_code == 403
        error = response.get_json()['error']
        assert error['code'] == 'plan_limit_reached'
        assert "free plan limit of 5 businesses" in error['message']
        assert error['details']['limit'] == 5
        assert error['details']['current'] == 5
        assert Business.query.count() == 5

    def test_basic_plan_limit(self, client, user, auth_headers, basic_plan, make_subscription):
        make_subscription(user, basic_plan)
        for i in range(3):
            db.session.add(Business(user_id=user.id, name=f'B{i}'))
        db.session.commit()

        response = client.post('/api/v1/businesses', json={'name': 'Fourth'}, headers=auth_headers)

        assert response.status_code == 403
        assert 'plan limit of 3 businesses' in response.get_json()['error']['message']

    def test_get_other_users_business(self, client, other_user, auth_headers):
        biz = Business(user_id=other_user.id, name='Theirs')
        db.session.add(biz)
        db.session.commit()

        response = client.get(f'/api/v1/businesses/{biz.id}', headers=auth_headers)
        assert response.status_code == 404

    def test_requires_auth(self, client, app):
        response = client.post('/api/v1/businesses', json={'name': 'Shop'})
        assert response.status_code == 401


class TestClients:

    def test_create(self, client, auth_headers, business):
        response = client.post('/api/v1/clients', json={
            'business_id': business.id,
            'name': 'Acme',
            'email': 'acme@test.com',
        }, headers=auth_headers)
        assert response.status_code == 201
        assert response.get_json()['data']['business_id'] == business.id

    def test_unknown_field_ignored(self, client, auth_headers, business):
        response = client.post('/api/v1/clients', json={
            'business_id': business.id,
            'name': 'Acme',
            'user_id': 999,
        }, headers=auth_headers)
        assert response.status_code == 201

    def test_foreign_business_rejected(self, client, other_user, auth_headers, plans):
        biz = Business(user_id=other_user.id, name='Theirs')
        db.session.add(biz)
        db.session.commit()

        response = client.post('/api/v1/clients', json={'business_id': biz.id, 'name': 'X'}, headers=auth_headers)
        assert response.status_code == 404

    def test_validation_error(self, client, auth_headers, business):
        response = client.post('/api/v1/clients', json={'business_id': business.id}, headers=auth_headers)
        assert response.status_code == 422
        assert 'name' in response.get_json()['error']['details']

    def test_limit_then_unlimited_plan(self, client, user, auth_headers, business, make_clients,
                                       enterprise_plan, make_subscription):
        make_clients(user, business, 5)
        payload = {'business_id': business.id, 'name': 'Sixth'}

        assert client.post('/api/v1/clients', json=payload, headers=auth_headers).status_code == 403

        make_subscription(user, enterprise_plan)
        assert client.post('/api/v1/clients', json=payload, headers=auth_headers).status_code == 201

    def test_pending_subscription_keeps_free_limits(self, client, user, auth_headers, business, make_clients,
                                                    enterprise_plan, make_subscription):
        from app.models.subscription import SubscriptionStatus
        make_clients(user, business, 5)
        make_subscription(user, enterprise_plan, status=SubscriptionStatus.PENDING)

        response = client.post('/api/v1/clients', json={'business_id': business.id, 'name': 'X'},
                               headers=auth_headers)

        assert response.status_code == 403
        assert 'activated once payment is confirmed' in response.get_json()['error']['message']

    def test_delete(self, client, auth_headers, sample_client):
        response = client.delete(f'/api/v1/clients/{sample_client.id}', headers=auth_headers)
        assert response.status_code == 204
        assert Client.query.count() == 0


class TestInvoices:

    def _payload(self, business, sample_client, number='INV-1'):
        return {
            'business_id': business.id,
            'client_id': sample_client.id,
            'invoice_number': number,
            'due_date': (date.today() + timedelta(days=14)).isoformat(),
            'total_amount': '1500.50',
        }

    def test_create(self, client, auth_headers, business, sample_client):
        response = client.post('/api/v1/invoices', json=self._payload(business, sample_client),
                               headers=auth_headers)
        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['total_amount'] == '1500.50'
        assert data['status'] == 'draft'
        assert data['issue_date'] == date.today().isoformat()

    def test_monthly_limit_ignores_older_invoices(self, client, user, auth_headers, business, sample_client):
        last_year = date.today() - timedelta(days=400)
        for i in range(5):
            db.session.add(Invoice(
                user_id=user.id, business_id=business.id, client_id=sample_client.id,
                invoice_number=f'OLD-{i}', issue_date=last_year, due_date=last_year,
            ))
        db.session.commit()

        response = client.post('/api/v1/invoices', json=self._payload(business, sample_client),
                               headers=auth_headers)
        assert response.status_code == 201

    def test_monthly_limit_reached(self, client, user, auth_headers, business, sample_client):
        for i in range(5):
            db.session.add(Invoice(
                user_id=user.id, business_id=business.id, client_id=sample_client.id,
                invoice_number=f'INV-{i}', due_date=date.today(),
            ))
        db.session.commit()

        response = client.post('/api/v1/invoices', json=self._payload(business, sample_client, 'INV-9'),
                               headers=auth_headers)
        assert response.status_code == 403
        assert 'invoices this month' in response.get_json()['error']['message']

    def test_client_must_belong_to_business(self, client, user, auth_headers, business, sample_client):
        other_biz = Business(user_id=user.id, name='Second')
        db.session.add(other_biz)
        db.session.commit()

        payload = self._payload(business, sample_client)
        payload['business_id'] = other_biz.id

        response = client.post('/api/v1/invoices', json=payload, headers=auth_headers)
        assert response.status_code == 404


class TestReceiptsEstimatesExpenses:

    def test_create_receipt(self, client, auth_headers, business, sample_client):
        response = client.post('/api/v1/receipts', json={
            'business_id': business.id,
            'client_id': sample_client.id,
            'receipt_number': 'RCT-1',
            'amount': '200',
            'payment_method': 'bank_transfer',
        }, headers=auth_headers)
        assert response.status_code == 201
        assert response.get_json()['data']['payment_method'] == 'bank_transfer'

    def test_create_estimate(self, client, auth_headers, business, sample_client):
        response = client.post('/api/v1/estimates', json={
            'business_id': business.id,
            'client_id': sample_client.id,
            'estimate_number': 'EST-1',
            'expiry_date': (date.today() + timedelta(days=30)).isoformat(),
        }, headers=auth_headers)
        assert response.status_code == 201

    def test_create_expense_and_filter(self, client, auth_headers, business):
        response = client.post('/api/v1/expenses', json={
            'business_id': business.id,
            'description': 'Printer ink',
            'amount': '4500',
            'date': '2026-03-10',
        }, headers=auth_headers)
        assert response.status_code == 201

        response = client.get('/api/v1/expenses?from=2026-03-01&to=2026-03-31', headers=auth_headers)
        assert response.get_json()['meta']['total'] == 1

        response = client.get('/api/v1/expenses?from=2026-04-01', headers=auth_headers)
        assert response.get_json()['meta']['total'] == 0

    def test_expense_bad_date_filter(self, client, auth_headers):
        response = client.get('/api/v1/expenses?from=yesterday', headers=auth_headers)
        assert response.status_code == 422


class TestErrorHandlers:

    def test_unknown_route_is_json(self, client, app):
        response = client.get('/api/v1/nope')
        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'not_found'

    def test_health(self, client, app):
        assert client.get('/health').get_json() == {'status': 'ok'}

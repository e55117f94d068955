# =============================================================================
# Bison Books - Webhook Routes Tests (cron sweep + Paystack)
# =============================================================================

import json
from datetime import datetime, timedelta
from unittest.mock import patch

from app.extensions import db
from app.models.subscription import Subscription, SubscriptionStatus
from app.services import paystack
from app.services.subscription_service import SweepResult


def _expired(make_subscription, user, plan, **kwargs):
    return make_subscription(
        user, plan,
        start=datetime.utcnow() - timedelta(days=45),
        end=datetime.utcnow() - timedelta(days=15),
        **kwargs,
    )


class TestCronRoute:
    """POST /api/webhooks/cron."""

    def test_missing_authorization(self, client, app):
        response = client.post('/api/webhooks/cron')
        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'unauthorized'

    def test_malformed_authorization(self, client, app):
        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Token abc'})
        assert response.status_code == 401

    def test_any_bearer_token_without_secret(self, client, plans):
        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Bearer anything'})
        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert isinstance(body['count'], int)
        assert body['message'] == f"Processed {body['count']} expired subscriptions"

    def test_secret_must_match(self, client, app, plans):
        app.config['CRON_SECRET'] = 's3cret'

        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Bearer wrong'})
        assert response.status_code == 401

        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Bearer s3cret'})
        assert response.status_code == 200

    def test_downgrades_expired(self, client, user, other_user, free_plan, basic_plan, make_subscription):
        a = _expired(make_subscription, user, basic_plan)
        b = _expired(make_subscription, other_user, basic_plan, cancel_at_period_end=True)

        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Bearer x'})

        assert response.status_code == 200
        assert response.get_json()['count'] == 1
        assert db.session.get(Subscription, a.id).plan_id == free_plan.id
        assert db.session.get(Subscription, b.id).plan_id == basic_plan.id

    @patch('app.services.subscription_service.SubscriptionService.check_expired_subscriptions')
    def test_sweep_failure(self, mock_sweep, client, app):
        mock_sweep.return_value = SweepResult(success=False, count=0, error='Free plan not found')

        response = client.post('/api/webhooks/cron', headers={'Authorization': 'Bearer x'})

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Free plan not found'


class TestPaystackWebhookRoute:
    """POST /api/webhooks/paystack."""

    def _post(self, client, event, signature=None):
        body = json.dumps(event).encode()
        if signature is None:
            signature = paystack.compute_signature(body)
        return client.post(
            '/api/webhooks/paystack',
            data=body,
            content_type='application/json',
            headers={'x-paystack-signature': signature},
        )

    def test_charge_success(self, client, user, basic_plan, make_subscription):
        sub = make_subscription(user, basic_plan, status=SubscriptionStatus.PENDING)

        response = self._post(client, {
            'event': 'charge.success',
            'data': {
                'status': 'success',
                'reference': 'ref_hook',
                'amount': 250000,
                'metadata': {'subscription_id': sub.id},
            },
        })

        assert response.status_code == 200
        assert response.get_json() == {'received': True}
        assert db.session.get(Subscription, sub.id).status == SubscriptionStatus.ACTIVE

    def test_invalid_signature(self, client, app):
        response = self._post(client, {'event': 'charge.success'}, signature='bad')
        assert response.status_code == 401

    def test_missing_signature(self, client, app):
        response = client.post('/api/webhooks/paystack', data=b'{}', content_type='application/json')
        assert response.status_code == 401

    def test_invalid_json(self, client, app):
        body = b'{not json'
        response = client.post(
            '/api/webhooks/paystack',
            data=body,
            content_type='application/json',
            headers={'x-paystack-signature': paystack.compute_signature(body)},
        )
        assert response.status_code == 400

    def test_secret_not_configured(self, client, app):
        app.config['PAYSTACK_SECRET_KEY'] = None
        response = client.post(
            '/api/webhooks/paystack',
            data=b'{}',
            content_type='application/json',
            headers={'x-paystack-signature': 'abc'},
        )
        assert response.status_code == 500

    def test_unhandled_event_acknowledged(self, client, app):
        response = self._post(client, {'event': 'subscription.create', 'data': {}})
        assert response.status_code == 200

# =============================================================================
# Bison Books - Paystack Client Tests
# =============================================================================
#
# All HTTP calls are mocked at app.services.paystack.requests.
# =============================================================================

import hashlib
import hmac
from decimal import Decimal
from unittest.mock import patch, MagicMock

import pytest
import requests

from app.services import paystack
from app.services.paystack import PaystackError


def _response(body, ok=True, status_code=200):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


class TestAmountConversion:
    """Major/minor unit conversion."""

    def test_to_minor_units(self):
        assert paystack.to_minor_units(2500) == 250000
        assert paystack.to_minor_units(Decimal('10800')) == 1080000
        assert paystack.to_minor_units('19.995') == 2000

    def test_from_minor_units(self):
        assert paystack.from_minor_units(250000) == Decimal('2500.00')
        assert paystack.from_minor_units(1050) == Decimal('10.50')


class TestCreatePaymentLink:
    """Tests for transaction initialization."""

    @patch('app.services.paystack.requests.post')
    def test_success(self, mock_post, app):
        mock_post.return_value = _response({
            'status': True,
            'message': 'Authorization URL created',
            'data': {
                'authorization_url': 'https://checkout.paystack.com/abc',
                'access_code': 'abc',
                'reference': 'ref_123',
            },
        })

        data = paystack.create_payment_link(
            'owner@test.com', Decimal('2500'), 'http://localhost/billing/verify', {'subscription_id': 1}
        )

        assert data['authorization_url'] == 'https://checkout.paystack.com/abc'
        assert data['reference'] == 'ref_123'

        args, kwargs = mock_post.call_args
        assert args[0] == 'https://api.paystack.test/transaction/initialize'
        assert kwargs['json']['amount'] == 250000
        assert kwargs['json']['email'] == 'owner@test.com'
        assert kwargs['json']['metadata'] == {'subscription_id': 1}
        assert kwargs['headers']['Authorization'] == 'Bearer sk_test_fake_key_for_testing'
        assert kwargs['timeout'] == 15

    @pytest.mark.parametrize('email,amount,callback', [
        ('not-an-email', 100, 'http://cb'),
        ('', 100, 'http://cb'),
        ('a@b.com', 0, 'http://cb'),
        ('a@b.com', -5, 'http://cb'),
        ('a@b.com', 100, ''),
    ])
    @patch('app.services.paystack.requests.post')
    def test_invalid_input(self, mock_post, app, email, amount, callback):
        with pytest.raises(PaystackError):
            paystack.create_payment_link(email, amount, callback)
        mock_post.assert_not_called()

    @patch('app.services.paystack.requests.post')
    def test_http_error_uses_gateway_message(self, mock_post, app):
        mock_post.return_value = _response({'status': False, 'message': 'Invalid key'}, ok=False, status_code=401)

        with pytest.raises(PaystackError, match='Invalid key'):
            paystack.create_payment_link('a@b.com', 100, 'http://cb')

    @patch('app.services.paystack.requests.post')
    def test_status_false(self, mock_post, app):
        mock_post.return_value = _response({'status': False})

        with pytest.raises(PaystackError, match='Failed to create payment link'):
            paystack.create_payment_link('a@b.com', 100, 'http://cb')

    @patch('app.services.paystack.requests.post')
    def test_network_error(self, mock_post, app):
        mock_post.side_effect = requests.ConnectionError('boom')

        with pytest.raises(PaystackError, match='unreachable'):
            paystack.create_payment_link('a@b.com', 100, 'http://cb')

    def test_missing_secret_key(self, app):
        app.config['PAYSTACK_SECRET_KEY'] = None

        with pytest.raises(PaystackError, match='PAYSTACK_SECRET_KEY'):
            paystack.create_payment_link('a@b.com', 100, 'http://cb')


class TestVerifyPayment:
    """Tests for transaction verification."""

    @patch('app.services.paystack.requests.get')
    def test_success(self, mock_get, app):
        mock_get.return_value = _response({
            'status': True,
            'data': {'status': 'success', 'amount': 250000, 'reference': 'ref/1'},
        })

        data = paystack.verify_payment('ref/1')

        assert data['status'] == 'success'
        assert data['amount'] == 250000
        assert mock_get.call_args[0][0] == 'https://api.paystack.test/transaction/verify/ref%2F1'

    def test_missing_reference(self, app):
        with pytest.raises(PaystackError, match='reference'):
            paystack.verify_payment('')

    @patch('app.services.paystack.requests.get')
    def test_non_json_error_body(self, mock_get, app):
        resp = _response(None, ok=False, status_code=502)
        resp.json.side_effect = ValueError('no json')
        mock_get.return_value = resp

        with pytest.raises(PaystackError, match='502'):
            paystack.verify_payment('ref_1')


class TestWebhookSignature:
    """HMAC-SHA512 signature checks."""

    def test_valid_signature(self, app):
        body = b'{"event":"charge.success"}'
        signature = hmac.new(b'sk_test_fake_key_for_testing', body, hashlib.sha512).hexdigest()

        assert paystack.compute_signature(body) == signature
        assert paystack.verify_webhook_signature(body, signature) is True

    def test_tampered_body(self, app):
        signature = paystack.compute_signature(b'{"a":1}')
        assert paystack.verify_webhook_signature(b'{"a":2}', signature) is False

    def test_missing_signature(self, app):
        assert paystack.verify_webhook_signature(b'{}', '') is False
        assert paystack.verify_webhook_signature(b'{}', None) is False

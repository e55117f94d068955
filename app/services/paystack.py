"""
Paystack API client for subscription payments.
Creates hosted checkout links, verifies transactions and authenticates
webhook deliveries (HMAC-SHA512 over the raw body).
"""
import hashlib
import hmac
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from urllib.parse import quote

import requests
from flask import current_app


class PaystackError(Exception):
    """Raised when Paystack rejects a request or cannot be reached."""


def _secret_key() -> str:
    secret_key = current_app.config.get('PAYSTACK_SECRET_KEY')
    if not secret_key:
        raise PaystackError('PAYSTACK_SECRET_KEY is not defined')
    return secret_key


def _headers() -> dict:
    return {
        'Authorization': f'Bearer {_secret_key()}',
        'Content-Type': 'application/json',
    }


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (naira) to minor units (kobo)."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Decimal:
    """Convert a minor-unit amount (kobo) to major units (naira)."""
    return (Decimal(str(amount)) / 100).quantize(Decimal('0.01'))


def _unwrap(response: requests.Response, default_message: str) -> dict:
    """Return ``data`` from a Paystack envelope or raise PaystackError."""
    try:
        body = response.json()
    except ValueError:
        body = {}

    if not response.ok:
        message = body.get('message') or f'HTTP error! status: {response.status_code}'
        current_app.logger.error('Paystack API error (%s): %s', response.status_code, message)
        raise PaystackError(message)

    if not body.get('status'):
        raise PaystackError(body.get('message') or default_message)

    return body.get('data') or {}


def create_payment_link(email: str, amount, callback_url: str, metadata: Optional[dict] = None) -> dict:
    """Initialize a transaction and return its checkout link.

    Args:
        email: Customer email
        amount: Amount in major currency units
        callback_url: Where Paystack redirects after payment
        metadata: Extra data echoed back on verification and webhooks

    Returns:
        Dict with ``authorization_url``, ``access_code`` and ``reference``

    Raises:
        PaystackError: On invalid input or gateway failure
    """
    if not email or '@' not in email:
        raise PaystackError('Invalid email address')
    if amount is None or Decimal(str(amount)) <= 0:
        raise PaystackError('Amount must be greater than zero')
    if not callback_url:
        raise PaystackError('Callback URL is required')

    url = f"{current_app.config['PAYSTACK_BASE_URL']}/transaction/initialize"
    payload = {
        'email': email,
        'amount': to_minor_units(amount),
        'callback_url': callback_url,
        'metadata': metadata or {},
    }

    try:
        response = requests.post(
            url,
            json=payload,
            headers=_headers(),
            timeout=current_app.config.get('PAYSTACK_TIMEOUT', 15),
        )
    except requests.RequestException as e:
        current_app.logger.error('Paystack initialize request failed: %s', e)
        raise PaystackError('Payment gateway unreachable') from e

    data = _unwrap(response, 'Failed to create payment link')
    current_app.logger.info('Paystack transaction initialized: reference=%s', data.get('reference'))
    return data


def verify_payment(reference: str) -> dict:
    """Fetch the verification record of a transaction.

    Returns:
        Paystack transaction dict (``status``, ``amount`` in minor units,
        ``authorization``, ``customer``, ``metadata``...)

    Raises:
        PaystackError: On missing reference or gateway failure
    """
    if not reference:
        raise PaystackError('Payment reference is required')

    url = f"{current_app.config['PAYSTACK_BASE_URL']}/transaction/verify/{quote(reference, safe='')}"

    try:
        response = requests.get(
            url,
            headers=_headers(),
            timeout=current_app.config.get('PAYSTACK_TIMEOUT', 15),
        )
    except requests.RequestException as e:
        current_app.logger.error('Paystack verify request failed: %s', e)
        raise PaystackError('Payment gateway unreachable') from e

    return _unwrap(response, 'Failed to verify payment')


def compute_signature(body: bytes) -> str:
    """HMAC-SHA512 hex digest of a webhook body, keyed with the secret key."""
    return hmac.new(_secret_key().encode('utf-8'), body, hashlib.sha512).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> bool:
    """Check the ``x-paystack-signature`` header against the raw body."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body), signature)

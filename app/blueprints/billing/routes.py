"""
Billing routes - Paystack SaaS subscription management (JSON, JWT-protected).
plans (public), subscription, usage, subscribe, verify, cancel, refresh,
check-status, fix-pending, payment-status.
"""
from flask import request, jsonify, current_app
from marshmallow import ValidationError

from app.blueprints.billing import billing_bp
from app.blueprints.api.decorators import jwt_required
from app.blueprints.api.helpers import api_error, api_success, billing_error
from app.blueprints.api.schemas import (
    SubscriptionSchema,
    SubscribeSchema, VerifyPaymentSchema,
)
from app.extensions import db, limiter
from app.models.subscription import Subscription
from app.services.paystack import PaystackError
from app.services.subscription_service import SubscriptionService, SubscriptionError


@billing_bp.route('/plans', methods=['GET'])
def plans():
    """Public plan catalogue, cheapest first."""
    return api_success(SubscriptionService.get_subscription_plans_payload())


@billing_bp.route('/subscription', methods=['GET'])
@jwt_required
def subscription():
    """Current subscription of the user (null when none)."""
    return api_success(SubscriptionService.get_subscription_view(request.api_user.id))


@billing_bp.route('/usage', methods=['GET'])
@jwt_required
def usage():
    """Usage and limits per resource kind."""
    return api_success(SubscriptionService.usage_summary(request.api_user.id))


@billing_bp.route('/subscribe', methods=['POST'])
@jwt_required
@limiter.limit('10 per hour')
def subscribe():
    """Start a subscription.

    Request body:
        {"plan_id": 2, "interval": "monthly" | "yearly"}

    Returns:
        {"data": {"success": true, "subscription_id": ..., "payment_url": ..., "reference": ...}}
    """
    payload = request.get_json(silent=True)
    if payload is None:
        return api_error('invalid_json', 'Request body must be valid JSON.', 400)

    try:
        data = SubscribeSchema().load(payload)
    except ValidationError as e:
        return api_error('validation_error', 'Invalid subscription request.', 422, details=e.messages)

    try:
        result = SubscriptionService.initialize_subscription(
            request.api_user, data['plan_id'], data['interval']
        )
    except (SubscriptionError, PaystackError) as e:
        current_app.logger.warning(f'Subscription initialization failed for user {request.api_user.id}: {e}')
        return billing_error(e)

    return api_success(result.to_dict(), 201 if result.payment_url is None else 200)


@billing_bp.route('/verify', methods=['GET', 'POST'])
@jwt_required
@limiter.limit('30 per hour')
def verify():
    """Confirm payment after the Paystack redirect.

    Accepts ``reference`` and ``subscription_id`` as query args (redirect)
    or as a JSON body.
    """
    source = request.get_json(silent=True) if request.method == 'POST' else request.args.to_dict()
    try:
        data = VerifyPaymentSchema().load(source or {})
    except ValidationError as e:
        return api_error('validation_error', 'reference and subscription_id are required.', 422, details=e.messages)

    sub = db.session.get(Subscription, data['subscription_id'])
    if sub is None or sub.user_id != request.api_user.id:
        return api_error('not_found', 'Subscription not found.', 404)

    try:
        result = SubscriptionService.verify_subscription_payment(
            data['reference'], data['subscription_id']
        )
    except (SubscriptionError, PaystackError) as e:
        current_app.logger.warning(f'Payment verification failed for {data["reference"]}: {e}')
        return billing_error(e)

    return api_success(result)


@billing_bp.route('/cancel', methods=['POST'])
@jwt_required
@limiter.limit('10 per hour')
def cancel():
    """Cancel at the end of the current period."""
    try:
        sub = SubscriptionService.cancel_user_subscription(request.api_user)
    except SubscriptionError as e:
        return billing_error(e)

    return api_success(SubscriptionSchema().dump(sub))


@billing_bp.route('/refresh', methods=['POST'])
@jwt_required
def refresh():
    result = SubscriptionService.refresh_subscription_data(request.api_user)
    if not result['success']:
        return api_error('refresh_failed', result['error'], 422)
    return api_success(result['data'])


@billing_bp.route('/check-status', methods=['POST'])
@jwt_required
def check_status():
    """Downgrade the user's subscription now if its period has elapsed."""
    return jsonify(SubscriptionService.check_user_subscription_status(request.api_user)), 200


@billing_bp.route('/fix-pending', methods=['POST'])
@jwt_required
@limiter.limit('10 per hour')
def fix_pending():
    """Activate a pending subscription that already has a payment on record."""
    result = SubscriptionService.fix_pending_subscription(request.api_user)
    return jsonify(result), 200 if result['success'] else 422


@billing_bp.route('/payment-status', methods=['GET'])
@jwt_required
def payment_status():
    result = SubscriptionService.check_subscription_payment_status(request.api_user)
    return jsonify(result), 200 if result['success'] else 404

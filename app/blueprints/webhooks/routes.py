"""
Webhook routes - machine-to-machine endpoints (no JWT).
cron: expiry sweep triggered by an external scheduler (bearer token).
paystack: charge events signed with HMAC-SHA512.
"""
from flask import request, jsonify, current_app

from app.blueprints.webhooks import webhooks_bp
from app.decorators.billing import cron_secret_required
from app.extensions import limiter
from app.services.paystack import PaystackError
from app.services.subscription_service import (
    SubscriptionService,
    SubscriptionError,
    InvalidWebhookSignature,
    InvalidWebhookPayload,
)


@webhooks_bp.route('/cron', methods=['POST'])
@limiter.limit('30 per hour')
@cron_secret_required
def cron():
    """Downgrade expired subscriptions to the Free plan."""
    current_app.logger.info('Running subscription expiry sweep')
    result = SubscriptionService.check_expired_subscriptions()

    if not result.success:
        current_app.logger.error(f'Subscription sweep failed: {result.error}')
        return jsonify({'success': False, 'error': result.error}), 500

    return jsonify({
        'success': True,
        'count': result.count,
        'message': f'Processed {result.count} expired subscriptions',
    }), 200


@webhooks_bp.route('/paystack', methods=['POST'])
@limiter.limit('100 per minute')
def paystack():
    """Handle Paystack webhook events.

    Verified via the x-paystack-signature header over the raw body.
    """
    payload = request.get_data()
    signature = request.headers.get('x-paystack-signature', '')

    try:
        result = SubscriptionService.handle_webhook_event(payload, signature)
    except InvalidWebhookSignature as e:
        current_app.logger.warning(f'Webhook signature verification failed: {e}')
        return jsonify({'error': 'Invalid signature'}), 401
    except InvalidWebhookPayload as e:
        current_app.logger.warning(f'Webhook payload rejected: {e}')
        return jsonify({'error': 'Invalid JSON payload'}), 400
    except PaystackError as e:
        current_app.logger.error(f'Webhook configuration error: {e}')
        return jsonify({'error': 'Server configuration error'}), 500
    except SubscriptionError as e:
        current_app.logger.error(f'Webhook processing error: {e}')
        return jsonify({'error': 'Failed to process event'}), 500

    current_app.logger.info(f'Webhook processed: {result["event_type"]} (handled={result["handled"]})')
    return jsonify({'received': True}), 200

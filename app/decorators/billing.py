"""
Billing decorators for plan enforcement.
Apply to API routes that create metered resources, and to scheduler hooks.
"""
from functools import wraps

from flask import request, current_app, abort

from app.services.subscription_service import SubscriptionService, PlanLimitExceeded


def plan_limit_required(resource_kind):
    """Decorator: refuse creation when the user's plan limit is reached.

    Must sit below @jwt_required (reads request.api_user). PlanLimitExceeded
    propagates to the app error handler, which answers 403 plan_limit_reached.

    Usage:
        @jwt_required
        @plan_limit_required(ResourceKind.CLIENTS)
        def create_client():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(request, 'api_user', None)
            if user is None:
                abort(401)

            try:
                SubscriptionService.enforce_plan_limit(user.id, resource_kind)
            except PlanLimitExceeded as e:
                current_app.logger.info(
                    f'Plan limit reached for user {user.id}: '
                    f'{e.current}/{e.maximum} {e.resource_kind.value}'
                )
                raise

            return f(*args, **kwargs)
        return decorated
    return decorator


def cron_secret_required(f):
    """Decorator: require ``Authorization: Bearer <token>`` on scheduler calls.

    When CRON_SECRET is configured the token must match it.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            abort(401)

        token = auth_header[7:]
        expected = current_app.config.get('CRON_SECRET')
        if expected and token != expected:
            current_app.logger.warning(
                f'Invalid cron token from {request.remote_addr}'
            )
            abort(401)

        return f(*args, **kwargs)
    return decorated

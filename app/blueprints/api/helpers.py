"""
API response helpers: the JSON envelope, list pagination and the mapping
from billing exceptions to error codes.

Success: {"data": ...}
Error:   {"error": {"code": ..., "message": ..., "details": ...}}
"""
from flask import request, jsonify

from app.services.paystack import PaystackError
from app.services.subscription_service import (
    SubscriptionError,
    SubscriptionConflict,
    PlanNotFound,
    NotAuthenticated,
    PaymentVerificationError,
)

# Most specific first; SubscriptionError is the catch-all.
BILLING_ERROR_CODES = [
    (NotAuthenticated, 'not_authenticated', 401),
    (PlanNotFound, 'plan_not_found', 404),
    (SubscriptionConflict, 'subscription_active', 409),
    (PaymentVerificationError, 'payment_not_successful', 402),
    (PaystackError, 'payment_gateway_error', 502),
    (SubscriptionError, 'subscription_error', 422),
]


def api_error(code, message, status=400, details=None):
    """Build a standard API error response."""
    error_body = {'error': {'code': code, 'message': message}}
    if details:
        error_body['error']['details'] = details
    return jsonify(error_body), status


def api_success(data, status=200):
    """Build a standard API success response."""
    return jsonify({'data': data}), status


def billing_error(exc):
    """Error response for a billing service or gateway exception."""
    for exc_type, code, status in BILLING_ERROR_CODES:
        if isinstance(exc, exc_type):
            return api_error(code, str(exc), status)
    raise exc


def plan_limit_error(exc):
    """403 response for PlanLimitExceeded, with the limit check as details."""
    return api_error('plan_limit_reached', str(exc), 403, details=exc.result.to_dict())


def _page_link(page, per_page):
    return f'{request.base_url}?page={page}&per_page={per_page}'


def paginate_query(query, schema, default_per_page=20, max_per_page=100):
    """Page through a SQLAlchemy query using ?page= and ?per_page=.

    Out-of-range values are clamped (page >= 1, 1 <= per_page <= max_per_page).
    Returns the envelope dict with data, meta (total, page, per_page,
    total_pages) and links (self, first, last, and next/prev when present).
    """
    page = max(1, request.args.get('page', 1, type=int))
    per_page = request.args.get('per_page', default_per_page, type=int)
    per_page = max(1, min(per_page, max_per_page))

    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    total_pages = pagination.pages or 1

    links = {
        'self': _page_link(page, per_page),
        'first': _page_link(1, per_page),
        'last': _page_link(total_pages, per_page),
    }
    if pagination.has_next:
        links['next'] = _page_link(page + 1, per_page)
    if pagination.has_prev:
        links['prev'] = _page_link(page - 1, per_page)

    return {
        'data': schema.dump(pagination.items, many=True),
        'meta': {
            'total': pagination.total,
            'page': page,
            'per_page': per_page,
            'total_pages': total_pages,
        },
        'links': links,
    }

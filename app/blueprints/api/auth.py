"""
API Authentication endpoints - JWT registration, login, refresh, and user info.
"""
from flask import request, current_app
from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError

from app.blueprints.api import api_bp
from app.blueprints.api.decorators import (
    create_access_token,
    create_refresh_token,
    decode_token,
    jwt_required,
)
from app.blueprints.api.helpers import api_error, api_success
from app.blueprints.api.schemas import UserSchema, RegisterSchema
from app.extensions import db, limiter
from app.models.user import User


def _token_payload(user):
    expires_in = current_app.config.get('JWT_ACCESS_TOKEN_MINUTES', 60) * 60
    return {
        'access_token': create_access_token(user.id),
        'refresh_token': create_refresh_token(user.id),
        'token_type': 'Bearer',
        'expires_in': expires_in,
        'user': UserSchema().dump(user),
    }


@api_bp.route('/auth/register', methods=['POST'])
@limiter.limit('5 per minute')
def api_register():
    """Create an account and return JWT tokens.

    Request body:
        {"email": "...", "password": "...", "first_name": "...", "last_name": "..."}
    """
    data = request.get_json(silent=True)
    if not data:
        return api_error('invalid_json', 'Request body must be valid JSON.', 400)

    try:
        fields = RegisterSchema().load(data)
    except ValidationError as e:
        return api_error('validation_error', 'Invalid registration data.', 422, details=e.messages)

    email = fields['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        return api_error('email_taken', 'An account with this email already exists.', 409)

    user = User(
        email=email,
        first_name=fields['first_name'].strip(),
        last_name=fields['last_name'].strip(),
    )
    user.set_password(fields['password'])
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return api_error('email_taken', 'An account with this email already exists.', 409)

    current_app.logger.info(f'New user registered: {user.id}')
    return api_success(_token_payload(user), 201)


@api_bp.route('/auth/login', methods=['POST'])
@limiter.limit('10 per minute')
def api_login():
    """Authenticate user and return JWT tokens.

    Request body:
        {"email": "...", "password": "..."}

    Returns:
        {"data": {"access_token": "...", "refresh_token": "...", "user": {...}}}
    """
    data = request.get_json(silent=True)
    if not data:
        return api_error('invalid_json', 'Request body must be valid JSON.', 400)

    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return api_error(
            'validation_error',
            'Email and password are required.',
            422,
            details=[
                {'field': f, 'message': f'{f} is required.', 'code': 'required'}
                for f in ['email', 'password'] if not data.get(f)
            ],
        )

    user = User.query.filter_by(email=email).first()

    if user and user.is_locked:
        return api_error(
            'account_locked',
            'Account temporarily locked due to too many failed attempts. Try again later.',
            429,
        )

    if user is None or not user.check_password(password):
        if user:
            user.record_failed_login(
                max_attempts=current_app.config.get('MAX_LOGIN_ATTEMPTS', 5),
                lockout_minutes=current_app.config.get('LOCKOUT_DURATION_MINUTES', 15),
            )
            db.session.commit()
        return api_error('invalid_credentials', 'Invalid email or password.', 401)

    if not user.is_active:
        return api_error('account_inactive', 'Account is deactivated.', 403)

    user.reset_failed_logins()
    db.session.commit()

    return api_success(_token_payload(user))


@api_bp.route('/auth/refresh', methods=['POST'])
@limiter.limit('20 per minute')
def api_refresh():
    """Exchange a refresh token for a new access token.

    Request body:
        {"refresh_token": "..."}
    """
    data = request.get_json(silent=True)
    if not data or not data.get('refresh_token'):
        return api_error('validation_error', 'refresh_token is required.', 422)

    payload = decode_token(data['refresh_token'])
    if payload is None:
        return api_error('invalid_token', 'Refresh token is invalid or expired.', 401)

    if payload.get('type') != 'refresh':
        return api_error('wrong_token_type', 'Refresh token required.', 401)

    try:
        user = db.session.get(User, int(payload['sub']))
    except (KeyError, ValueError, TypeError):
        user = None
    if user is None or not user.is_active:
        return api_error('user_not_found', 'User not found or deactivated.', 401)

    return api_success({
        'access_token': create_access_token(user.id),
        'token_type': 'Bearer',
        'expires_in': current_app.config.get('JWT_ACCESS_TOKEN_MINUTES', 60) * 60,
    })


@api_bp.route('/auth/me', methods=['GET'])
@jwt_required
def api_me():
    """Get current authenticated user profile."""
    return api_success(UserSchema().dump(request.api_user))

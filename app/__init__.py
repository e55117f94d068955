"""
Bison Books Application Factory.
Creates and configures the Flask application instance.
"""
import os
import json
import logging
import uuid
from datetime import datetime, timezone

import click
from flask import Flask, jsonify, request, g

from app.config import config
from app.extensions import init_extensions, db, cache


def _init_sentry(app):
    """Initialize Sentry error tracking for production."""
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        app.logger.info('SENTRY_DSN not set, error tracking disabled.')
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=float(os.environ.get('SENTRY_TRACES_RATE', '0.1')),
        environment=os.environ.get('FLASK_ENV', 'production'),
        send_default_pii=False,
    )
    app.logger.info('Sentry error tracking initialized.')


def create_app(config_name=None):
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration to use (development, testing, production)

    Returns:
        Configured Flask application instance
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)

    # Load configuration
    config_class = config[config_name]
    app.config.from_object(config_class)

    # Initialize Sentry (production only)
    if config_name == 'production':
        _init_sentry(app)

    # Production validation happens here
    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    init_extensions(app)

    # Enable response compression (gzip)
    from flask_compress import Compress
    Compress(app)

    register_blueprints(app)
    register_error_handlers(app)
    register_cli_commands(app)
    configure_logging(app)
    register_security_headers(app)

    # Create database tables (development only)
    if config_name == 'development':
        with app.app_context():
            db.create_all()

    return app


def register_blueprints(app):
    """Register all application blueprints."""
    from app.blueprints.billing import billing_bp
    from app.blueprints.api import api_bp
    from app.blueprints.webhooks import webhooks_bp

    app.register_blueprint(api_bp, url_prefix='/api/v1')
    app.register_blueprint(billing_bp, url_prefix='/api/v1/billing')
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'}), 200


def register_error_handlers(app):
    """Register JSON error handlers for common HTTP errors."""
    from app.blueprints.api.helpers import plan_limit_error
    from app.services.subscription_service import PlanLimitExceeded

    @app.errorhandler(PlanLimitExceeded)
    def plan_limit_reached(error):
        return plan_limit_error(error)

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({'error': {'code': 'unauthorized', 'message': 'Unauthorized.'}}), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({'error': {'code': 'forbidden', 'message': 'Access denied.'}}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': {'code': 'not_found', 'message': 'Resource not found.'}}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': {'code': 'method_not_allowed', 'message': 'Method not allowed.'}}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        request_id = g.get('request_id', '-')
        app.logger.error('500 Internal Server Error: %s (request_id=%s)', type(error).__name__, request_id, exc_info=True)
        return jsonify({'error': {'code': 'internal_error', 'message': 'Internal server error.', 'request_id': request_id}}), 500

    @app.errorhandler(429)
    def ratelimit_error(error):
        return jsonify({'error': {'code': 'rate_limit_exceeded', 'message': 'Too many requests. Try again later.'}}), 429


def register_cli_commands(app):
    """Register custom CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all tables and load the default plans."""
        from app.services.plans import DEFAULT_PLANS

        db.create_all()
        created = _seed_plans(DEFAULT_PLANS, update=False)
        print(f"Database initialized ({created} plans created).")

    @app.cli.command('seed-plans')
    @click.option('--update', is_flag=True, help='Overwrite price and features of existing plans')
    def seed_plans(update):
        """Load the Free, Basic and Enterprise plans."""
        from app.services.plans import DEFAULT_PLANS

        created = _seed_plans(DEFAULT_PLANS, update=update)
        print(f"Seeded plans: {created} created.")

    @app.cli.command('sweep-subscriptions')
    def sweep_subscriptions():
        """Downgrade expired subscriptions to the Free plan."""
        from app.services.subscription_service import SubscriptionService

        result = SubscriptionService.check_expired_subscriptions()
        if not result.success:
            raise click.ClickException(f'Sweep failed: {result.error}')
        print(f"Processed {result.count} expired subscriptions")


def _seed_plans(plans, update=False):
    """Insert missing plans (optionally refresh existing ones). Returns created count."""
    from app.models.subscription import SubscriptionPlan
    from app.services.subscription_service import PLANS_CACHE_KEY

    created = 0
    for plan_data in plans:
        plan = SubscriptionPlan.query.filter_by(name=plan_data['name']).first()
        if plan is None:
            db.session.add(SubscriptionPlan(**plan_data))
            created += 1
            print(f"Created plan: {plan_data['name']}")
        elif update:
            for field in ('description', 'price', 'currency', 'features'):
                setattr(plan, field, plan_data[field])
            print(f"Updated plan: {plan_data['name']}")
        else:
            print(f"Plan already exists: {plan_data['name']}")

    db.session.commit()
    cache.delete(PLANS_CACHE_KEY)
    return created


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production (cloud log aggregation)."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }
        try:
            log_entry['request_id'] = g.get('request_id', '-')
        except RuntimeError:
            pass  # Outside request context
        if record.exc_info and record.exc_info[0]:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def configure_logging(app):
    """Configure application logging.

    Production: JSON to stdout.
    Development: plain text.
    """
    if app.testing:
        return

    # Request ID middleware
    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])

    @app.after_request
    def log_request(response):
        app.logger.info(
            '%s %s %s',
            request.method,
            request.path,
            response.status_code,
        )
        response.headers['X-Request-ID'] = g.get('request_id', '-')
        return response

    if not app.debug:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(JSONFormatter())
        stream_handler.setLevel(logging.INFO)

        # app.logger is the "app" logger, parent of the service module loggers
        app.logger.handlers.clear()
        app.logger.addHandler(stream_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('Bison Books startup (JSON logging)')
    else:
        app.logger.setLevel(logging.DEBUG)
        app.logger.info('Bison Books startup (development)')


def register_security_headers(app):
    """Register security headers for all responses."""

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # HSTS - Force HTTPS (1 year, include subdomains)
        if not app.debug and not app.testing:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        return response

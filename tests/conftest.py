# =============================================================================
# Bison Books - Pytest Fixtures Configuration
# =============================================================================

import copy
from datetime import datetime, date, timedelta

import pytest

from app import create_app
from app.extensions import db
from app.models.user import User
from app.models.business import Business
from app.models.client import Client
from app.models.subscription import (
    Subscription, SubscriptionPlan, SubscriptionStatus, BillingInterval,
)
from app.services.plans import DEFAULT_PLANS
from app.blueprints.api.decorators import create_access_token


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture(scope='function')
def app():
    """Create and configure test application with SQLite in-memory database."""
    application = create_app('testing')

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Test client for HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """CLI test runner."""
    return app.test_cli_runner()


# =============================================================================
# User Fixtures
# =============================================================================

def _make_user(email, first_name='Test', last_name='User', password='Password123!'):
    user = User(email=email, first_name=first_name, last_name=last_name, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app):
    """Create the main test user."""
    return _make_user('owner@test.com', 'Ada', 'Obi')


@pytest.fixture
def other_user(app):
    """Create a second, unrelated user."""
    return _make_user('other@test.com', 'Bola', 'Ade')


@pytest.fixture
def auth_headers(app, user):
    """Bearer headers for the main test user."""
    return {'Authorization': f'Bearer {create_access_token(user.id)}'}


# =============================================================================
# Plan Fixtures
# =============================================================================

@pytest.fixture
def plans(app):
    """Seed Free, Basic and Enterprise plans. Returns them by name."""
    seeded = {}
    for plan_data in copy.deepcopy(DEFAULT_PLANS):
        plan = SubscriptionPlan(**plan_data)
        db.session.add(plan)
        seeded[plan.name] = plan
    db.session.commit()
    return seeded


@pytest.fixture
def free_plan(plans):
    return plans['Free']


@pytest.fixture
def basic_plan(plans):
    return plans['Basic']


@pytest.fixture
def enterprise_plan(plans):
    return plans['Enterprise']


@pytest.fixture
def make_subscription(app):
    """Factory for subscription rows with sensible defaults."""
    def _make(user, plan, status=SubscriptionStatus.ACTIVE,
              interval=BillingInterval.MONTHLY, start=None, end=None,
              cancel_at_period_end=False, **extra):
        start = start or datetime.utcnow() - timedelta(days=1)
        end = end or start + timedelta(days=30)
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            status=status,
            interval=interval,
            current_period_start=start,
            current_period_end=end,
            cancel_at_period_end=cancel_at_period_end,
            **extra,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription
    return _make


# =============================================================================
# Resource Fixtures
# =============================================================================

@pytest.fixture
def business(app, user):
    """A business owned by the main test user."""
    biz = Business(user_id=user.id, name='Obi Ventures', currency='NGN')
    db.session.add(biz)
    db.session.commit()
    return biz


@pytest.fixture
def sample_client(app, user, business):
    """A client of the test business."""
    c = Client(user_id=user.id, business_id=business.id, name='Acme Ltd', email='acme@test.com')
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def make_clients(app):
    """Create ``n`` clients for a user/business."""
    def _make(user, business, n):
        for i in range(n):
            db.session.add(Client(user_id=user.id, business_id=business.id, name=f'Client {i}'))
        db.session.commit()
    return _make


@pytest.fixture
def today():
    return date.today()

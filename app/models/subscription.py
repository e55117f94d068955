"""
Subscription models for Bison Books SaaS billing.
Tracks plan tiers (reference data), the per-user subscription and the
append-only trail of paid subscription invoices (Paystack).
"""
import enum
from datetime import datetime, date

from app.extensions import db


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle statuses of a subscription row."""
    ACTIVE = 'active'
    PENDING = 'pending'
    EXPIRED = 'expired'


class BillingInterval(str, enum.Enum):
    """Billing cycle length."""
    MONTHLY = 'monthly'
    YEARLY = 'yearly'


class SubscriptionInvoiceStatus(str, enum.Enum):
    PAID = 'paid'


class SubscriptionPlan(db.Model):
    """Plan tier: price plus per-resource usage limits.

    ``features`` maps a resource kind (``clients``, ``invoices_per_month``...)
    to an integer limit or the string ``"Unlimited"``.
    """

    __tablename__ = 'subscription_plans'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.String(255))
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default='NGN')
    features = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<SubscriptionPlan {self.name}>'


class Subscription(db.Model):
    """User subscription. One row per user (unique user_id)."""

    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id', ondelete='CASCADE'),
        unique=True,
        nullable=False,
        index=True,
    )
    plan_id = db.Column(
        db.Integer,
        db.ForeignKey('subscription_plans.id'),
        nullable=False,
        index=True,
    )

    status = db.Column(
        db.Enum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionStatus.PENDING,
    )
    interval = db.Column(
        db.Enum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=BillingInterval.MONTHLY,
    )

    # Billing period
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True, index=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    canceled_at = db.Column(db.DateTime, nullable=True)

    # Paystack codes
    paystack_authorization_code = db.Column(db.String(255), nullable=True)
    paystack_customer_code = db.Column(db.String(255), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = db.relationship('User', backref=db.backref('subscription', uselist=False))
    plan = db.relationship('SubscriptionPlan', lazy='joined')
    invoices = db.relationship(
        'SubscriptionInvoice',
        back_populates='subscription',
        cascade='all, delete-orphan',
        order_by='SubscriptionInvoice.paid_at',
    )

    __table_args__ = (
        db.CheckConstraint(
            'current_period_end IS NULL OR current_period_start IS NULL '
            'OR current_period_end > current_period_start',
            name='ck_subscriptions_period_order',
        ),
    )

    def __repr__(self):
        return f'<Subscription user={self.user_id} plan={self.plan_id} status={self.status.value}>'

    @property
    def is_active(self):
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_pending(self):
        return self.status == SubscriptionStatus.PENDING

    def is_expired(self, now=None):
        """True once the current period has elapsed."""
        if not self.current_period_end:
            return False
        return self.current_period_end < (now or datetime.utcnow())

    @property
    def days_remaining(self):
        """Days remaining in current billing period. None without a period end."""
        if not self.current_period_end:
            return None
        delta = self.current_period_end.date() - date.today()
        return max(0, delta.days)

    def to_dict(self):
        """Serialize subscription to dict."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan_id': self.plan_id,
            'plan': self.plan.name if self.plan else None,
            'status': self.status.value,
            'interval': self.interval.value,
            'current_period_start': self.current_period_start.isoformat() if self.current_period_start else None,
            'current_period_end': self.current_period_end.isoformat() if self.current_period_end else None,
            'cancel_at_period_end': self.cancel_at_period_end,
            'canceled_at': self.canceled_at.isoformat() if self.canceled_at else None,
            'days_remaining': self.days_remaining,
        }


class SubscriptionInvoice(db.Model):
    """Record of a successful subscription payment. Append-only."""

    __tablename__ = 'subscription_invoices'

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(
        db.Integer,
        db.ForeignKey('subscriptions.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    paystack_invoice_code = db.Column(db.String(255), nullable=True, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(
        db.Enum(SubscriptionInvoiceStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionInvoiceStatus.PAID,
    )
    paid_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    subscription = db.relationship('Subscription', back_populates='invoices')

    def __repr__(self):
        return f'<SubscriptionInvoice {self.paystack_invoice_code} {self.amount}>'

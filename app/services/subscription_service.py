"""
Subscription service for Bison Books SaaS billing.
Handles plan resolution, plan limits, the subscription lifecycle
(initialize / verify / cancel / expiry sweep) and Paystack webhooks.
"""
import json
from dataclasses import dataclass, asdict
from datetime import datetime, date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from dateutil.relativedelta import relativedelta
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db, cache
from app.services.plans import (
    ResourceKind, LimitCheckResult, evaluate_limit,
)
from app.models.subscription import (
    Subscription, SubscriptionPlan, SubscriptionInvoice,
    SubscriptionStatus, SubscriptionInvoiceStatus, BillingInterval,
)
from app.models.business import Business
from app.models.client import Client
from app.models.expense import Expense
from app.models.invoices import Invoice, Estimate
from app.models.receipt import Receipt
from app.services import paystack

PLANS_CACHE_KEY = 'subscription_plans'


class SubscriptionError(Exception):
    """User-facing validation or state-transition failure."""


class NotAuthenticated(SubscriptionError):
    """Write attempted without a signed-in user."""

    def __init__(self, message='User not authenticated'):
        super().__init__(message)


class PlanNotFound(SubscriptionError):
    """Requested plan does not exist."""


class SubscriptionConflict(SubscriptionError):
    """An active paid subscription blocks the requested change."""


class PaymentVerificationError(SubscriptionError):
    """The gateway reported the transaction as anything but successful."""


class InvalidWebhookSignature(ValueError):
    """Webhook body does not match its signature header."""


class InvalidWebhookPayload(ValueError):
    """Webhook body is not valid JSON."""


class PlanLimitExceeded(Exception):
    """Raised when a user exceeds their plan limits."""

    def __init__(self, result: LimitCheckResult, resource_kind: ResourceKind):
        self.result = result
        self.resource_kind = resource_kind
        self.current = result.current
        self.maximum = result.limit
        super().__init__(result.message)


@dataclass
class ResolvedPlan:
    subscription: Optional[Subscription]
    plan: Optional[SubscriptionPlan]


@dataclass
class InitResult:
    """Outcome of initialize_subscription."""
    success: bool
    subscription_id: int
    payment_url: Optional[str] = None
    reference: Optional[str] = None
    amount: Optional[Decimal] = None

    def to_dict(self):
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if self.amount is not None:
            data['amount'] = str(self.amount)
        return data


@dataclass
class SweepResult:
    """Outcome of a bulk expiry sweep."""
    success: bool
    count: int
    error: Optional[str] = None


def _utcnow():
    return datetime.utcnow()


def period_end_for(start: datetime, interval) -> datetime:
    """Calendar arithmetic: one month or one year after ``start``.

    A day past the end of the target month rolls over into the next one
    (Jan 31 + 1 month = Mar 3 in a 28-day February, Feb 29 + 1 year = Mar 1).
    """
    if BillingInterval(interval) == BillingInterval.YEARLY:
        end = start + relativedelta(years=1)
    else:
        end = start + relativedelta(months=1)
    # relativedelta clamps to the last day of the month
    return end + timedelta(days=start.day - end.day)


def compute_period(interval, now: Optional[datetime] = None):
    """Return (current_period_start, current_period_end) starting at ``now``."""
    start = now or _utcnow()
    return start, period_end_for(start, interval)


def compute_charge_amount(price, interval, yearly_discount=0.9) -> Decimal:
    """Amount to charge for one billing period, in major units.

    Yearly billing is twelve months at a discount, rounded to a whole unit.
    """
    price = Decimal(str(price))
    if BillingInterval(interval) == BillingInterval.YEARLY:
        total = price * 12 * Decimal(str(yearly_discount))
        return total.quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return price


def _charge_metadata(data: dict) -> dict:
    """Metadata of a Paystack transaction as a dict (it may arrive JSON-encoded)."""
    metadata = data.get('metadata')
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return {}
    return metadata if isinstance(metadata, dict) else {}


def _month_bounds(today: date):
    first = today.replace(day=1)
    return first, first + relativedelta(months=1)


class SubscriptionService:
    """Service for managing user subscriptions, plan limits and Paystack billing."""

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    @staticmethod
    def get_subscription_plans():
        """All plans, cheapest first."""
        return SubscriptionPlan.query.order_by(SubscriptionPlan.price.asc()).all()

    @staticmethod
    def get_subscription_plans_payload():
        """Serialized plan list, cached (plans are reference data)."""
        payload = cache.get(PLANS_CACHE_KEY)
        if payload is None:
            from app.blueprints.api.schemas import SubscriptionPlanSchema
            payload = SubscriptionPlanSchema(many=True).dump(
                SubscriptionService.get_subscription_plans()
            )
            cache.set(PLANS_CACHE_KEY, payload)
        return payload

    @staticmethod
    def get_free_plan() -> Optional[SubscriptionPlan]:
        return SubscriptionPlan.query.filter_by(
            name=current_app.config['FREE_PLAN_NAME']
        ).first()

    # ------------------------------------------------------------------
    # Plan Resolver
    # ------------------------------------------------------------------

    @staticmethod
    def resolve(user_id: Optional[int]) -> ResolvedPlan:
        """Current subscription and plan for a user.

        No user (no session) resolves to nothing. Lookup errors are logged
        and also resolve to nothing, so limit checks fall back to the free tier.
        """
        if user_id is None:
            return ResolvedPlan(None, None)

        try:
            subscription = Subscription.query.filter_by(user_id=user_id).one_or_none()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error fetching subscription for user %s: %s', user_id, e)
            return ResolvedPlan(None, None)

        if subscription is None:
            return ResolvedPlan(None, None)
        return ResolvedPlan(subscription, subscription.plan)

    @staticmethod
    def get_user_subscription(user_id: Optional[int]) -> Optional[Subscription]:
        return SubscriptionService.resolve(user_id).subscription

    @staticmethod
    def _cache_key(user_id):
        return f'subscription:{user_id}'

    @staticmethod
    def invalidate_cache(user_id) -> None:
        """Drop cached subscription views so the next read sees fresh data."""
        try:
            cache.delete(SubscriptionService._cache_key(user_id))
        except Exception as e:
            current_app.logger.warning('Cache invalidation failed for user %s: %s', user_id, e)

    @staticmethod
    def get_subscription_view(user_id: int) -> Optional[dict]:
        """Serialized current subscription (cached per user)."""
        key = SubscriptionService._cache_key(user_id)
        view = cache.get(key)
        if view is None:
            subscription = SubscriptionService.get_user_subscription(user_id)
            if subscription is None:
                return None
            view = subscription.to_dict()
            cache.set(key, view)
        return view

    # ------------------------------------------------------------------
    # Limit Checker
    # ------------------------------------------------------------------

    @staticmethod
    def check_plan_limit(user_id: Optional[int], resource_kind, current_count: int) -> LimitCheckResult:
        """Whether one more ``resource_kind`` may be created given ``current_count``."""
        resolved = SubscriptionService.resolve(user_id)
        result = evaluate_limit(
            resolved.subscription, resource_kind, current_count,
            current_app.config['FREE_PLAN_NAME'],
        )
        current_app.logger.debug(
            'Plan limit check user=%s kind=%s current=%s allowed=%s limit=%s',
            user_id, resource_kind, current_count, result.allowed, result.limit,
        )
        return result

    @staticmethod
    def count_usage(user_id: int, resource_kind, today: Optional[date] = None) -> int:
        """Current usage of a metered resource for a user.

        ``invoices_per_month`` counts invoices issued in the current calendar month.
        """
        kind = ResourceKind(resource_kind)

        if kind == ResourceKind.INVOICES_PER_MONTH:
            first, next_first = _month_bounds(today or date.today())
            return Invoice.query.filter(
                Invoice.user_id == user_id,
                Invoice.issue_date >= first,
                Invoice.issue_date < next_first,
            ).count()

        model = {
            ResourceKind.CLIENTS: Client,
            ResourceKind.ESTIMATES: Estimate,
            ResourceKind.RECEIPTS: Receipt,
            ResourceKind.EXPENSES: Expense,
            ResourceKind.BUSINESSES: Business,
        }[kind]
        return model.query.filter_by(user_id=user_id).count()

    @staticmethod
    def enforce_plan_limit(user_id: int, resource_kind, current_count: Optional[int] = None) -> LimitCheckResult:
        """Check a limit and raise when it is reached.

        Raises:
            PlanLimitExceeded: If no more resources may be created
        """
        kind = ResourceKind(resource_kind)
        if current_count is None:
            current_count = SubscriptionService.count_usage(user_id, kind)

        result = SubscriptionService.check_plan_limit(user_id, kind, current_count)
        if not result.allowed:
            raise PlanLimitExceeded(result, kind)
        return result

    @staticmethod
    def usage_summary(user_id: int) -> dict:
        """Per-resource usage and limit state for the billing dashboard."""
        resolved = SubscriptionService.resolve(user_id)
        limits = {}
        for kind in ResourceKind:
            count = SubscriptionService.count_usage(user_id, kind)
            limits[kind.value] = evaluate_limit(
                resolved.subscription, kind, count, current_app.config['FREE_PLAN_NAME']
            ).to_dict()

        return {
            'plan': resolved.plan.name if resolved.plan else current_app.config['FREE_PLAN_NAME'],
            'status': resolved.subscription.status.value if resolved.subscription else None,
            'limits': limits,
        }

    # ------------------------------------------------------------------
    # Subscription Mutator
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert_subscription(user_id: int, existing: Optional[Subscription], values: dict) -> Subscription:
        """Insert the user's subscription row, or update it if one exists.

        The unique constraint on user_id arbitrates concurrent first inserts:
        the loser falls back to updating the winner's row.
        """
        if existing is None:
            subscription = Subscription(user_id=user_id, **values)
            db.session.add(subscription)
            try:
                db.session.commit()
                return subscription
            except IntegrityError:
                db.session.rollback()
                existing = Subscription.query.filter_by(user_id=user_id).one_or_none()
                if existing is None:
                    current_app.logger.error('Error creating subscription for user %s', user_id)
                    raise SubscriptionError('Failed to create subscription')
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error('Error creating subscription for user %s: %s', user_id, e)
                raise SubscriptionError('Failed to create subscription') from e

        for field, value in values.items():
            setattr(existing, field, value)
        existing.updated_at = _utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error updating subscription %s: %s', existing.id, e)
            raise SubscriptionError('Failed to update subscription') from e
        return existing

    @staticmethod
    def initialize_subscription(user, plan_id, interval='monthly', now: Optional[datetime] = None) -> InitResult:
        """Start (or switch) a user's subscription to ``plan_id``.

        Free plans activate immediately. Paid plans are stored as pending and
        a Paystack checkout link is returned for the client to redirect to.

        Raises:
            NotAuthenticated: No user
            SubscriptionError: Unknown plan/interval, or an active paid
                subscription is already running
            paystack.PaystackError: Checkout link could not be created
        """
        if user is None:
            raise NotAuthenticated()

        try:
            interval = BillingInterval(interval)
        except ValueError:
            raise SubscriptionError(f'Invalid billing interval: {interval}')

        plan = db.session.get(SubscriptionPlan, plan_id) if plan_id is not None else None
        if plan is None:
            current_app.logger.error('Plan %s not found', plan_id)
            raise PlanNotFound('Plan not found')

        try:
            existing = Subscription.query.filter_by(user_id=user.id).one_or_none()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error checking existing subscription for user %s: %s', user.id, e)
            raise SubscriptionError('Failed to check existing subscription') from e

        now = now or _utcnow()
        free_name = current_app.config['FREE_PLAN_NAME']
        basic_name = current_app.config['BASIC_PLAN_NAME']

        if existing is not None:
            current_plan_name = existing.plan.name if existing.plan else None
            is_free_plan = current_plan_name == free_name

            if is_free_plan and plan.name == basic_name:
                current_app.logger.info('Upgrading user %s from %s to %s', user.id, free_name, basic_name)
            elif existing.is_active and not existing.is_expired(now) and not is_free_plan:
                current_app.logger.info('User %s already has an active %s subscription', user.id, current_plan_name)
                raise SubscriptionConflict(
                    'You already have an active subscription. '
                    'Please wait until it expires or cancel it first.'
                )

        period_start, period_end = compute_period(interval, now)
        is_free = Decimal(str(plan.price or 0)) == 0

        values = {
            'plan_id': plan.id,
            'interval': interval,
            'current_period_start': period_start,
            'current_period_end': period_end,
        }
        if is_free:
            values.update(
                status=SubscriptionStatus.ACTIVE,
                cancel_at_period_end=False,
                canceled_at=None,
            )
        else:
            values['status'] = SubscriptionStatus.PENDING

        subscription = SubscriptionService._upsert_subscription(user.id, existing, values)
        SubscriptionService.invalidate_cache(user.id)

        if is_free:
            current_app.logger.info('User %s subscribed to %s', user.id, plan.name)
            return InitResult(success=True, subscription_id=subscription.id)

        amount = compute_charge_amount(
            plan.price, interval, current_app.config['YEARLY_DISCOUNT']
        )
        callback_url = f"{current_app.config['APP_URL']}/billing/verify"
        payment = paystack.create_payment_link(
            user.email,
            amount,
            f'{callback_url}?subscription_id={subscription.id}',
            {
                'subscription_id': subscription.id,
                'user_id': user.id,
                'interval': interval.value,
            },
        )
        current_app.logger.info(
            'Pending %s subscription %s for user %s (amount=%s)',
            plan.name, subscription.id, user.id, amount,
        )

        return InitResult(
            success=True,
            subscription_id=subscription.id,
            payment_url=payment.get('authorization_url'),
            reference=payment.get('reference'),
            amount=amount,
        )

    @staticmethod
    def cancel_user_subscription(user, now: Optional[datetime] = None) -> Subscription:
        """Request cancellation at period end. Status and period are untouched.

        Raises:
            NotAuthenticated: No user
            SubscriptionError: No subscription, or the update failed
        """
        if user is None:
            raise NotAuthenticated()

        subscription = Subscription.query.filter_by(user_id=user.id).one_or_none()
        if subscription is None:
            raise SubscriptionError('Subscription not found')

        subscription.cancel_at_period_end = True
        subscription.canceled_at = now or _utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error canceling subscription %s: %s', subscription.id, e)
            raise SubscriptionError('Failed to update subscription') from e

        SubscriptionService.invalidate_cache(user.id)
        current_app.logger.info('Subscription %s set to cancel at period end', subscription.id)
        return subscription

    @staticmethod
    def refresh_subscription_data(user) -> dict:
        """Touch the subscription and drop cached views."""
        if user is None:
            return {'success': False, 'error': 'Not authenticated'}

        subscription = Subscription.query.filter_by(user_id=user.id).one_or_none()
        if subscription is None:
            return {'success': False, 'error': 'Failed to refresh subscription data'}

        subscription.updated_at = _utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error refreshing subscription %s: %s', subscription.id, e)
            return {'success': False, 'error': 'Failed to refresh subscription data'}

        SubscriptionService.invalidate_cache(user.id)
        return {'success': True, 'data': subscription.to_dict()}

    # ------------------------------------------------------------------
    # Payment Verifier
    # ------------------------------------------------------------------

    @staticmethod
    def activate_subscription(
        subscription: Subscription,
        reference: Optional[str],
        amount_minor,
        authorization_code: Optional[str] = None,
        customer_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Mark a paid subscription active and record the payment.

        Keeps the stored period when present, otherwise starts a new one.
        A failure to record the invoice is logged and does not undo activation.

        Raises:
            SubscriptionError: The subscription row could not be updated
        """
        now = now or _utcnow()
        if not subscription.current_period_start or not subscription.current_period_end:
            start, end = compute_period(subscription.interval, now)
            subscription.current_period_start = start
            subscription.current_period_end = end

        subscription.status = SubscriptionStatus.ACTIVE
        subscription.paystack_authorization_code = authorization_code
        subscription.paystack_customer_code = customer_code
        subscription.cancel_at_period_end = False
        subscription.canceled_at = None

        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error activating subscription %s: %s', subscription.id, e)
            raise SubscriptionError('Failed to update subscription') from e

        already_recorded = reference is not None and SubscriptionInvoice.query.filter_by(
            subscription_id=subscription.id,
            paystack_invoice_code=reference,
        ).first() is not None

        if not already_recorded:
            try:
                db.session.add(SubscriptionInvoice(
                    subscription_id=subscription.id,
                    paystack_invoice_code=reference,
                    amount=paystack.from_minor_units(amount_minor or 0),
                    status=SubscriptionInvoiceStatus.PAID,
                    paid_at=now,
                ))
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.warning('Error recording invoice for subscription %s: %s', subscription.id, e)

        SubscriptionService.invalidate_cache(subscription.user_id)
        current_app.logger.info('Subscription %s activated', subscription.id)
        return subscription

    @staticmethod
    def _recorded_invoice(reference: Optional[str]) -> Optional[SubscriptionInvoice]:
        if not reference:
            return None
        return SubscriptionInvoice.query.filter_by(paystack_invoice_code=reference).first()

    @staticmethod
    def expected_charge_minor(subscription: Subscription) -> int:
        """Charge for the subscription's plan and interval, in minor units."""
        if subscription.plan is None:
            return 0
        amount = compute_charge_amount(
            subscription.plan.price or 0,
            subscription.interval or BillingInterval.MONTHLY,
            current_app.config['YEARLY_DISCOUNT'],
        )
        return paystack.to_minor_units(amount)

    @staticmethod
    def verify_subscription_payment(reference: str, subscription_id, now: Optional[datetime] = None) -> dict:
        """Confirm a Paystack transaction and activate the subscription.

        Raises:
            paystack.PaystackError: Gateway unreachable or rejected the lookup
            PaymentVerificationError: Transaction is not successful, was made
                for another subscription, falls short of the plan price, or its
                reference was already applied
            SubscriptionError: Unknown subscription or failed update
        """
        current_app.logger.info('Verifying payment reference=%s subscription=%s', reference, subscription_id)

        payment = paystack.verify_payment(reference)
        if payment.get('status') != 'success':
            current_app.logger.error('Payment verification failed for %s: status=%s', reference, payment.get('status'))
            raise PaymentVerificationError('Payment verification failed')

        try:
            subscription = db.session.get(Subscription, int(subscription_id))
        except (TypeError, ValueError):
            subscription = None
        if subscription is None:
            current_app.logger.error('Subscription %s not found during verification', subscription_id)
            raise SubscriptionError('Failed to fetch subscription details')

        paid_for = _charge_metadata(payment).get('subscription_id')
        if paid_for is None or str(paid_for) != str(subscription.id):
            current_app.logger.error(
                'Payment %s was made for subscription %s, not %s',
                reference, paid_for, subscription.id,
            )
            raise PaymentVerificationError('Payment does not belong to this subscription')

        recorded = SubscriptionService._recorded_invoice(reference)
        if recorded is not None:
            if recorded.subscription_id == subscription.id and subscription.is_active:
                current_app.logger.info('Payment %s already applied to subscription %s', reference, subscription.id)
                return {'success': True}
            current_app.logger.warning('Payment reference %s reused for subscription %s', reference, subscription.id)
            raise PaymentVerificationError('Payment reference has already been used')

        expected = SubscriptionService.expected_charge_minor(subscription)
        if int(payment.get('amount') or 0) < expected:
            current_app.logger.error(
                'Payment %s amount %s below plan charge %s for subscription %s',
                reference, payment.get('amount'), expected, subscription.id,
            )
            raise PaymentVerificationError('Payment amount does not cover the plan price')

        SubscriptionService.activate_subscription(
            subscription,
            reference=reference,
            amount_minor=payment.get('amount'),
            authorization_code=(payment.get('authorization') or {}).get('authorization_code'),
            customer_code=(payment.get('customer') or {}).get('customer_code'),
            now=now,
        )
        return {'success': True}

    @staticmethod
    def fix_pending_subscription(user, now: Optional[datetime] = None) -> dict:
        """Activate a subscription stuck in ``pending`` when a payment exists.

        A paid invoice restarts the period from now; a stored authorization
        code alone activates with the stored period.
        """
        if user is None:
            return {'success': False, 'message': 'Not authenticated'}

        subscription = Subscription.query.filter_by(
            user_id=user.id, status=SubscriptionStatus.PENDING,
        ).one_or_none()
        if subscription is None:
            return {'success': False, 'message': 'No pending subscription found'}

        paid_invoice = SubscriptionInvoice.query.filter_by(
            subscription_id=subscription.id,
            status=SubscriptionInvoiceStatus.PAID,
        ).first()

        if paid_invoice is not None:
            start, end = compute_period(subscription.interval, now)
            subscription.current_period_start = start
            subscription.current_period_end = end
        elif not subscription.paystack_authorization_code:
            return {'success': False, 'message': 'No payment found for this subscription'}

        subscription.status = SubscriptionStatus.ACTIVE
        subscription.updated_at = _utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error fixing pending subscription %s: %s', subscription.id, e)
            return {'success': False, 'message': 'Failed to update subscription'}

        SubscriptionService.invalidate_cache(user.id)
        return {'success': True, 'message': 'Subscription activated successfully'}

    @staticmethod
    def check_subscription_payment_status(user) -> dict:
        """Payment summary of the user's subscription."""
        if user is None:
            return {'success': False, 'message': 'Not authenticated'}

        subscription = SubscriptionService.get_user_subscription(user.id)
        if subscription is None:
            return {'success': False, 'message': 'No subscription found'}

        return {
            'success': True,
            'subscription': {
                'id': subscription.id,
                'status': subscription.status.value,
                'plan': subscription.plan.name if subscription.plan else None,
                'interval': subscription.interval.value,
                'current_period_end': (
                    subscription.current_period_end.isoformat()
                    if subscription.current_period_end else None
                ),
                'has_payment': bool(subscription.paystack_authorization_code),
                'invoices': len(subscription.invoices),
            },
        }

    # ------------------------------------------------------------------
    # Expiry Sweeper
    # ------------------------------------------------------------------

    @staticmethod
    def _downgrade_to_free(subscription: Subscription, free_plan: SubscriptionPlan, now: datetime) -> None:
        start, end = compute_period(BillingInterval.MONTHLY, now)
        subscription.plan_id = free_plan.id
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.interval = BillingInterval.MONTHLY
        subscription.current_period_start = start
        subscription.current_period_end = end
        subscription.cancel_at_period_end = False
        subscription.canceled_at = None
        subscription.updated_at = now

    @staticmethod
    def check_expired_subscriptions(now: Optional[datetime] = None) -> SweepResult:
        """Downgrade every active subscription whose period has elapsed.

        Subscriptions flagged cancel_at_period_end are skipped. Each row is
        committed on its own; a failing row is logged and the sweep goes on.
        """
        now = now or _utcnow()

        try:
            expired = Subscription.query.filter(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.current_period_end < now,
                or_(
                    Subscription.cancel_at_period_end.is_(False),
                    Subscription.cancel_at_period_end.is_(None),
                ),
            ).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('Error fetching expired subscriptions: %s', e)
            return SweepResult(success=False, count=0, error=str(e))

        current_app.logger.info('Found %d expired subscriptions', len(expired))
        if not expired:
            return SweepResult(success=True, count=0)

        free_plan = SubscriptionService.get_free_plan()
        if free_plan is None:
            current_app.logger.error('Free plan not found, cannot downgrade expired subscriptions')
            return SweepResult(success=False, count=0, error='Free plan not found')

        free_plan_id = free_plan.id
        updated = 0
        for subscription_id, user_id in [(s.id, s.user_id) for s in expired]:
            try:
                subscription = db.session.get(Subscription, subscription_id)
                SubscriptionService._downgrade_to_free(
                    subscription, db.session.get(SubscriptionPlan, free_plan_id), now
                )
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error('Error updating subscription %s: %s', subscription_id, e)
                continue

            updated += 1
            SubscriptionService.invalidate_cache(user_id)
            current_app.logger.info('Downgraded subscription %s to free plan', subscription_id)

        return SweepResult(success=True, count=updated)

    @staticmethod
    def check_user_subscription_status(user, now: Optional[datetime] = None) -> dict:
        """Single-user expiry check, downgrading on the spot if needed."""
        if user is None:
            return {'success': False, 'message': 'Not authenticated'}

        subscription = SubscriptionService.get_user_subscription(user.id)
        if subscription is None:
            return {'success': False, 'message': 'No subscription found'}

        now = now or _utcnow()
        if subscription.is_active and subscription.is_expired(now) and not subscription.cancel_at_period_end:
            free_plan = SubscriptionService.get_free_plan()
            if free_plan is None:
                return {'success': False, 'message': 'Free plan not found'}

            SubscriptionService._downgrade_to_free(subscription, free_plan, now)
            try:
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error('Error downgrading subscription %s: %s', subscription.id, e)
                return {'success': False, 'message': 'Failed to update subscription'}

            SubscriptionService.invalidate_cache(user.id)
            return {
                'success': True,
                'message': 'Subscription expired and downgraded to free plan',
                'was_expired': True,
            }

        return {
            'success': True,
            'message': 'Subscription is active',
            'expires_at': (
                subscription.current_period_end.isoformat()
                if subscription.current_period_end else None
            ),
            'was_expired': False,
        }

    # ------------------------------------------------------------------
    # Paystack webhook
    # ------------------------------------------------------------------

    @staticmethod
    def handle_webhook_event(payload: bytes, signature: str) -> dict:
        """Handle an incoming Paystack webhook delivery.

        Returns:
            Dict with event type and processing result

        Raises:
            InvalidWebhookSignature: Signature does not match the body
            InvalidWebhookPayload: Body is not JSON
            paystack.PaystackError: Secret key not configured
            SubscriptionError: Activation failed
        """
        if not paystack.verify_webhook_signature(payload, signature):
            raise InvalidWebhookSignature('Invalid webhook signature')

        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidWebhookPayload('Invalid JSON payload')

        event_type = event.get('event')
        data = event.get('data') or {}
        result = {'event_type': event_type, 'handled': False}

        if event_type == 'charge.success':
            result['handled'] = SubscriptionService._handle_charge_success(data)
        else:
            current_app.logger.info('Unhandled Paystack event: %s', event_type)

        return result

    @staticmethod
    def _handle_charge_success(data: dict) -> bool:
        """Process charge.success: activate the subscription named in metadata."""
        subscription_id = _charge_metadata(data).get('subscription_id')
        if data.get('status') != 'success' or not subscription_id:
            return False

        try:
            subscription = db.session.get(Subscription, int(subscription_id))
        except (TypeError, ValueError):
            subscription = None
        if subscription is None:
            current_app.logger.warning('Charge succeeded for unknown subscription_id=%s', subscription_id)
            return False

        reference = data.get('reference')
        if SubscriptionService._recorded_invoice(reference) is not None:
            current_app.logger.info('Charge %s already processed', reference)
            return False

        expected = SubscriptionService.expected_charge_minor(subscription)
        if int(data.get('amount') or 0) < expected:
            current_app.logger.warning(
                'Charge %s amount %s below plan charge %s for subscription %s',
                reference, data.get('amount'), expected, subscription_id,
            )
            return False

        SubscriptionService.activate_subscription(
            subscription,
            reference=data.get('reference'),
            amount_minor=data.get('amount'),
            authorization_code=(data.get('authorization') or {}).get('authorization_code'),
            customer_code=(data.get('customer') or {}).get('customer_code'),
        )
        current_app.logger.info('Processed successful charge for subscription %s', subscription_id)
        return True

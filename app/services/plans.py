"""
Plan limits configuration for Bison Books SaaS billing.
Defines the metered resource kinds, the free-tier defaults and the pure
decision rules that turn a plan's feature map into an allow/deny answer.
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class ResourceKind(str, enum.Enum):
    """Metered entity categories."""
    CLIENTS = 'clients'
    INVOICES_PER_MONTH = 'invoices_per_month'
    ESTIMATES = 'estimates'
    RECEIPTS = 'receipts'
    EXPENSES = 'expenses'
    BUSINESSES = 'businesses'

    @property
    def label(self):
        return RESOURCE_LABELS[self]


RESOURCE_LABELS = {
    ResourceKind.CLIENTS: 'clients',
    ResourceKind.INVOICES_PER_MONTH: 'invoices this month',
    ResourceKind.ESTIMATES: 'estimates',
    ResourceKind.RECEIPTS: 'receipts',
    ResourceKind.EXPENSES: 'expenses',
    ResourceKind.BUSINESSES: 'businesses',
}

# Sentinel stored in plan feature maps
UNLIMITED = 'Unlimited'

FREE_PLAN_NAME = 'Free'

FREE_PLAN_LIMIT = 5

DEFAULT_FREE_PLAN_LIMITS: Dict[str, int] = {
    kind.value: FREE_PLAN_LIMIT for kind in ResourceKind
}

PREMIUM_PLAN_DEFAULTS: Dict[str, str] = {
    kind.value: UNLIMITED for kind in ResourceKind
}

# Reference data loaded by `flask seed-plans`
DEFAULT_PLANS = [
    {
        'name': 'Free',
        'description': 'Get started with the essentials.',
        'price': 0,
        'currency': 'NGN',
        'features': dict(DEFAULT_FREE_PLAN_LIMITS),
    },
    {
        'name': 'Basic',
        'description': 'For growing businesses.',
        'price': 2500,
        'currency': 'NGN',
        'features': {
            'clients': 100,
            'invoices_per_month': 100,
            'estimates': 100,
            'receipts': 100,
            'expenses': 200,
            'businesses': 3,
        },
    },
    {
        'name': 'Enterprise',
        'description': 'Unlimited everything, priority support.',
        'price': 10000,
        'currency': 'NGN',
        'features': dict(PREMIUM_PLAN_DEFAULTS),
    },
]


def parse_limit(value: Any) -> Optional[int]:
    """Normalize a feature-map value.

    Returns None for "Unlimited", an int otherwise.

    Raises:
        ValueError: value is neither the sentinel nor an integer-like value
    """
    if isinstance(value, str):
        if value.strip().lower() == UNLIMITED.lower():
            return None
        return int(value.strip(), 10)
    if isinstance(value, bool):
        raise ValueError(f'Invalid plan limit: {value!r}')
    return int(value)


def _has_feature(features: Dict[str, Any], kind: ResourceKind) -> bool:
    return features.get(kind.value) not in (None, '')


@dataclass(frozen=True)
class LimitCheckResult:
    """Outcome of a plan limit check. ``limit is None`` means unlimited."""
    allowed: bool
    message: str
    limit: Optional[int]
    current: int

    @property
    def is_unlimited(self):
        return self.limit is None

    @property
    def remaining(self):
        if self.limit is None:
            return None
        return max(0, self.limit - self.current)

    def to_dict(self):
        return {
            'allowed': self.allowed,
            'message': self.message,
            'limit': UNLIMITED if self.limit is None else self.limit,
            'current': self.current,
        }


def _free_tier_result(kind: ResourceKind, current: int, pending: bool = False) -> LimitCheckResult:
    limit = DEFAULT_FREE_PLAN_LIMITS[kind.value]
    suffix = ' Your subscription will be activated once payment is confirmed.' if pending else ''

    if current >= limit:
        if pending:
            message = f"You've reached your free plan limit of {limit} {kind.label}.{suffix}"
        else:
            message = (
                f"You've reached your free plan limit of {limit} {kind.label}. "
                f"Please upgrade your plan to add more."
            )
        return LimitCheckResult(False, message, limit, current)

    return LimitCheckResult(
        True,
        f'You can add {limit - current} more {kind.label} on your free plan.{suffix}',
        limit,
        current,
    )


def evaluate_limit(subscription, resource_kind, current_count: int,
                   free_plan_name: str = FREE_PLAN_NAME) -> LimitCheckResult:
    """Decide whether one more resource of ``resource_kind`` may be created.

    Pure function over already-fetched data: ``subscription`` is a
    Subscription (with its plan loaded) or None. ``free_plan_name`` names
    the plan whose missing feature entries fall back to the free defaults.

    Rules, first match wins:
        1. no subscription            -> free-tier limits
        2. pending subscription       -> free-tier limits
        3. plan has no feature map    -> free-tier limits
        4. non-Free plan, kind absent -> unlimited
        5. feature value, else free default
        6. "Unlimited"                -> allowed
        7. allowed iff current < limit
    """
    kind = ResourceKind(resource_kind)
    current = int(current_count)

    if subscription is None:
        return _free_tier_result(kind, current)

    if subscription.is_pending:
        return _free_tier_result(kind, current, pending=True)

    plan = subscription.plan
    features = plan.features if plan is not None else None
    if not features:
        return _free_tier_result(kind, current)

    plan_name = plan.name
    if plan_name and plan_name != free_plan_name and not _has_feature(features, kind):
        return LimitCheckResult(
            True,
            f'Your {plan_name} plan allows unlimited {kind.label}.',
            None,
            current,
        )

    raw_limit = features[kind.value] if _has_feature(features, kind) else DEFAULT_FREE_PLAN_LIMITS[kind.value]
    try:
        limit = parse_limit(raw_limit)
    except (TypeError, ValueError):
        limit = DEFAULT_FREE_PLAN_LIMITS[kind.value]

    if limit is None:
        return LimitCheckResult(True, f'Your plan allows unlimited {kind.label}.', None, current)

    if current >= limit:
        return LimitCheckResult(
            False,
            f"You've reached your plan limit of {limit} {kind.label}. "
            f"Please upgrade your plan to add more.",
            limit,
            current,
        )

    return LimitCheckResult(
        True,
        f'You can add {limit - current} more {kind.label} on your current plan.',
        limit,
        current,
    )

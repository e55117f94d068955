"""
Decorators package.
Billing decorators for plan-limit enforcement and scheduler authentication.
"""
from app.decorators.billing import (
    plan_limit_required,
    cron_secret_required,
)

__all__ = [
    'plan_limit_required',
    'cron_secret_required',
]

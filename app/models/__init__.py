"""
SQLAlchemy models for Bison Books.
All models are imported here for easy access.
"""
from app.models.user import User
from app.models.business import Business
from app.models.client import Client
from app.models.invoices import Invoice, InvoiceStatus, Estimate, EstimateStatus
from app.models.receipt import Receipt
from app.models.expense import Expense
from app.models.subscription import (
    SubscriptionPlan,
    Subscription,
    SubscriptionInvoice,
    SubscriptionStatus,
    SubscriptionInvoiceStatus,
    BillingInterval,
)

__all__ = [
    'User',
    'Business',
    'Client',
    'Invoice',
    'InvoiceStatus',
    'Estimate',
    'EstimateStatus',
    'Receipt',
    'Expense',
    'SubscriptionPlan',
    'Subscription',
    'SubscriptionInvoice',
    'SubscriptionStatus',
    'SubscriptionInvoiceStatus',
    'BillingInterval',
]

"""
Services package for Bison Books.
Contains business logic separated from routes.
"""

from app.services.subscription_service import SubscriptionService

__all__ = [
    'SubscriptionService',
]

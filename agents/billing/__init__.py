"""Billing Agent - Subscription tier checks against Stripe."""

from .handler import subscription_check_handler
from .subscription import (
    StripeClient,
    SubscriptionCache,
    SubscriptionState,
    check_subscription,
    tier_for_price,
)

__all__ = [
    "subscription_check_handler",
    "StripeClient",
    "SubscriptionCache",
    "SubscriptionState",
    "check_subscription",
    "tier_for_price",
]

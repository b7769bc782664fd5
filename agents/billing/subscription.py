"""Subscription tier lookup against the Stripe REST API."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

import config
import database as db
from agents.common.errors import UpstreamError

FREE_TIER = "free"

ADMIN_STATUS = {
    "subscribed": True,
    "tier": "enterprise",
    "is_admin": True,
    "subscription_end": None,
}

# Profile columns reset when there is no active subscription
UNSUBSCRIBED_PROFILE = {
    "subscription_tier": FREE_TIER,
    "subscription_status": None,
    "stripe_subscription_id": None,
}


def tier_for_price(price_id: Optional[str]) -> str:
    """Map a Stripe price id to a tier name; unknown prices count as free."""
    return config.STRIPE_PRICE_TIERS.get(price_id, FREE_TIER)


def _period_end_iso(timestamp: Optional[int]) -> Optional[str]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _first_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


class StripeClient:
    """Minimal Stripe client for the two list calls the tier check needs."""

    def __init__(self, secret_key: Optional[str] = None, session=None,
                 base_url: Optional[str] = None):
        self.secret_key = secret_key or config.STRIPE_SECRET_KEY
        self.session = session or requests.Session()
        self.base_url = (base_url or config.STRIPE_API_URL).rstrip("/")

    def _list(self, resource: str, params: Dict[str, Any]) -> list:
        if not self.secret_key:
            raise ValueError("Stripe secret key required. Set STRIPE_SECRET_KEY env var.")
        try:
            response = self.session.get(
                f"{self.base_url}/{resource}",
                params=params,
                auth=(self.secret_key, ""),
                timeout=config.HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Stripe request failed: {e}")
        if not response.ok:
            raise UpstreamError(f"Stripe returned {response.status_code}",
                                upstream_status=response.status_code)
        return response.json().get("data") or []

    def find_customer(self, email: str) -> Optional[Dict[str, Any]]:
        customers = self._list("customers", {"email": email, "limit": 1})
        return customers[0] if customers else None

    def active_subscription(self, customer_id: str) -> Optional[Dict[str, Any]]:
        subscriptions = self._list(
            "subscriptions", {"customer": customer_id, "status": "active", "limit": 1}
        )
        return subscriptions[0] if subscriptions else None


def check_subscription(user: Dict[str, Any], stripe: Optional[StripeClient] = None,
                       update_profile: Optional[Callable[[int, Dict[str, Any]], Any]] = None
                       ) -> Dict[str, Any]:
    """Resolve the user's tier and write it back to their profile.

    ``user`` needs ``id``, ``email`` and ``is_admin``. Admins are granted the
    top tier without asking Stripe.
    """
    if user.get("is_admin"):
        print(f"[BILLING] User {user['id']} is admin, granting full access")
        return dict(ADMIN_STATUS)

    if not user.get("email"):
        raise ValueError("User email not available")

    update_profile = update_profile or db.update_profile
    stripe = stripe or StripeClient()

    customer = stripe.find_customer(user["email"])
    if not customer:
        print(f"[BILLING] No Stripe customer for user {user['id']}")
        update_profile(user["id"], dict(UNSUBSCRIBED_PROFILE))
        return {"subscribed": False, "tier": FREE_TIER, "is_admin": False}

    subscription = stripe.active_subscription(customer["id"])
    if not subscription:
        print(f"[BILLING] No active subscription for customer {customer['id']}")
        update_profile(user["id"], dict(UNSUBSCRIBED_PROFILE))
        return {"subscribed": False, "tier": FREE_TIER, "subscription_end": None, "is_admin": False}

    tier = tier_for_price(_first_price_id(subscription))
    subscription_end = _period_end_iso(subscription.get("current_period_end"))
    print(f"[BILLING] Active subscription {subscription['id']}: tier={tier}, ends {subscription_end}")

    update_profile(user["id"], {
        "subscription_tier": tier,
        "subscription_status": "active",
        "stripe_customer_id": customer["id"],
        "stripe_subscription_id": subscription["id"],
        "subscription_end_date": subscription_end,
    })
    return {"subscribed": True, "tier": tier, "subscription_end": subscription_end, "is_admin": False}


@dataclass
class SubscriptionState:
    """Last known subscription status for one user.

    Owned by whoever needs it and refreshed explicitly: ``fetch`` is the
    injected lookup (usually a bound ``check_subscription``), and callers
    decide when to refresh by asking ``is_stale``.
    """

    fetch: Callable[[], Dict[str, Any]]
    tier: str = FREE_TIER
    subscribed: bool = False
    is_admin: bool = False
    subscription_end: Optional[str] = None
    checked_at: Optional[float] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def refresh(self) -> "SubscriptionState":
        """Re-run the lookup. Any failure falls back to the free tier."""
        try:
            status = self.fetch()
        except Exception as e:
            print(f"[BILLING] Error checking subscription: {e}")
            status = {}
        self.tier = status.get("tier") or FREE_TIER
        self.subscribed = bool(status.get("subscribed"))
        self.is_admin = bool(status.get("is_admin"))
        self.subscription_end = status.get("subscription_end")
        self.checked_at = self.clock()
        return self

    def is_stale(self, max_age: float = 60.0) -> bool:
        if self.checked_at is None:
            return True
        return self.clock() - self.checked_at >= max_age

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscribed": self.subscribed,
            "tier": self.tier,
            "is_admin": self.is_admin,
            "subscription_end": self.subscription_end,
        }


class SubscriptionCache:
    """Per-user ``SubscriptionState`` objects for one running server.

    Each state re-reads the user through ``load_user`` on refresh, so email or
    admin changes are picked up on the next check. States that have gone stale
    are dropped whenever a new one is added, which keeps the map to recently
    active users.
    """

    def __init__(self, load_user: Optional[Callable[[int], Optional[Dict[str, Any]]]] = None,
                 check: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
                 max_age: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.load_user = load_user or db.get_user_by_id
        self.check = check or check_subscription
        self.max_age = max_age
        self.clock = clock
        self._states = {}  # type: Dict[int, SubscriptionState]

    def __len__(self):
        return len(self._states)

    def _fetcher(self, user_id: int) -> Callable[[], Dict[str, Any]]:
        def fetch():
            user = self.load_user(user_id)
            if not user:
                raise ValueError(f"User {user_id} not found")
            return self.check(user)
        return fetch

    def get(self, user_id: int) -> SubscriptionState:
        """Current state for ``user_id``, refreshed first if it is stale."""
        state = self._states.get(user_id)
        if state is None:
            self._drop_stale()
            state = SubscriptionState(fetch=self._fetcher(user_id), clock=self.clock)
            self._states[user_id] = state
        if state.is_stale(self.max_age):
            state.refresh()
        return state

    def forget(self, user_id: int) -> None:
        self._states.pop(user_id, None)

    def _drop_stale(self) -> None:
        for user_id in [u for u, s in self._states.items() if s.is_stale(self.max_age)]:
            del self._states[user_id]

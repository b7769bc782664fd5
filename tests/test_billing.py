"""Tests for subscription tier checks and SubscriptionState."""

import pytest

from agents.billing import (
    StripeClient,
    SubscriptionCache,
    SubscriptionState,
    check_subscription,
    subscription_check_handler,
    tier_for_price,
)
from conftest import FakeClock, FakeResponse, FakeSession

PRO_PRICE = "price_1SRLJ0DAZiZpMiexaU6J5qNG"
ENTERPRISE_PRICE = "price_1SRLJ0DAZiZpMiexGhJpwc6p"

USER = {"id": 7, "email": "bob@example.com", "is_admin": False}


def stripe_with(*responses):
    session = FakeSession(*responses)
    return StripeClient(secret_key="sk_test", session=session, base_url="https://stripe.test/v1"), session


def active_subscription(price_id, period_end=1798761600):
    return {"data": [{
        "id": "sub_123",
        "current_period_end": period_end,
        "items": {"data": [{"price": {"id": price_id}}]},
    }]}


class ProfileRecorder:
    def __init__(self):
        self.updates = []

    def __call__(self, user_id, updates):
        self.updates.append((user_id, updates))


def test_tier_mapping():
    assert tier_for_price(PRO_PRICE) == "pro"
    assert tier_for_price(ENTERPRISE_PRICE) == "enterprise"
    assert tier_for_price("price_unknown") == "free"
    assert tier_for_price(None) == "free"


def test_admin_gets_enterprise_without_calling_stripe():
    stripe, session = stripe_with()
    status = check_subscription({"id": 1, "email": "admin@example.com", "is_admin": True},
                                stripe=stripe, update_profile=ProfileRecorder())
    assert status == {"subscribed": True, "tier": "enterprise", "is_admin": True, "subscription_end": None}
    assert session.calls == []


def test_no_customer_resets_profile_to_free():
    stripe, session = stripe_with(FakeResponse(200, {"data": []}))
    recorder = ProfileRecorder()

    status = check_subscription(USER, stripe=stripe, update_profile=recorder)

    assert status == {"subscribed": False, "tier": "free", "is_admin": False}
    assert session.calls[0].url == "https://stripe.test/v1/customers"
    assert session.calls[0].params == {"email": "bob@example.com", "limit": 1}
    assert session.calls[0].auth == ("sk_test", "")
    assert recorder.updates == [(7, {
        "subscription_tier": "free",
        "subscription_status": None,
        "stripe_subscription_id": None,
    })]


def test_active_subscription_sets_tier_and_end_date():
    stripe, session = stripe_with(
        FakeResponse(200, {"data": [{"id": "cus_42"}]}),
        FakeResponse(200, active_subscription(PRO_PRICE)),
    )
    recorder = ProfileRecorder()

    status = check_subscription(USER, stripe=stripe, update_profile=recorder)

    assert status == {
        "subscribed": True,
        "tier": "pro",
        "subscription_end": "2027-01-01T00:00:00Z",
        "is_admin": False,
    }
    assert session.calls[1].params == {"customer": "cus_42", "status": "active", "limit": 1}
    assert recorder.updates[0][1]["stripe_customer_id"] == "cus_42"
    assert recorder.updates[0][1]["subscription_status"] == "active"


def test_customer_without_active_subscription_is_free():
    stripe, _ = stripe_with(
        FakeResponse(200, {"data": [{"id": "cus_42"}]}),
        FakeResponse(200, {"data": []}),
    )
    recorder = ProfileRecorder()
    status = check_subscription(USER, stripe=stripe, update_profile=recorder)
    assert status["subscribed"] is False
    assert status["tier"] == "free"
    assert recorder.updates[0][1]["subscription_tier"] == "free"


def test_stripe_error_becomes_handler_error():
    stripe, _ = stripe_with(FakeResponse(401, {"error": {"message": "bad key"}}))
    payload, status = subscription_check_handler(USER, stripe=stripe)
    assert status == 502
    assert "Stripe" in payload["error"]


def test_subscription_writes_profile_in_database(temp_db, user_id):
    stripe, _ = stripe_with(
        FakeResponse(200, {"data": [{"id": "cus_42"}]}),
        FakeResponse(200, active_subscription(ENTERPRISE_PRICE)),
    )
    user = temp_db.get_user_by_id(user_id)

    check_subscription(user, stripe=stripe)

    profile = temp_db.get_profile(user_id)
    assert profile["subscription_tier"] == "enterprise"
    assert profile["stripe_subscription_id"] == "sub_123"


def test_subscription_state_refresh_and_staleness():
    clock = FakeClock()
    state = SubscriptionState(fetch=lambda: {"subscribed": True, "tier": "pro"}, clock=clock)
    assert state.is_stale()

    state.refresh()
    assert state.tier == "pro"
    assert state.subscribed is True
    assert not state.is_stale(max_age=60)

    clock.now += 61
    assert state.is_stale(max_age=60)


def test_subscription_state_falls_back_to_free_on_error():
    def broken():
        raise RuntimeError("session expired")

    state = SubscriptionState(fetch=broken, tier="pro", subscribed=True)
    state.refresh()
    assert state.to_dict() == {"subscribed": False, "tier": "free", "is_admin": False, "subscription_end": None}


def test_missing_secret_key_is_reported():
    stripe = StripeClient(secret_key=None, session=FakeSession())
    stripe.secret_key = None
    with pytest.raises(ValueError):
        stripe.find_customer("bob@example.com")


def test_cache_rereads_user_on_each_refresh():
    clock = FakeClock()
    users = {7: {"id": 7, "email": "old@example.com", "is_admin": False}}
    seen = []

    def check(user):
        seen.append(dict(user))
        return {"subscribed": user["is_admin"], "tier": "enterprise" if user["is_admin"] else "free"}

    cache = SubscriptionCache(load_user=users.get, check=check, max_age=60, clock=clock)
    assert cache.get(7).tier == "free"

    users[7] = {"id": 7, "email": "new@example.com", "is_admin": True}
    assert cache.get(7).tier == "free"
    assert len(seen) == 1

    clock.now += 61
    state = cache.get(7)

    assert seen[-1] == {"id": 7, "email": "new@example.com", "is_admin": True}
    assert state.tier == "enterprise"


def test_cache_drops_stale_users_and_forgets_on_request():
    clock = FakeClock()
    cache = SubscriptionCache(load_user=lambda uid: {"id": uid, "email": f"u{uid}@example.com"},
                              check=lambda user: {"tier": "pro", "subscribed": True},
                              max_age=60, clock=clock)
    cache.get(1)
    cache.get(2)
    assert len(cache) == 2

    clock.now += 61
    cache.get(3)
    assert len(cache) == 1

    cache.forget(3)
    assert len(cache) == 0


def test_cache_missing_user_falls_back_to_free():
    cache = SubscriptionCache(load_user=lambda uid: None, check=lambda user: {"tier": "pro"})
    assert cache.get(99).to_dict()["tier"] == "free"

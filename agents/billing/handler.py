"""Request handler for subscription checks."""

from typing import Any, Dict, Optional

from agents.common.errors import WaymarkError
from .subscription import StripeClient, check_subscription


def subscription_check_handler(user: Dict[str, Any], stripe: Optional[StripeClient] = None):
    """Return {subscribed, tier, is_admin, subscription_end} for the signed-in user."""
    try:
        return check_subscription(user, stripe=stripe), 200
    except WaymarkError as e:
        print(f"[BILLING] ERROR in check-subscription: {e.message}")
        return {"error": e.message}, e.status
    except Exception as e:
        print(f"[BILLING] ERROR in check-subscription: {e}")
        return {"error": str(e)}, 500

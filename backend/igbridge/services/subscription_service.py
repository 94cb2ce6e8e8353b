"""Subscription service - is the billing account behind a license paid up"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from igbridge.core.config import settings
from igbridge.db.repositories import BillingAccountRecord, BillingAccountRepository
from igbridge.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


def has_active_subscription(account: Optional[BillingAccountRecord], now: Optional[datetime] = None) -> bool:
    """Trialing with an unexpired trial, or active with an unexpired period"""
    if account is None:
        return False
    now = now or utcnow()

    trial_end = ensure_utc(account.trial_end)
    if account.subscription_status == "trialing" and trial_end and trial_end > now:
        return True

    period_end = ensure_utc(account.subscription_current_period_end)
    if account.subscription_status == "active" and period_end and period_end > now:
        return True

    return False


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Read a field from a Stripe object or a plain dict"""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def subscription_fields(subscription: Any) -> Dict[str, Any]:
    """Billing account columns derived from a Stripe subscription"""
    items = _get_stripe_value(_get_stripe_value(subscription, "items"), "data", [])
    first_item = items[0] if items else None
    price = _get_stripe_value(first_item, "price")

    # Newer API versions moved the billing period onto the subscription item
    period_end = (_get_stripe_value(subscription, "current_period_end")
                  or _get_stripe_value(first_item, "current_period_end"))

    return {
        "subscription_id": _get_stripe_value(subscription, "id"),
        "subscription_status": _get_stripe_value(subscription, "status"),
        "subscription_plan": _get_stripe_value(price, "lookup_key") or _get_stripe_value(price, "id"),
        "subscription_current_period_end": _timestamp(period_end),
        "trial_end": _timestamp(_get_stripe_value(subscription, "trial_end")),
        "cancel_at_period_end": bool(_get_stripe_value(subscription, "cancel_at_period_end", False)),
    }


class SubscriptionService:
    """Decides subscription state for billing accounts.

    With STRIPE_SECRET_KEY configured, the customer's latest subscription is
    fetched from Stripe and stored before deciding. If Stripe cannot be reached
    the stored state is used.
    """

    def __init__(self, accounts: BillingAccountRepository, stripe_enabled: Optional[bool] = None):
        self.accounts = accounts
        self.stripe_enabled = bool(settings.STRIPE_SECRET_KEY) if stripe_enabled is None else stripe_enabled

    def refresh_from_stripe(self, account: BillingAccountRecord) -> BillingAccountRecord:
        if not self.stripe_enabled or not account.stripe_customer_id:
            return account

        try:
            subscriptions = stripe.Subscription.list(customer=account.stripe_customer_id, status="all", limit=1)
        except stripe.StripeError as e:
            logger.warning(
                f"Stripe lookup failed for billing account {account.id}, using stored subscription state: {e}"
            )
            return account

        data = _get_stripe_value(subscriptions, "data", [])
        if not data:
            return account

        updated = self.accounts.update_subscription(account.id, **subscription_fields(data[0]))
        return updated or account

    def is_active(self, account_id: int) -> bool:
        account = self.accounts.get(account_id)
        if account is None:
            return False
        return has_active_subscription(self.refresh_from_stripe(account))

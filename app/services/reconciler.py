"""Membership reconciler — applies Stripe billing events to memberships.

Each event variant maps to exactly one store mutation, and every mutation
sets absolute values (no read-modify-write), so applying the same event
twice leaves the membership as a single application would:

    CheckoutCompleted    (none)   -> active      upsert by subscription / provider
    InvoicePaid          active   -> active      current_period_end only
    SubscriptionUpdated  active   -> <stripe>    status, current_period_end, plan
    SubscriptionDeleted  any      -> canceled    status, canceled_at

The store and the clock are passed in, so the reconciler has no Flask or
network dependency of its own.
"""

import logging
from datetime import datetime, timedelta, timezone

from app.services.stripe_events import (
    CheckoutCompleted,
    InvoicePaid,
    SubscriptionDeleted,
    SubscriptionUpdated,
)

logger = logging.getLogger(__name__)

DEFAULT_TERM_DAYS = 30


def utc_now():
    return datetime.now(timezone.utc)


def plan_lookup_from_config(app_config):
    """Build a price ID -> plan name mapping function from app config."""
    prices = {
        app_config.get("STRIPE_BASIC_PRICE_ID"): "basic",
        app_config.get("STRIPE_PREMIUM_PRICE_ID"): "premium",
        app_config.get("STRIPE_PRO_PRICE_ID"): "pro",
    }
    prices.pop(None, None)

    def plan_for_price(price_id):
        return prices.get(price_id)

    return plan_for_price


class MembershipReconciler:
    """Translate typed Stripe events into membership store mutations.

    Args:
        store:          a MembershipStore implementation.
        clock:          zero-arg callable returning an aware UTC datetime.
        term_days:      validity window used when a checkout carries no
                        billing period end.
        plan_for_price: maps a Stripe price ID to a plan name (or None).
    """

    def __init__(self, store, clock=utc_now, term_days=DEFAULT_TERM_DAYS,
                 plan_for_price=None):
        self.store = store
        self.clock = clock
        self.term_days = term_days
        self.plan_for_price = plan_for_price or (lambda price_id: None)
        self._handlers = {
            CheckoutCompleted: self._checkout_completed,
            InvoicePaid: self._invoice_paid,
            SubscriptionUpdated: self._subscription_updated,
            SubscriptionDeleted: self._subscription_deleted,
        }

    def apply(self, event):
        """Apply one event variant. Returns a short outcome label.

        Raises PersistenceError (from the store) when the write fails.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"No reconciliation rule for {type(event).__name__}")
        return handler(event)

    def _checkout_completed(self, event):
        if not event.is_paid:
            logger.info(
                f"Checkout {event.session_id} not paid "
                f"(payment_status={event.payment_status}), skipping"
            )
            return "skipped_unpaid"

        period_end = event.period_end or (
            self.clock() + timedelta(days=self.term_days)
        )
        self.store.upsert_membership(
            event.provider_id,
            event.subscription_id,
            plan=event.plan,
            status="active",
            current_period_end=period_end,
        )
        logger.info(
            f"Membership activated: provider={event.provider_id} "
            f"plan={event.plan} sub={event.subscription_id}"
        )
        return "activated"

    def _invoice_paid(self, event):
        changed = self.store.update_by_subscription(
            event.subscription_id,
            current_period_end=event.period_end,
        )
        return self._updated_or_unmatched(
            changed, "refreshed", "invoice paid", event.subscription_id
        )

    def _subscription_updated(self, event):
        fields = {"status": event.status}
        if event.period_end:
            fields["current_period_end"] = event.period_end
        plan = self.plan_for_price(event.price_id) if event.price_id else None
        if plan:
            fields["plan"] = plan

        changed = self.store.update_by_subscription(event.subscription_id, **fields)
        return self._updated_or_unmatched(
            changed, "updated", "subscription updated", event.subscription_id
        )

    def _subscription_deleted(self, event):
        changed = self.store.update_by_subscription(
            event.subscription_id,
            status="canceled",
            canceled_at=self.clock(),
        )
        return self._updated_or_unmatched(
            changed, "canceled", "subscription deleted", event.subscription_id
        )

    def _updated_or_unmatched(self, changed, outcome, label, subscription_id):
        if not changed:
            logger.warning(f"{label}: no membership for sub={subscription_id}")
            return "no_membership"
        logger.info(f"{label}: sub={subscription_id} -> {outcome}")
        return outcome

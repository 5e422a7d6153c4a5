"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Verifying webhook signatures against the raw request body
- Dispatching verified events to the membership reconciler
- Idempotency via the stripe_events ledger
- Creating Stripe Checkout Sessions (membership subscriptions)
- Creating Stripe Customer Portal Sessions
"""

import json
import logging

import stripe
from flask import current_app

from app.services.membership_store import PersistenceError, get_membership_store
from app.services.reconciler import MembershipReconciler, plan_lookup_from_config
from app.services.stripe_events import EventValidationError, parse_event

logger = logging.getLogger(__name__)

PRICE_CONFIG_KEYS = {
    "basic": "STRIPE_BASIC_PRICE_ID",
    "premium": "STRIPE_PREMIUM_PRICE_ID",
    "pro": "STRIPE_PRO_PRICE_ID",
}


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header against the raw body.

    Nothing in the payload is trusted before this check. Returns the event
    as a plain dict.

    Raises stripe.SignatureVerificationError on a bad or stale signature,
    ValueError when the body is not UTF-8 JSON.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    stripe.WebhookSignature.verify_header(
        payload,
        sig_header,
        webhook_secret,
        tolerance=current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
    )
    return json.loads(payload)


def build_reconciler(store):
    """Reconciler wired with the current app's plan prices and term."""
    config = current_app.config
    return MembershipReconciler(
        store,
        term_days=config.get("MEMBERSHIP_TERM_DAYS", 30),
        plan_for_price=plan_lookup_from_config(config),
    )


def handle_webhook_event(event, store=None, reconciler=None):
    """Process a verified Stripe webhook event.

    Unknown event types are acknowledged without touching the store.
    Invalid payloads of known types are logged, recorded when the store is
    reachable, and acknowledged either way.
    Idempotency: events already in the ledger are acknowledged and skipped.

    Returns (success: bool, message: str). success is False only when the
    store failed while applying a valid event, which the caller turns into
    a 5xx so Stripe retries.
    """
    event_id = event.get("id")
    event_type = event.get("type")

    if not event_id or not event_type:
        logger.warning("Webhook event without id or type, ignoring")
        return True, "ignored"

    # --- Validate at the boundary, before any store access ---
    try:
        membership_event = parse_event(event)
    except EventValidationError as e:
        logger.warning(f"Webhook event {event_id} rejected: {e}")
        _record_invalid_event(event_id, event_type, store)
        return True, "invalid"

    if membership_event is None:
        logger.info(f"Unhandled event type {event_type} ({event_id})")
        return True, "ignored"

    if store is None:
        store = get_membership_store()
    if reconciler is None:
        reconciler = build_reconciler(store)

    try:
        # --- Idempotency check ---
        if store.has_processed_event(event_id):
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            return True, "already_processed"

        outcome = reconciler.apply(membership_event)

        # --- Record event for idempotency ---
        store.record_event(event_id, event_type, outcome)
        store.commit()
    except PersistenceError as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        store.rollback()
        return False, "persistence failure"

    return True, outcome


def _record_invalid_event(event_id, event_type, store=None):
    """Best-effort ledger entry for a rejected payload.

    Retrying never fixes the payload, so a store failure here is logged and
    the event is still acknowledged.
    """
    if store is None:
        store = get_membership_store()
    try:
        store.record_event(event_id, event_type, "invalid")
        store.commit()
    except PersistenceError as e:
        logger.warning(f"Could not record invalid event {event_id}: {e}")
        store.rollback()


# ──────────────────────────────────────────────
# Checkout & Portal Sessions
# ──────────────────────────────────────────────

def get_price_id(plan):
    """Map a plan name to its configured Stripe price ID.

    Raises ValueError for unknown plans or missing configuration.
    """
    config_key = PRICE_CONFIG_KEYS.get(plan)
    if not config_key:
        raise ValueError(f"Unknown plan: {plan}")
    price_id = current_app.config.get(config_key)
    if not price_id:
        raise ValueError(f"No price configured for plan: {plan}")
    return price_id


def create_checkout_session(provider_id, plan, customer_email):
    """Create a subscription-mode Checkout Session for a provider.

    Reuses the Stripe customer with this email when one exists, otherwise
    creates it. The session metadata (provider_id, plan) is what the
    checkout.session.completed webhook reads back.

    Returns the Stripe checkout session.
    Raises ValueError for an unknown plan; stripe.StripeError on API failures.
    """
    api_key = current_app.config["STRIPE_SECRET_KEY"]
    frontend_url = current_app.config["FRONTEND_URL"].rstrip("/")
    price_id = get_price_id(plan)

    existing = stripe.Customer.list(email=customer_email, limit=1, api_key=api_key)
    if existing.data:
        customer_id = existing.data[0].id
    else:
        customer = stripe.Customer.create(
            email=customer_email,
            metadata={"provider_id": provider_id},
            api_key=api_key,
        )
        customer_id = customer.id

    metadata = {"provider_id": provider_id, "plan": plan}
    session = stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=f"{frontend_url}/dashboard?success=true",
        cancel_url=f"{frontend_url}/membership-cancel",
        metadata=metadata,
        subscription_data={"metadata": metadata},
        api_key=api_key,
    )
    logger.info(f"Checkout session {session.id} created for provider {provider_id} ({plan})")
    return session


def create_portal_session(subscription_id, return_url=None, provider_id=None):
    """Create a Stripe Customer Portal Session for a subscription's customer.

    return_url must point back into the frontend; anything else falls back
    to the provider dashboard. When provider_id is given it must match the
    subscription's metadata.provider_id (set at checkout).

    Returns the portal session URL.
    Raises PermissionError on a provider mismatch; stripe.StripeError on API
    failures.
    """
    api_key = current_app.config["STRIPE_SECRET_KEY"]
    frontend_url = current_app.config["FRONTEND_URL"].rstrip("/")

    if not return_url or not return_url.startswith(frontend_url):
        return_url = f"{frontend_url}/dashboard"

    subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
    if provider_id is not None:
        owner = (subscription.get("metadata") or {}).get("provider_id")
        if owner != provider_id:
            raise PermissionError(
                f"Subscription {subscription_id} is not owned by provider {provider_id}"
            )

    customer = subscription["customer"]
    if not isinstance(customer, str):
        customer = customer["id"]

    session = stripe.billing_portal.Session.create(
        customer=customer,
        return_url=return_url,
        api_key=api_key,
    )
    return session.url

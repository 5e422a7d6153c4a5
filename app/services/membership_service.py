"""Membership service — plan entitlements and provider membership lookups.

Plans (lowest to highest): basic, premium, pro. The membership row's status
is the source of truth for gating; a row is only active while its paid
period has not ended.
"""

import logging
from datetime import datetime, timezone

from pydantic import TypeAdapter

from app.services.membership_store import get_membership_store

logger = logging.getLogger(__name__)

_timestamp = TypeAdapter(datetime)

PLAN_FEATURES = {
    "basic": {
        "photo_limit": 3,
        "features": {"basic_profile", "standard_visibility"},
    },
    "premium": {
        "photo_limit": 10,
        "features": {"featured_profile", "analytics", "search_priority"},
    },
    "pro": {
        "photo_limit": None,  # unlimited
        "features": {
            "featured_profile",
            "analytics",
            "search_priority",
            "max_visibility",
            "advanced_analytics",
        },
    },
}


def _parse_timestamp(value):
    """Accept datetimes or ISO strings (Supabase returns strings)."""
    if value is None:
        return None
    dt = _timestamp.validate_python(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_membership_active(membership, now=None):
    """True when the membership is active and its paid period hasn't ended."""
    if not membership or membership.get("status") != "active":
        return False
    period_end = _parse_timestamp(membership.get("current_period_end"))
    if period_end is None:
        return True
    now = now or datetime.now(timezone.utc)
    return period_end > now


def has_feature(membership, feature, now=None):
    """True when an active membership's plan grants `feature`."""
    if not is_membership_active(membership, now):
        return False
    plan = PLAN_FEATURES.get(membership.get("plan"))
    return bool(plan) and feature in plan["features"]


def photo_limit(membership, now=None):
    """Portfolio photo limit for the provider (None means unlimited)."""
    if not is_membership_active(membership, now):
        return 0
    plan = PLAN_FEATURES.get(membership.get("plan"))
    return plan["photo_limit"] if plan else 0


def describe_membership(provider_id, store=None, now=None):
    """Return the provider's membership with derived entitlements, or None."""
    store = store or get_membership_store()
    membership = store.get_by_user(provider_id)
    if membership is None:
        return None

    active = is_membership_active(membership, now)
    plan = PLAN_FEATURES.get(membership.get("plan"), {})
    return {
        **membership,
        "is_active": active,
        "features": sorted(plan.get("features", ())) if active else [],
        "photo_limit": photo_limit(membership, now),
    }


def expire_lapsed_memberships(store=None, now=None, dry_run=False):
    """Mark lapsed active memberships as expired. Returns the affected rows."""
    store = store or get_membership_store()
    now = now or datetime.now(timezone.utc)
    rows = store.expire_lapsed(now, dry_run=dry_run)
    if not dry_run:
        store.commit()
    logger.info(
        f"Expiry sweep: {len(rows)} membership(s) "
        f"{'would be' if dry_run else 'marked'} expired"
    )
    return rows

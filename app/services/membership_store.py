"""Membership store — persistence for memberships and the processed-event ledger.

The reconciler and the webhook service only talk to the MembershipStore
contract, so the backing database is chosen by config:

- SqlMembershipStore:      memberships / stripe_events tables via Flask-SQLAlchemy
- SupabaseMembershipStore: the same tables behind the Supabase REST API (PostgREST)

Records cross this boundary as plain dicts (see Membership.to_dict()).
Every backend failure is raised as PersistenceError so the webhook can
answer 5xx and let Stripe redeliver.
"""

import logging
from datetime import datetime

import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.membership import Membership
from app.models.stripe_event import StripeEvent

logger = logging.getLogger(__name__)

# Fields an update-by-subscription may set. user_id is immutable.
UPDATABLE_FIELDS = {"plan", "status", "current_period_end", "canceled_at"}

MEMBERSHIP_COLUMNS = "user_id,subscription_id,plan,status,current_period_end,canceled_at"


class PersistenceError(RuntimeError):
    """Reading from or writing to the membership store failed."""


def _check_fields(fields):
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update membership field(s): {', '.join(sorted(unknown))}")


class MembershipStore:
    """Contract shared by all membership backends."""

    def upsert_membership(self, user_id, subscription_id, *, plan, status,
                          current_period_end):
        """Create or replace the provider's membership row.

        Matches an existing row by subscription_id first, then by user_id
        (one row per provider). Clears canceled_at. Returns the row dict.
        """
        raise NotImplementedError

    def update_by_subscription(self, subscription_id, **fields):
        """Set absolute values on the row with this subscription_id.

        Returns the number of rows changed (0 when no row matches).
        """
        raise NotImplementedError

    def get_by_user(self, user_id):
        """Return the provider's membership dict, or None."""
        raise NotImplementedError

    def expire_lapsed(self, now, dry_run=False):
        """Mark active memberships whose period ended before `now` as expired.

        Returns the affected rows (as they were before the change when dry_run).
        """
        raise NotImplementedError

    def has_processed_event(self, event_id):
        raise NotImplementedError

    def record_event(self, event_id, event_type, outcome):
        raise NotImplementedError

    def commit(self):
        """Make the writes of the current webhook delivery durable."""

    def rollback(self):
        """Discard the writes of the current webhook delivery."""


# ──────────────────────────────────────────────
# SQLAlchemy backend
# ──────────────────────────────────────────────

class SqlMembershipStore(MembershipStore):
    """Membership store backed by a SQLAlchemy session.

    Writes are flushed, not committed; the webhook service commits once the
    event has also been recorded in stripe_events.
    """

    def __init__(self, session):
        self.session = session

    def _query(self):
        return self.session.query(Membership)

    def upsert_membership(self, user_id, subscription_id, *, plan, status,
                          current_period_end):
        try:
            membership = (
                self._query().filter_by(subscription_id=subscription_id).first()
                or self._query().filter_by(user_id=user_id).first()
            )
            if membership is None:
                membership = Membership(
                    user_id=user_id,
                    subscription_id=subscription_id,
                )
                self.session.add(membership)
            elif membership.user_id != user_id:
                logger.warning(
                    f"Subscription {subscription_id} belongs to {membership.user_id}, "
                    f"ignoring owner {user_id} from event"
                )

            membership.subscription_id = subscription_id
            membership.plan = plan
            membership.status = status
            membership.current_period_end = current_period_end
            membership.canceled_at = None
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Upsert failed for subscription {subscription_id}: {e}"
            ) from e

        return membership.to_dict()

    def update_by_subscription(self, subscription_id, **fields):
        _check_fields(fields)
        try:
            membership = self._query().filter_by(
                subscription_id=subscription_id
            ).first()
            if membership is None:
                return 0
            for field, value in fields.items():
                setattr(membership, field, value)
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Update failed for subscription {subscription_id}: {e}"
            ) from e
        return 1

    def get_by_user(self, user_id):
        try:
            membership = self._query().filter_by(user_id=user_id).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Lookup failed for user {user_id}: {e}") from e
        return membership.to_dict() if membership else None

    def expire_lapsed(self, now, dry_run=False):
        try:
            lapsed = (
                self._query()
                .filter(Membership.status == "active")
                .filter(Membership.current_period_end < now)
                .all()
            )
            rows = [m.to_dict() for m in lapsed]
            if not dry_run:
                for membership in lapsed:
                    membership.status = "expired"
                self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Expiry sweep failed: {e}") from e
        return rows

    def has_processed_event(self, event_id):
        try:
            existing = self.session.query(StripeEvent).filter_by(
                stripe_event_id=event_id
            ).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Event lookup failed for {event_id}: {e}") from e
        return existing is not None

    def record_event(self, event_id, event_type, outcome):
        try:
            self.session.add(StripeEvent(
                stripe_event_id=event_id,
                event_type=event_type,
                outcome=outcome,
            ))
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Recording event {event_id} failed: {e}") from e

    def commit(self):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Commit failed: {e}") from e

    def rollback(self):
        self.session.rollback()


# ──────────────────────────────────────────────
# Supabase (PostgREST) backend
# ──────────────────────────────────────────────

def _serialize(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SupabaseMembershipStore(MembershipStore):
    """Membership store backed by the Supabase REST API.

    Each call is its own transaction, so commit() and rollback() are no-ops.
    """

    def __init__(self, url, service_key, timeout=10):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method, table, params=None, payload=None, prefer=None):
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        url = f"{self.base_url}/{table}"
        try:
            resp = requests.request(
                method,
                url,
                headers=headers,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PersistenceError(f"Supabase {method} {table} failed: {e}") from e

        if resp.status_code == 204 or not resp.content:
            return []
        return resp.json()

    def upsert_membership(self, user_id, subscription_id, *, plan, status,
                          current_period_end):
        rows = self._request(
            "POST",
            "memberships",
            params={"on_conflict": "user_id", "select": MEMBERSHIP_COLUMNS},
            payload={
                "user_id": user_id,
                "subscription_id": subscription_id,
                "plan": plan,
                "status": status,
                "current_period_end": _serialize(current_period_end),
                "canceled_at": None,
            },
            prefer="resolution=merge-duplicates,return=representation",
        )
        return rows[0] if rows else None

    def update_by_subscription(self, subscription_id, **fields):
        _check_fields(fields)
        rows = self._request(
            "PATCH",
            "memberships",
            params={"subscription_id": f"eq.{subscription_id}", "select": "id"},
            payload={k: _serialize(v) for k, v in fields.items()},
            prefer="return=representation",
        )
        return len(rows)

    def get_by_user(self, user_id):
        rows = self._request(
            "GET",
            "memberships",
            params={
                "user_id": f"eq.{user_id}",
                "select": MEMBERSHIP_COLUMNS,
                "limit": 1,
            },
        )
        return rows[0] if rows else None

    def expire_lapsed(self, now, dry_run=False):
        params = {
            "status": "eq.active",
            "current_period_end": f"lt.{now.isoformat()}",
            "select": MEMBERSHIP_COLUMNS,
        }
        if dry_run:
            return self._request("GET", "memberships", params=params)
        return self._request(
            "PATCH",
            "memberships",
            params=params,
            payload={"status": "expired"},
            prefer="return=representation",
        )

    def has_processed_event(self, event_id):
        rows = self._request(
            "GET",
            "stripe_events",
            params={
                "stripe_event_id": f"eq.{event_id}",
                "select": "stripe_event_id",
                "limit": 1,
            },
        )
        return bool(rows)

    def record_event(self, event_id, event_type, outcome):
        self._request(
            "POST",
            "stripe_events",
            params={"on_conflict": "stripe_event_id"},
            payload={
                "stripe_event_id": event_id,
                "event_type": event_type,
                "outcome": outcome,
            },
            prefer="resolution=ignore-duplicates,return=minimal",
        )


def get_membership_store():
    """Build the store selected by MEMBERSHIP_STORE for the current app."""
    config = current_app.config
    backend = config.get("MEMBERSHIP_STORE", "sql")

    if backend == "sql":
        return SqlMembershipStore(db.session)

    if backend == "supabase":
        url = config.get("SUPABASE_URL")
        key = config.get("SUPABASE_SERVICE_KEY")
        if not url or not key:
            raise RuntimeError("MEMBERSHIP_STORE=supabase needs SUPABASE_URL and SUPABASE_SERVICE_KEY")
        return SupabaseMembershipStore(
            url, key, timeout=config.get("SUPABASE_TIMEOUT", 10)
        )

    raise RuntimeError(f"Unknown MEMBERSHIP_STORE: {backend}")

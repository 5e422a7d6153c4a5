"""Membership model.

One row per provider. Created on the first completed checkout and then kept
in sync with Stripe by the webhook reconciler, always looked up by
subscription_id. Rows are never deleted; cancellation is a status change.
"""

import uuid
from datetime import timezone

from app.extensions import db


def _isoformat(value):
    """Render a stored timestamp as ISO-8601 UTC ("...Z").

    SQLite hands back naive datetimes even for timezone-aware columns, so
    naive values are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class Membership(db.Model):
    __tablename__ = "memberships"
    __table_args__ = (
        # expire-memberships sweep
        db.Index("ix_memberships_status_period_end", "status", "current_period_end"),
    )

    PLANS = ["basic", "premium", "pro"]

    # -- Local lifecycle statuses. customer.subscription.updated copies
    #    Stripe's status verbatim, so other Stripe values can also appear. --
    STATUSES = [
        "active",
        "past_due",
        "canceled",
        "expired",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # owning provider, immutable
    subscription_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "sub_1Abc..."
    plan = db.Column(db.String(50), nullable=False)  # basic | premium | pro
    status = db.Column(db.String(50), nullable=False, default="active")
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "subscription_id": self.subscription_id,
            "plan": self.plan,
            "status": self.status,
            "current_period_end": _isoformat(self.current_period_end),
            "canceled_at": _isoformat(self.canceled_at),
        }

    def __repr__(self):
        return f"<Membership {self.user_id} {self.plan} ({self.status})>"

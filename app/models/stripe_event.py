"""Processed Stripe event ledger.

Every webhook event that reaches the reconciler (or is rejected as invalid)
is recorded here by its Stripe event ID together with the outcome. A
redelivered event ID is acknowledged without being applied again.
"""

import uuid

from app.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "invoice.paid"
    outcome = db.Column(
        db.String(50), nullable=True
    )  # activated | refreshed | updated | canceled | ignored | invalid | ...
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} {self.event_type} -> {self.outcome}>"

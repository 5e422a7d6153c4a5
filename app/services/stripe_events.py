"""Typed Stripe event variants.

Stripe delivers loosely structured ``data.object`` payloads whose shape
depends on the event type and on the API version. parse_event() converts
the event types the membership reconciler understands into small frozen
pydantic models carrying only the fields it reads, so validation happens
once at the ingestion boundary.

    checkout.session.completed     -> CheckoutCompleted
    invoice.paid                   -> InvoicePaid
    invoice.payment_succeeded      -> InvoicePaid
    customer.subscription.updated  -> SubscriptionUpdated
    customer.subscription.deleted  -> SubscriptionDeleted

Any other event type parses to None.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

Plan = Literal["basic", "premium", "pro"]

# Checkout payment states that mean the subscription was actually paid for
# (no_payment_required covers trials and 100% coupons).
PAID_STATUSES = ("paid", "no_payment_required")


class EventValidationError(ValueError):
    """A recognised event is missing a field the reconciler needs.

    Retrying will never fix the payload, so these are acknowledged.
    """


def _expandable_id(value):
    """Stripe expandable fields are either an ID string or the full object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _subscription_period_end(sub):
    """Read current_period_end from a subscription object.

    Newer API versions moved it from the subscription itself to
    items.data[0].current_period_end, so both locations are checked.
    """
    if not isinstance(sub, dict):
        return None
    ts = sub.get("current_period_end")
    if not ts:
        items = sub.get("items") or {}
        data = items.get("data") or []
        if data:
            ts = data[0].get("current_period_end")
    return ts


def _subscription_price_id(sub):
    items = sub.get("items") or {}
    data = items.get("data") or []
    if not data:
        return None
    return _expandable_id(data[0].get("price"))


class _Variant(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class CheckoutCompleted(_Variant):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session_id: Optional[str] = None
    provider_id: str = Field(min_length=1)
    plan: Plan
    subscription_id: str = Field(min_length=1)
    payment_status: Optional[str] = None
    period_end: Optional[datetime] = None

    @property
    def is_paid(self):
        return self.payment_status in PAID_STATUSES

    @classmethod
    def from_stripe(cls, session):
        metadata = session.get("metadata") or {}
        subscription = session.get("subscription")
        details = session.get("subscription_details") or {}
        period_end = (
            details.get("current_period_end")
            or _subscription_period_end(subscription)
        )
        return cls(
            session_id=session.get("id"),
            provider_id=metadata.get("provider_id"),
            plan=metadata.get("plan"),
            subscription_id=_expandable_id(subscription),
            payment_status=session.get("payment_status"),
            period_end=period_end,
        )


class InvoicePaid(_Variant):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice_id: Optional[str] = None
    subscription_id: str = Field(min_length=1)
    period_end: datetime

    @classmethod
    def from_stripe(cls, invoice):
        subscription = invoice.get("subscription")
        if not subscription:
            # 2025+ API versions nest it under parent.subscription_details
            parent = invoice.get("parent") or {}
            subscription = (parent.get("subscription_details") or {}).get("subscription")

        period_end = invoice.get("period_end")
        if not period_end:
            lines = (invoice.get("lines") or {}).get("data") or []
            if lines:
                period_end = (lines[0].get("period") or {}).get("end")

        return cls(
            invoice_id=invoice.get("id"),
            subscription_id=_expandable_id(subscription),
            period_end=period_end,
        )


class SubscriptionUpdated(_Variant):
    kind: Literal["subscription_updated"] = "subscription_updated"
    subscription_id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    period_end: Optional[datetime] = None
    price_id: Optional[str] = None

    @classmethod
    def from_stripe(cls, sub):
        return cls(
            subscription_id=sub.get("id"),
            status=sub.get("status"),
            period_end=_subscription_period_end(sub),
            price_id=_subscription_price_id(sub),
        )


class SubscriptionDeleted(_Variant):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription_id: str = Field(min_length=1)

    @classmethod
    def from_stripe(cls, sub):
        return cls(subscription_id=sub.get("id"))


MembershipEvent = Annotated[
    Union[CheckoutCompleted, InvoicePaid, SubscriptionUpdated, SubscriptionDeleted],
    Field(discriminator="kind"),
]

EVENT_VARIANTS = {
    "checkout.session.completed": CheckoutCompleted,
    "invoice.paid": InvoicePaid,
    "invoice.payment_succeeded": InvoicePaid,
    "customer.subscription.updated": SubscriptionUpdated,
    "customer.subscription.deleted": SubscriptionDeleted,
}


def _describe(error: ValidationError) -> str:
    fields = sorted({
        ".".join(str(part) for part in err["loc"]) or "payload"
        for err in error.errors()
    })
    return f"missing or invalid field(s): {', '.join(fields)}"


def parse_event(event: dict) -> Optional[MembershipEvent]:
    """Convert a verified Stripe event dict into its typed variant.

    Returns None for event types the reconciler does not handle.
    Raises EventValidationError when a handled event lacks required data.
    """
    event_type = event.get("type")
    variant = EVENT_VARIANTS.get(event_type)
    if variant is None:
        return None

    data_object = (event.get("data") or {}).get("object")
    if not isinstance(data_object, dict):
        raise EventValidationError(f"{event_type}: event has no data object")

    try:
        return variant.from_stripe(data_object)
    except ValidationError as e:
        raise EventValidationError(f"{event_type}: {_describe(e)}") from e

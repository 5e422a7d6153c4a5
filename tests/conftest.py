"""Shared test fixtures for the membership billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- sign_payload: build a Stripe-Signature header for a raw payload
- post_event: POST a Stripe event to /stripe/webhooks with a genuine signature
- make_membership: insert a membership row directly
"""

import hashlib
import hmac
import json
import time

import pytest

from app import create_app
from app.extensions import db as _db
from app.models.membership import Membership


def stripe_signature(payload, secret, timestamp=None):
    """Build a Stripe-Signature header the way Stripe signs webhooks."""
    if timestamp is None:
        timestamp = int(time.time())
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(
        secret.encode("utf-8"), signed_payload, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def sign_payload():
    """Return a function that builds a Stripe-Signature header."""
    return stripe_signature


@pytest.fixture
def post_event(app, client):
    """POST an event dict to the webhook endpoint, correctly signed."""

    def _post(event):
        payload = json.dumps(event)
        header = stripe_signature(payload, app.config["STRIPE_WEBHOOK_SECRET"])
        return client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": header},
        )

    return _post


@pytest.fixture
def make_membership(db_session):
    """Insert (and commit) a membership row."""

    def _make(user_id="u1", subscription_id="sub_1", plan="premium",
              status="active", current_period_end=None, canceled_at=None):
        membership = Membership(
            user_id=user_id,
            subscription_id=subscription_id,
            plan=plan,
            status=status,
            current_period_end=current_period_end,
            canceled_at=canceled_at,
        )
        db_session.add(membership)
        db_session.commit()
        return membership

    return _make

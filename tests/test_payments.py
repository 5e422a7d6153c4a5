"""Tests for the payments blueprint.

Covers:
- CORS preflight and CORS headers on responses
- Checkout route (validation, existing / new Stripe customer, Stripe errors)
- Customer portal route (provider ownership check)
- Malformed request bodies
- Membership lookup with entitlements
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import stripe


class TestCors:

    def test_checkout_preflight(self, client):
        resp = client.options("/api/payments/checkout")
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]
        assert "Authorization" in resp.headers["Access-Control-Allow-Headers"]

    def test_portal_preflight(self, client):
        resp = client.options("/api/payments/portal")
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_membership_preflight(self, client):
        resp = client.options("/api/payments/memberships/u1")
        assert resp.status_code == 204
        assert "GET" in resp.headers["Access-Control-Allow-Methods"]

    def test_error_responses_carry_cors(self, client):
        resp = client.post("/api/payments/checkout", json={})
        assert resp.status_code == 400
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


class TestCheckout:

    def _body(self, **overrides):
        body = {
            "providerId": "u1",
            "plan": "premium",
            "customerEmail": "provider@example.com",
        }
        body.update(overrides)
        return body

    @patch("app.services.stripe_service.stripe")
    def test_creates_session_for_new_customer(self, mock_stripe, client):
        mock_stripe.Customer.list.return_value = MagicMock(data=[])
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_new")
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1"
        )

        resp = client.post("/api/payments/checkout", json=self._body())

        assert resp.status_code == 200
        assert resp.get_json() == {
            "sessionId": "cs_test_1",
            "url": "https://checkout.stripe.com/c/pay/cs_test_1",
        }
        mock_stripe.Customer.create.assert_called_once()
        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["customer"] == "cus_new"
        assert kwargs["line_items"] == [{"price": "price_premium_test", "quantity": 1}]
        assert kwargs["metadata"] == {"provider_id": "u1", "plan": "premium"}
        assert kwargs["success_url"] == "http://localhost:5173/dashboard?success=true"
        assert kwargs["cancel_url"] == "http://localhost:5173/membership-cancel"

    @patch("app.services.stripe_service.stripe")
    def test_reuses_existing_customer(self, mock_stripe, client):
        mock_stripe.Customer.list.return_value = MagicMock(data=[MagicMock(id="cus_existing")])
        mock_stripe.checkout.Session.create.return_value = MagicMock(id="cs_1", url="https://x")

        resp = client.post("/api/payments/checkout", json=self._body())

        assert resp.status_code == 200
        mock_stripe.Customer.create.assert_not_called()
        assert mock_stripe.checkout.Session.create.call_args.kwargs["customer"] == "cus_existing"

    def test_rejects_unknown_plan(self, client):
        resp = client.post("/api/payments/checkout", json=self._body(plan="diamond"))
        assert resp.status_code == 400
        assert "plan" in resp.get_json()["error"]

    def test_requires_provider_and_email(self, client):
        resp = client.post(
            "/api/payments/checkout",
            json=self._body(providerId="", customerEmail=""),
        )
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert "providerId" in error
        assert "customerEmail" in error

    @patch("app.services.stripe_service.stripe")
    def test_unconfigured_price(self, mock_stripe, app, client):
        app.config["STRIPE_PRO_PRICE_ID"] = None
        try:
            resp = client.post("/api/payments/checkout", json=self._body(plan="pro"))
        finally:
            app.config["STRIPE_PRO_PRICE_ID"] = "price_pro_test"
        assert resp.status_code == 400
        mock_stripe.checkout.Session.create.assert_not_called()

    @patch("app.services.stripe_service.stripe")
    def test_stripe_error_returns_500(self, mock_stripe, client):
        mock_stripe.Customer.list.return_value = MagicMock(data=[])
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_new")
        mock_stripe.checkout.Session.create.side_effect = stripe.InvalidRequestError(
            "No such price", param="line_items"
        )

        resp = client.post("/api/payments/checkout", json=self._body())

        assert resp.status_code == 500
        assert "error" in resp.get_json()
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


class TestPortal:

    @patch("app.services.stripe_service.stripe")
    def test_returns_portal_url(self, mock_stripe, client):
        mock_stripe.Subscription.retrieve.return_value = {"id": "sub_1", "customer": "cus_1"}
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(
            url="https://billing.stripe.com/p/session/test"
        )

        resp = client.post("/api/payments/portal", json={
            "subscriptionId": "sub_1",
            "returnUrl": "http://localhost:5173/dashboard/billing",
        })

        assert resp.status_code == 200
        assert resp.get_json() == {"portalUrl": "https://billing.stripe.com/p/session/test"}
        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["return_url"] == "http://localhost:5173/dashboard/billing"

    @patch("app.services.stripe_service.stripe")
    def test_foreign_return_url_falls_back_to_dashboard(self, mock_stripe, client):
        mock_stripe.Subscription.retrieve.return_value = {"customer": {"id": "cus_1"}}
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(url="https://b")

        client.post("/api/payments/portal", json={
            "subscriptionId": "sub_1",
            "returnUrl": "https://evil.example.com",
        })

        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["return_url"] == "http://localhost:5173/dashboard"

    def test_requires_subscription_id(self, client):
        resp = client.post("/api/payments/portal", json={})
        assert resp.status_code == 400

    @patch("app.services.stripe_service.stripe")
    def test_stripe_error_returns_500(self, mock_stripe, client):
        mock_stripe.Subscription.retrieve.side_effect = stripe.InvalidRequestError(
            "No such subscription", param="id"
        )
        resp = client.post("/api/payments/portal", json={"subscriptionId": "sub_x"})
        assert resp.status_code == 500


class TestMembershipLookup:

    def test_not_found(self, client):
        resp = client.get("/api/payments/memberships/nobody")
        assert resp.status_code == 404
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_active_premium_membership(self, client, make_membership):
        make_membership(
            plan="premium",
            current_period_end=datetime(2099, 1, 1, tzinfo=timezone.utc),
        )

        resp = client.get("/api/payments/memberships/u1")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["plan"] == "premium"
        assert data["status"] == "active"
        assert data["subscription_id"] == "sub_1"
        assert data["current_period_end"] == "2099-01-01T00:00:00Z"
        assert data["is_active"] is True
        assert "analytics" in data["features"]
        assert data["photo_limit"] == 10

    def test_canceled_membership_has_no_features(self, client, make_membership):
        make_membership(status="canceled", canceled_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        data = client.get("/api/payments/memberships/u1").get_json()

        assert data["is_active"] is False
        assert data["features"] == []
        assert data["photo_limit"] == 0


class TestMalformedInput:
    """Bodies that aren't a JSON object of strings are rejected with 400."""

    def test_checkout_non_string_field(self, client):
        resp = client.post("/api/payments/checkout", json={
            "providerId": 123,
            "plan": "premium",
            "customerEmail": "provider@example.com",
        })
        assert resp.status_code == 400
        assert "providerId" in resp.get_json()["error"]

    def test_checkout_array_body(self, client):
        resp = client.post("/api/payments/checkout", json=[1])
        assert resp.status_code == 400
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_checkout_without_body(self, client):
        resp = client.post("/api/payments/checkout")
        assert resp.status_code == 400

    def test_portal_non_string_subscription(self, client):
        resp = client.post("/api/payments/portal", json={"subscriptionId": ["sub_1"]})
        assert resp.status_code == 400

    def test_portal_array_body(self, client):
        resp = client.post("/api/payments/portal", json=["sub_1"])
        assert resp.status_code == 400


class TestPortalOwnership:

    @patch("app.services.stripe_service.stripe")
    def test_matching_provider(self, mock_stripe, client):
        mock_stripe.Subscription.retrieve.return_value = {
            "customer": "cus_1", "metadata": {"provider_id": "u1"},
        }
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(url="https://b")

        resp = client.post("/api/payments/portal", json={
            "subscriptionId": "sub_1", "providerId": "u1",
        })

        assert resp.status_code == 200

    @patch("app.services.stripe_service.stripe")
    def test_other_provider_is_refused(self, mock_stripe, client):
        mock_stripe.Subscription.retrieve.return_value = {
            "customer": "cus_1", "metadata": {"provider_id": "u1"},
        }

        resp = client.post("/api/payments/portal", json={
            "subscriptionId": "sub_1", "providerId": "u2",
        })

        assert resp.status_code == 403
        mock_stripe.billing_portal.Session.create.assert_not_called()

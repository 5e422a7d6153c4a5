"""Payments blueprint — /api/payments/*

Browser-facing endpoints used by the provider dashboard to buy and manage
memberships. Every response carries CORS headers so the frontend can call
these cross-origin.

Route Map:
  POST    /api/payments/checkout                  — create Checkout Session
  POST    /api/payments/portal                    — create Customer Portal Session
  GET     /api/payments/memberships/<provider_id> — membership + entitlements
  OPTIONS on each of the above                    — CORS preflight
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, make_response, request

from app.extensions import limiter
from app.models.membership import Membership
from app.services.membership_service import describe_membership
from app.services.membership_store import PersistenceError
from app.services.stripe_service import create_checkout_session, create_portal_session

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

logger = logging.getLogger(__name__)


def _cors_response(response, methods="POST, OPTIONS"):
    """Add CORS headers so cross-origin JS calls work."""
    response.headers["Access-Control-Allow-Origin"] = current_app.config.get(
        "CORS_ALLOW_ORIGIN", "*"
    )
    response.headers["Access-Control-Allow-Methods"] = methods
    response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
    return response


def _error(message, status, methods="POST, OPTIONS"):
    return _cors_response(jsonify(error=message), methods), status


def _json_body():
    """Return the request's JSON object, or None when the body isn't one."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _text_field(data, key):
    """Stripped string value of `key` ("" when absent).

    Raises ValueError when the value is present but not a string.
    """
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string.")
    return value.strip()


@payments_bp.route("/checkout", methods=["OPTIONS"])
@payments_bp.route("/portal", methods=["OPTIONS"])
def post_preflight():
    """Handle CORS preflight requests for the POST endpoints."""
    return _cors_response(make_response("", 204))


@payments_bp.route("/memberships/<provider_id>", methods=["OPTIONS"])
def membership_preflight(provider_id):
    """Handle CORS preflight requests for the membership lookup."""
    return _cors_response(make_response("", 204), "GET, OPTIONS")


@payments_bp.route("/checkout", methods=["POST"])
@limiter.limit("20 per hour")
def checkout():
    """Create a Stripe Checkout Session for a membership plan.

    JSON body: { providerId, plan, customerEmail }
    Returns:   { sessionId, url }
    """
    data = _json_body()
    if data is None:
        return _error("Request body must be a JSON object.", 400)

    try:
        provider_id = _text_field(data, "providerId")
        plan = _text_field(data, "plan").lower()
        customer_email = _text_field(data, "customerEmail")
    except ValueError as e:
        return _error(str(e), 400)

    errors = []
    if not provider_id:
        errors.append("providerId is required.")
    if plan not in Membership.PLANS:
        errors.append(f"plan must be one of: {', '.join(Membership.PLANS)}.")
    if not customer_email:
        errors.append("customerEmail is required.")
    if errors:
        return _error(" ".join(errors), 400)

    try:
        session = create_checkout_session(provider_id, plan, customer_email)
    except ValueError as e:
        logger.warning(f"Checkout rejected for provider {provider_id}: {e}")
        return _error(str(e), 400)
    except stripe.StripeError as e:
        logger.error(f"Checkout error for provider {provider_id}: {e}", exc_info=True)
        return _error("Could not start checkout. Please try again.", 500)

    return _cors_response(jsonify(sessionId=session.id, url=session.url)), 200


@payments_bp.route("/portal", methods=["POST"])
@limiter.limit("30 per hour")
def customer_portal():
    """Create a Stripe Customer Portal Session for an existing subscription.

    JSON body: { subscriptionId, returnUrl, providerId }
    Returns:   { portalUrl }

    There is no authentication here: anyone holding a subscription ID can
    open its portal. When providerId is sent it must match the provider the
    subscription was bought for.
    """
    data = _json_body()
    if data is None:
        return _error("Request body must be a JSON object.", 400)

    try:
        subscription_id = _text_field(data, "subscriptionId")
        return_url = _text_field(data, "returnUrl")
        provider_id = _text_field(data, "providerId")
    except ValueError as e:
        return _error(str(e), 400)

    if not subscription_id:
        return _error("subscriptionId is required.", 400)

    try:
        portal_url = create_portal_session(
            subscription_id, return_url, provider_id=provider_id or None
        )
    except PermissionError as e:
        logger.warning(f"Portal refused for {subscription_id}: {e}")
        return _error("Subscription does not belong to this provider.", 403)
    except stripe.StripeError as e:
        logger.error(f"Portal session error for {subscription_id}: {e}", exc_info=True)
        return _error("Could not open the billing portal. Please try again.", 500)

    return _cors_response(jsonify(portalUrl=portal_url)), 200


@payments_bp.route("/memberships/<provider_id>", methods=["GET"])
def membership(provider_id):
    """Return a provider's membership with its plan entitlements."""
    try:
        info = describe_membership(provider_id)
    except PersistenceError as e:
        logger.error(f"Membership lookup failed for {provider_id}: {e}")
        return _error("Membership lookup failed.", 500, "GET, OPTIONS")

    if info is None:
        return _error("No membership found.", 404, "GET, OPTIONS")

    return _cors_response(jsonify(info), "GET, OPTIONS"), 200

"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events (server-to-server, no CORS).
Raw body is required for signature verification.
"""

import logging

import stripe
from flask import Blueprint, request, jsonify

from app.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"], provide_automatic_options=False)
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via stripe_events table)
    4. Return 200 to acknowledge receipt, 500 if the store failed so
       Stripe redelivers later

    Any other method, OPTIONS included, gets a 405.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400
    except ValueError as e:
        logger.warning(f"Webhook body could not be decoded: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    if not isinstance(event, dict):
        logger.warning("Webhook body is not a JSON object")
        return jsonify({"error": "Invalid payload"}), 400

    # --- Process event (idempotent) ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"received": True, "status": message}), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify({"error": message}), 500

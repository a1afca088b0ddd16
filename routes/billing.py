"""Checkout initiation and Stripe webhook routes."""

import logging

from flask import Blueprint, current_app, jsonify, request

from extensions import csrf, limiter
from services.checkout import CheckoutInitiator, CheckoutProviderError, InvalidCheckoutRequest
from services.reconciler import BillingReconciler

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__)


def _gateway():
    return current_app.extensions["stripe_gateway"]


def _initiator() -> CheckoutInitiator:
    stripe_cfg = current_app.config["STRIPE_CONFIG"]
    return CheckoutInitiator(
        _gateway(),
        public_url=current_app.config["APP_CONFIG"].public_url,
        base_fee_price_id=stripe_cfg.base_fee_price_id,
    )


def _checkout_response(create):
    try:
        url = create()
    except InvalidCheckoutRequest as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutProviderError as e:
        logger.error("Checkout failed: %s", e.provider_message)
        return jsonify({"error": str(e)}), 502
    return jsonify({"url": url}), 200


# ---------------------------------------------------------------------------
# Checkout initiation
# ---------------------------------------------------------------------------

@billing_bp.route("/api/stripe/create-checkout-session", methods=["POST"])
@csrf.exempt
@limiter.limit("10 per minute")
def create_checkout_session():
    """Start a patient plan checkout."""
    data = request.get_json(silent=True) or {}
    return _checkout_response(lambda: _initiator().create_plan_checkout(
        (data.get("priceId") or "").strip(),
        (data.get("email") or "").strip(),
        account_id=(data.get("userId") or "").strip() or None,
    ))


@billing_bp.route("/api/stripe/create-clinic-base-fee-session", methods=["POST"])
@csrf.exempt
@limiter.limit("10 per minute")
def create_clinic_base_fee_session():
    """Start the clinic base fee checkout."""
    data = request.get_json(silent=True) or {}
    return _checkout_response(lambda: _initiator().create_base_fee_checkout(
        (data.get("email") or "").strip(),
        (data.get("userId") or "").strip(),
    ))


# ---------------------------------------------------------------------------
# Stripe webhook
# ---------------------------------------------------------------------------

@billing_bp.route("/webhook/stripe", methods=["POST"])
@csrf.exempt
@limiter.exempt
def webhook_stripe():
    """Handle Stripe webhook events."""
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature", "")
    status, body = BillingReconciler(_gateway()).handle_provider_event(payload, sig_header)
    return jsonify(body), status

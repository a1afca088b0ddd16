"""Thin wrapper around the Stripe API used by checkout and webhook handling."""

from __future__ import annotations

import json
import logging
from typing import Optional

import stripe

from config_models import StripeConfig

logger = logging.getLogger(__name__)

# Errors worth a redelivery: the request may succeed later
TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


class WebhookSignatureError(Exception):
    """The Stripe-Signature header does not match the payload."""

    pass


class TransientBillingError(Exception):
    """Infrastructure failure; the operation may be retried later."""

    pass


class ProviderError(Exception):
    """Stripe refused the request; retrying will not help."""

    pass


class StripeGateway:
    def __init__(self, config: StripeConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.secret_key)

    def create_checkout_session(self, **params):
        """Create a hosted checkout session. Returns the Stripe session."""
        return stripe.checkout.Session.create(api_key=self.config.secret_key, **params)

    def list_line_item_price_ids(self, session_id: str) -> list[str]:
        """Return the price ids of a checkout session's line items."""
        try:
            items = stripe.checkout.Session.list_line_items(
                session_id, limit=10, api_key=self.config.secret_key,
            )
        except TRANSIENT_STRIPE_ERRORS as e:
            raise TransientBillingError(f"Stripe unavailable: {e}") from e
        except stripe.StripeError as e:
            raise ProviderError(str(e)) from e
        price_ids = []
        for item in items["data"]:
            price = item["price"]
            if price and price["id"]:
                price_ids.append(price["id"])
        return price_ids

    def parse_event(self, payload, sig_header: Optional[str]) -> dict:
        """Verify the signature of *payload* and return the decoded event.

        Raises WebhookSignatureError before anything is parsed when the
        signature is missing or invalid.
        """
        from services.events import MalformedEventError

        if not self.config.webhook_secret:
            raise WebhookSignatureError("webhook secret not configured")
        if not sig_header:
            raise WebhookSignatureError("missing Stripe-Signature header")
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookSignatureError("payload is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                payload, sig_header, self.config.webhook_secret,
                tolerance=self.config.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e)) from e
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise MalformedEventError(f"invalid JSON payload: {e}") from e
        if not isinstance(event, dict):
            raise MalformedEventError("event payload is not an object")
        return event

"""Hosted checkout session creation for patient plans and the clinic base fee."""

from __future__ import annotations

import logging
from typing import Optional

import stripe

from extensions import db
from models import Clinic, Patient
from services.events import BASE_FEE_PURPOSE, PLAN_PURPOSE
from services.plans import find_plan_by_provider_price_id
from services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

CHECKOUT_FAILED_MESSAGE = "決済ページを作成できませんでした。しばらくしてから再度お試しください。"


class InvalidCheckoutRequest(Exception):
    """A required checkout field is missing or invalid."""

    pass


class CheckoutProviderError(Exception):
    """Stripe refused to create the session. ``provider_message`` is for logs only."""

    def __init__(self, provider_message: str):
        super().__init__(CHECKOUT_FAILED_MESSAGE)
        self.provider_message = provider_message


class CheckoutInitiator:
    def __init__(self, gateway: StripeGateway, public_url: str, base_fee_price_id: str):
        self.gateway = gateway
        self.public_url = public_url.rstrip("/")
        self.base_fee_price_id = base_fee_price_id

    def _create(self, **params) -> str:
        try:
            session = self.gateway.create_checkout_session(
                payment_method_types=["card"],
                mode="subscription",
                **params,
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout session creation failed: %s", e)
            raise CheckoutProviderError(str(e)) from e
        url = session["url"]
        if not url:
            raise CheckoutProviderError("checkout session has no url")
        logger.info("Created checkout session %s", session["id"])
        return url

    def create_plan_checkout(
        self,
        provider_price_id: str,
        payer_email: str,
        account_id: Optional[str] = None,
    ) -> str:
        """Create a patient plan checkout and return its redirect URL.

        When *account_id* names a registered patient, the patient and their
        clinic are carried in the session metadata for the webhook.
        """
        if not provider_price_id or not payer_email:
            raise InvalidCheckoutRequest("Missing priceId or email")
        plan = find_plan_by_provider_price_id(provider_price_id)
        if not plan or plan.status != "active":
            raise InvalidCheckoutRequest("Unknown priceId")

        params = {
            "customer_email": payer_email,
            "line_items": [{"price": provider_price_id, "quantity": 1}],
            "success_url": f"{self.public_url}/patient/dashboard?checkout=success",
            "cancel_url": f"{self.public_url}/patient/subscription?checkout=cancel",
        }
        metadata = {"purpose": PLAN_PURPOSE, "planId": plan.id}
        patient = db.session.get(Patient, account_id) if account_id else None
        if account_id and not patient:
            raise InvalidCheckoutRequest("Unknown userId")
        if patient:
            metadata["patientId"] = patient.patient_id
            metadata["clinicId"] = patient.clinic_id
            params["client_reference_id"] = patient.patient_id
        params["metadata"] = metadata
        params["subscription_data"] = {"metadata": dict(metadata)}
        return self._create(**params)

    def create_base_fee_checkout(self, account_email: str, account_id: str) -> str:
        """Create the recurring clinic base fee checkout for *account_id*."""
        if not account_email or not account_id:
            raise InvalidCheckoutRequest("Missing email or userId")
        if not self.base_fee_price_id:
            raise CheckoutProviderError("base fee price id not configured")
        if not db.session.get(Clinic, account_id):
            raise InvalidCheckoutRequest("Unknown userId")
        metadata = {"accountId": account_id, "purpose": BASE_FEE_PURPOSE}
        return self._create(
            customer_email=account_email,
            line_items=[{"price": self.base_fee_price_id, "quantity": 1}],
            metadata=metadata,
            subscription_data={"metadata": dict(metadata)},
            success_url=f"{self.public_url}/clinic/dashboard?basefee=success",
            cancel_url=f"{self.public_url}/clinic/dashboard?basefee=cancel",
        )

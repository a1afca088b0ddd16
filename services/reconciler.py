"""Stripe webhook reconciliation.

Every delivery is authenticated, decoded into one of the variants in
``services.events`` and applied as a single transaction: the state change,
its activity feed entry and the processed-event marker are committed
together or not at all.

Outcomes:

* ``applied``  : state changed and one activity entry was appended
* ``skipped``  : nothing to change (unknown correlation id, re-delivery,
  terminal state); recorded so the event id is not handled again
* ``ignored``  : event type this service does not consume; nothing recorded
* ``duplicate`` : the event id was processed before
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    UNASSIGNED_CLINIC,
    Clinic,
    Patient,
    ProcessedWebhookEvent,
    SubscriptionPlan,
    Subscription,
)
from services.activity import record_activity
from services.events import (
    BaseFeeCheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    MalformedEventError,
    PlanCheckoutCompleted,
    ProviderEvent,
    SubscriptionDeleted,
    UnknownEvent,
    decode_event,
)
from services.plans import find_plan_by_provider_price_id, snapshot
from services.stripe_gateway import (
    ProviderError,
    StripeGateway,
    TransientBillingError,
    WebhookSignatureError,
)
from utils import utc_now

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"
DUPLICATE = "duplicate"

SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class BillingReconciler:
    """Applies Stripe events to subscriptions, clinics and the activity feed."""

    def __init__(
        self,
        gateway: StripeGateway,
        session=None,
        plan_resolver: Optional[Callable[[str], Optional[SubscriptionPlan]]] = None,
    ):
        self.gateway = gateway
        self.session = session if session is not None else db.session
        self.plan_resolver = plan_resolver or find_plan_by_provider_price_id

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle_provider_event(self, raw_body, signature_header: Optional[str]) -> tuple[int, dict]:
        """Process one webhook delivery. Returns (http_status, json_body)."""
        try:
            payload = self.gateway.parse_event(raw_body, signature_header)
        except WebhookSignatureError as e:
            logger.warning("Stripe webhook signature verification failed: %s", e)
            return 400, {"error": "invalid signature"}
        except MalformedEventError as e:
            logger.warning("Stripe webhook payload rejected: %s", e)
            return 400, {"error": "malformed event"}

        try:
            event = decode_event(payload)
        except MalformedEventError as e:
            logger.warning("Stripe webhook payload rejected: %s", e)
            return 400, {"error": "malformed event"}

        try:
            outcome = self.apply(event)
        except IntegrityError:
            self.session.rollback()
            if not self._applied_concurrently(event):
                logger.exception("Constraint violation applying %s %s", event.type, event.event_id)
                raise
            logger.info("Event %s already applied by a concurrent delivery", event.event_id)
            return 200, {"received": True}
        except (TransientBillingError, SQLAlchemyError) as e:
            self.session.rollback()
            logger.error("Transient failure handling %s %s: %s", event.type, event.event_id, e)
            return 503, {"error": "temporarily unavailable"}
        except Exception:
            self.session.rollback()
            raise

        logger.info("Stripe %s %s -> %s", event.type, event.event_id, outcome)
        return 200, {"received": True}

    def apply(self, event: ProviderEvent) -> str:
        """Apply a decoded event inside one transaction and return its outcome."""
        if isinstance(event, UnknownEvent):
            logger.debug("Ignoring Stripe event type %s", event.type)
            return IGNORED

        if self._already_processed(event.event_id):
            logger.info("Stripe event %s was already processed", event.event_id)
            return DUPLICATE

        handlers = {
            BaseFeeCheckoutCompleted: self._on_base_fee_checkout,
            PlanCheckoutCompleted: self._on_plan_checkout,
            InvoicePaymentFailed: self._on_payment_failed,
            InvoicePaid: self._on_invoice_paid,
            SubscriptionDeleted: self._on_subscription_deleted,
        }
        outcome = handlers[type(event)](event)
        self.session.add(ProcessedWebhookEvent(
            event_id=event.event_id,
            event_type=event.type,
            provider_object_id=getattr(event, "provider_subscription_id", None),
            outcome=outcome,
        ))
        self.session.commit()
        return outcome

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _already_processed(self, event_id: str) -> bool:
        return self.session.query(ProcessedWebhookEvent).filter_by(
            event_id=event_id
        ).first() is not None

    def _applied_concurrently(self, event: ProviderEvent) -> bool:
        """After a unique constraint failure: did another delivery commit this event?"""
        query = self.session.query
        if query(ProcessedWebhookEvent).filter_by(event_id=event.event_id).first():
            return True
        if isinstance(event, PlanCheckoutCompleted) and event.provider_subscription_id:
            return query(Subscription).filter_by(
                provider_subscription_id=event.provider_subscription_id
            ).first() is not None
        return False

    def _was_cancelled(self, provider_subscription_id: str) -> bool:
        """True when a deletion for this subscription arrived earlier."""
        return self.session.query(ProcessedWebhookEvent).filter_by(
            event_type=SUBSCRIPTION_DELETED,
            provider_object_id=provider_subscription_id,
        ).first() is not None

    def _subscription(self, provider_subscription_id: Optional[str]) -> Optional[Subscription]:
        if not provider_subscription_id:
            return None
        return self.session.query(Subscription).filter_by(
            provider_subscription_id=provider_subscription_id
        ).first()

    def _base_fee_clinic(self, provider_subscription_id: Optional[str]) -> Optional[Clinic]:
        if not provider_subscription_id:
            return None
        return self.session.query(Clinic).filter_by(
            base_fee_provider_subscription_id=provider_subscription_id
        ).first()

    def _resolve_patient(self, event: PlanCheckoutCompleted) -> Optional[Patient]:
        if event.patient_id:
            patient = self.session.get(Patient, event.patient_id)
            if patient:
                return patient
        if event.customer_email:
            return self.session.query(Patient).filter_by(
                email=event.customer_email.strip().lower()
            ).first()
        return None

    def _resolve_plan(self, session_id: str) -> Optional[SubscriptionPlan]:
        try:
            price_ids = self.gateway.list_line_item_price_ids(session_id)
        except ProviderError as e:
            logger.warning("Could not list line items of %s: %s", session_id, e)
            return None
        for price_id in price_ids:
            plan = self.plan_resolver(price_id)
            if plan:
                return plan
        return None

    def _record(self, activity_type: str, **kwargs) -> None:
        record_activity(activity_type, session=self.session, **kwargs)

    def _subscription_details(self, sub: Subscription, patient: Optional[Patient]) -> dict:
        snap = sub.plan_snapshot or {}
        details = {
            "plan": snap.get("name"),
            "planId": sub.plan_id,
            "amount": snap.get("price"),
            "patientName": patient.name if patient else None,
            "patientId": sub.patient_id,
            "clinicId": sub.clinic_id,
            "subscriptionId": sub.subscription_id,
        }
        clinic = self.session.get(Clinic, sub.clinic_id)
        if clinic:
            details["clinicName"] = clinic.clinic_name
        return details

    # ------------------------------------------------------------------
    # Clinic base fee
    # ------------------------------------------------------------------

    def _on_base_fee_checkout(self, event: BaseFeeCheckoutCompleted) -> str:
        if not event.account_id:
            logger.warning("Base fee checkout %s has no accountId metadata, skipped",
                           event.session_id)
            return SKIPPED
        clinic = self.session.get(Clinic, event.account_id)
        if not clinic:
            logger.warning("Base fee checkout %s for unknown clinic %s, skipped",
                           event.session_id, event.account_id)
            return SKIPPED
        if (
            clinic.base_fee_status == "active"
            and clinic.base_fee_provider_subscription_id == event.provider_subscription_id
        ):
            logger.info("Base fee for clinic %s already active", clinic.clinic_id)
            return SKIPPED

        cancelled = bool(event.provider_subscription_id) and self._was_cancelled(
            event.provider_subscription_id
        )
        clinic.base_fee_status = "suspended" if cancelled else "active"
        clinic.base_fee_provider_subscription_id = event.provider_subscription_id
        clinic.base_fee_provider_customer_id = event.provider_customer_id
        self._record(
            "base_fee_paid",
            user_id=clinic.clinic_id,
            clinic_id=clinic.clinic_id,
            message=f"{clinic.clinic_name}が基本料金を支払いました。",
            details={
                "clinicName": clinic.clinic_name,
                "clinicId": clinic.clinic_id,
                "amount": "base_fee",
            },
        )
        logger.info("Clinic %s base fee -> %s", clinic.clinic_id, clinic.base_fee_status)
        return APPLIED

    # ------------------------------------------------------------------
    # Patient plans
    # ------------------------------------------------------------------

    def _on_plan_checkout(self, event: PlanCheckoutCompleted) -> str:
        if not event.provider_subscription_id:
            logger.warning("Checkout %s has no subscription id, skipped", event.session_id)
            return SKIPPED
        if self._subscription(event.provider_subscription_id):
            logger.info("Subscription %s already recorded", event.provider_subscription_id)
            return SKIPPED

        plan = self._resolve_plan(event.session_id)
        if not plan:
            logger.warning("Checkout %s does not match any plan, skipped", event.session_id)
            return SKIPPED
        patient = self._resolve_patient(event)
        if not patient:
            logger.warning("Checkout %s has no matching patient (%s, %s), skipped",
                           event.session_id, event.patient_id, event.customer_email)
            return SKIPPED

        clinic_id = event.clinic_id or patient.clinic_id or UNASSIGNED_CLINIC
        clinic = self.session.get(Clinic, clinic_id)
        cancelled = self._was_cancelled(event.provider_subscription_id)
        now = utc_now()
        sub = Subscription(
            patient_id=patient.patient_id,
            clinic_id=clinic_id,
            plan_id=plan.id,
            plan_snapshot=snapshot(plan),
            status="cancelled" if cancelled else "active",
            provider_subscription_id=event.provider_subscription_id,
            provider_customer_id=event.provider_customer_id,
            provider_checkout_session_id=event.session_id,
            start_date=now,
            last_payment_date=now,
            end_date=now if cancelled else None,
            cancelled_at=now if cancelled else None,
        )
        self.session.add(sub)
        # Flush so the unique provider id is enforced inside this transaction
        self.session.flush()

        if cancelled:
            logger.warning("Subscription %s was deleted before its checkout completed",
                           event.provider_subscription_id)
        else:
            patient.status = "active"
        if clinic:
            # The checkout itself settles the first invoice
            clinic.commission_earned = (clinic.commission_earned or 0) + plan.commission

        self._record(
            "new_signup",
            user_id=patient.patient_id,
            clinic_id=clinic_id,
            message=f"{patient.name}が{plan.name}に登録しました。",
            details=self._subscription_details(sub, patient),
        )
        logger.info("Created subscription %s (%s) for patient %s",
                    sub.subscription_id, plan.id, patient.patient_id)
        return APPLIED

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def _on_payment_failed(self, event: InvoicePaymentFailed) -> str:
        sub = self._subscription(event.provider_subscription_id)
        if sub:
            if sub.status == "cancelled":
                logger.info("Payment failure for cancelled subscription %s, skipped",
                            sub.subscription_id)
                return SKIPPED
            sub.status = "past_due"
            patient = self.session.get(Patient, sub.patient_id)
            if patient:
                patient.status = "suspended"
            details = self._subscription_details(sub, patient)
            details["invoiceId"] = event.invoice_id
            name = patient.name if patient else sub.patient_id
            self._record(
                "payment_failed",
                user_id=sub.patient_id,
                clinic_id=sub.clinic_id,
                message=f"{name}の{details.get('plan') or sub.plan_id}支払いが失敗しました。",
                details=details,
            )
            logger.info("Subscription %s -> past_due", sub.subscription_id)
            return APPLIED

        clinic = self._base_fee_clinic(event.provider_subscription_id)
        if clinic:
            if clinic.base_fee_status == "suspended":
                return SKIPPED
            clinic.base_fee_status = "unpaid"
            self._record(
                "payment_failed",
                user_id=clinic.clinic_id,
                clinic_id=clinic.clinic_id,
                message=f"{clinic.clinic_name}の基本料金の支払いが失敗しました。",
                details={
                    "clinicName": clinic.clinic_name,
                    "clinicId": clinic.clinic_id,
                    "invoiceId": event.invoice_id,
                    "amount": event.amount_due,
                },
            )
            logger.info("Clinic %s base fee -> unpaid", clinic.clinic_id)
            return APPLIED

        logger.warning("invoice.payment_failed %s matches no subscription (%s), skipped",
                       event.invoice_id, event.provider_subscription_id)
        return SKIPPED

    def _on_invoice_paid(self, event: InvoicePaid) -> str:
        if event.billing_reason == "subscription_create":
            # Settled by checkout.session.completed
            return SKIPPED

        sub = self._subscription(event.provider_subscription_id)
        if sub:
            if sub.status == "cancelled":
                logger.info("Invoice paid for cancelled subscription %s, skipped",
                            sub.subscription_id)
                return SKIPPED
            sub.status = "active"
            sub.last_payment_date = utc_now()
            patient = self.session.get(Patient, sub.patient_id)
            if patient:
                patient.status = "active"
            snap = sub.plan_snapshot or {}
            clinic = self.session.get(Clinic, sub.clinic_id)
            if clinic:
                clinic.commission_earned = (clinic.commission_earned or 0) + int(
                    snap.get("commission") or 0
                )
            details = self._subscription_details(sub, patient)
            details["invoiceId"] = event.invoice_id
            if event.amount_paid:
                details["amount"] = event.amount_paid
            name = patient.name if patient else sub.patient_id
            self._record(
                "payment_success",
                user_id=sub.patient_id,
                clinic_id=sub.clinic_id,
                message=f"{name}の{details.get('plan') or sub.plan_id}支払いが完了しました。",
                details=details,
            )
            return APPLIED

        clinic = self._base_fee_clinic(event.provider_subscription_id)
        if clinic:
            if clinic.base_fee_status == "suspended":
                return SKIPPED
            clinic.base_fee_status = "active"
            self._record(
                "base_fee_paid",
                user_id=clinic.clinic_id,
                clinic_id=clinic.clinic_id,
                message=f"{clinic.clinic_name}が基本料金を支払いました。",
                details={
                    "clinicName": clinic.clinic_name,
                    "clinicId": clinic.clinic_id,
                    "invoiceId": event.invoice_id,
                    "amount": event.amount_paid,
                },
            )
            return APPLIED

        logger.warning("invoice.paid %s matches no subscription (%s), skipped",
                       event.invoice_id, event.provider_subscription_id)
        return SKIPPED

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _on_subscription_deleted(self, event: SubscriptionDeleted) -> str:
        sub = self._subscription(event.provider_subscription_id)
        if sub:
            if sub.status == "cancelled":
                return SKIPPED
            now = utc_now()
            sub.status = "cancelled"
            sub.end_date = event.ended_at or now
            sub.cancelled_at = now
            patient = self.session.get(Patient, sub.patient_id)
            if patient:
                still_active = self.session.query(Subscription).filter(
                    Subscription.patient_id == sub.patient_id,
                    Subscription.subscription_id != sub.subscription_id,
                    Subscription.status == "active",
                ).count()
                if not still_active:
                    patient.status = "cancelled"
            details = self._subscription_details(sub, patient)
            name = patient.name if patient else sub.patient_id
            self._record(
                "subscription_cancelled",
                user_id=sub.patient_id,
                clinic_id=sub.clinic_id,
                message=f"{name}の{details.get('plan') or sub.plan_id}がキャンセルされました。",
                details=details,
            )
            logger.info("Subscription %s -> cancelled", sub.subscription_id)
            return APPLIED

        clinic = self._base_fee_clinic(event.provider_subscription_id)
        if clinic:
            if clinic.base_fee_status == "suspended":
                return SKIPPED
            clinic.base_fee_status = "suspended"
            self._record(
                "subscription_cancelled",
                user_id=clinic.clinic_id,
                clinic_id=clinic.clinic_id,
                message=f"{clinic.clinic_name}の基本料金契約がキャンセルされました。",
                details={"clinicName": clinic.clinic_name, "clinicId": clinic.clinic_id},
            )
            logger.info("Clinic %s base fee -> suspended", clinic.clinic_id)
            return APPLIED

        # Kept as a tombstone: a late checkout must not resurrect it
        logger.warning("Deletion of unknown subscription %s recorded",
                       event.provider_subscription_id)
        return SKIPPED

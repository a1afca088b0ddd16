"""Decoding of Stripe webhook payloads into a closed set of event variants."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Optional, Union

from utils import from_unix, safe_int

BASE_FEE_PURPOSE = "clinic_base_fee"
PLAN_PURPOSE = "patient_plan"

KNOWN_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "invoice.payment_failed",
    "invoice.paid",
    "customer.subscription.deleted",
})


class MalformedEventError(Exception):
    """The payload is signed correctly but is not a usable event."""

    pass


@dataclass(frozen=True)
class BaseFeeCheckoutCompleted:
    event_id: str
    session_id: str
    account_id: Optional[str]
    provider_subscription_id: Optional[str]
    provider_customer_id: Optional[str]
    type: str = "checkout.session.completed"


@dataclass(frozen=True)
class PlanCheckoutCompleted:
    event_id: str
    session_id: str
    provider_subscription_id: Optional[str]
    provider_customer_id: Optional[str]
    customer_email: Optional[str]
    patient_id: Optional[str]
    clinic_id: Optional[str]
    plan_id: Optional[str]
    type: str = "checkout.session.completed"


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: str
    provider_subscription_id: Optional[str]
    amount_due: int = 0
    type: str = "invoice.payment_failed"


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    invoice_id: str
    provider_subscription_id: Optional[str]
    amount_paid: int = 0
    billing_reason: str = ""
    type: str = "invoice.paid"


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    provider_subscription_id: str
    ended_at: Optional[datetime.datetime] = None
    type: str = "customer.subscription.deleted"


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    type: str
    payload: dict = field(default_factory=dict, compare=False, repr=False)


ProviderEvent = Union[
    BaseFeeCheckoutCompleted,
    PlanCheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaid,
    SubscriptionDeleted,
    UnknownEvent,
]


def _mapping(value) -> dict:
    """Optional nested objects; anything that is not an object reads as empty."""
    return value if isinstance(value, dict) else {}


def _text(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _id_of(value) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    return _text(value)


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    sub = _id_of(invoice.get("subscription"))
    if sub:
        return sub
    # Newer API versions nest the reference under the invoice parent
    parent = _mapping(invoice.get("parent"))
    details = _mapping(parent.get("subscription_details"))
    return _id_of(details.get("subscription"))


def _decode_checkout(event_id: str, session: dict) -> ProviderEvent:
    metadata = _mapping(session.get("metadata"))
    purpose = _text(metadata.get("purpose")) or _text(metadata.get("type"))
    session_id = _text(session.get("id")) or ""
    subscription_id = _id_of(session.get("subscription"))
    customer_id = _id_of(session.get("customer"))
    if purpose == BASE_FEE_PURPOSE:
        return BaseFeeCheckoutCompleted(
            event_id=event_id,
            session_id=session_id,
            account_id=_text(metadata.get("accountId")) or _text(metadata.get("userId")),
            provider_subscription_id=subscription_id,
            provider_customer_id=customer_id,
        )
    details = _mapping(session.get("customer_details"))
    return PlanCheckoutCompleted(
        event_id=event_id,
        session_id=session_id,
        provider_subscription_id=subscription_id,
        provider_customer_id=customer_id,
        customer_email=_text(session.get("customer_email")) or _text(details.get("email")),
        patient_id=_text(metadata.get("patientId")) or _text(session.get("client_reference_id")),
        clinic_id=_text(metadata.get("clinicId")),
        plan_id=_text(metadata.get("planId")),
    )


def decode_event(payload: dict) -> ProviderEvent:
    """Map a verified Stripe event payload onto one of the known variants."""
    if not isinstance(payload, dict):
        raise MalformedEventError("event payload is not an object")
    event_id = _text(payload.get("id"))
    event_type = _text(payload.get("type"))
    if not event_id or not event_type:
        raise MalformedEventError("event is missing id or type")
    data = payload.get("data")
    if data is not None and not isinstance(data, dict):
        raise MalformedEventError("event data is not an object")
    obj = (data or {}).get("object")
    if not isinstance(obj, dict):
        if event_type in KNOWN_EVENT_TYPES:
            raise MalformedEventError(f"{event_type} event has no data object")
        return UnknownEvent(event_id=event_id, type=event_type, payload=payload)

    if event_type == "checkout.session.completed":
        return _decode_checkout(event_id, obj)
    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            event_id=event_id,
            invoice_id=_text(obj.get("id")) or "",
            provider_subscription_id=_invoice_subscription_id(obj),
            amount_due=safe_int(obj.get("amount_due")),
        )
    if event_type == "invoice.paid":
        return InvoicePaid(
            event_id=event_id,
            invoice_id=_text(obj.get("id")) or "",
            provider_subscription_id=_invoice_subscription_id(obj),
            amount_paid=safe_int(obj.get("amount_paid")),
            billing_reason=_text(obj.get("billing_reason")) or "",
        )
    if event_type == "customer.subscription.deleted":
        sub_id = _text(obj.get("id"))
        if not sub_id:
            raise MalformedEventError("subscription event without id")
        return SubscriptionDeleted(
            event_id=event_id,
            provider_subscription_id=sub_id,
            ended_at=from_unix(obj.get("ended_at") or obj.get("canceled_at")),
        )
    return UnknownEvent(event_id=event_id, type=event_type, payload=payload)


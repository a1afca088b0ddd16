"""SQLAlchemy models and enumerations."""

from __future__ import annotations

from extensions import db
from utils import new_id, utc_now


def _iso(value):
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

VALID_ROLES = ("patient", "clinic", "admin")

ROLE_DASHBOARDS: dict[str, str] = {
    "patient": "/patient/dashboard",
    "clinic": "/clinic/dashboard",
    "admin": "/admin/dashboard",
}

VALID_PLAN_STATUSES = {"active", "inactive"}
VALID_BASE_FEE_STATUSES = {"pending", "active", "unpaid", "suspended"}
VALID_PATIENT_STATUSES = {"pending", "active", "suspended", "cancelled"}
VALID_SUBSCRIPTION_STATUSES = {"active", "past_due", "cancelled"}

ACTIVITY_TYPES = (
    "new_signup",
    "payment_success",
    "payment_failed",
    "base_fee_paid",
    "subscription_cancelled",
)

UNASSIGNED_CLINIC = "unassigned"

CLAIM_STATUSES = ("pending", "approved", "rejected", "paid")
CLAIM_TYPES = ("medical", "dental", "vision", "prescription")

# Allowed review steps for an insurance claim
CLAIM_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("approved", "rejected"),
    "approved": ("paid",),
}


# ---------------------------------------------------------------------------
# Plan catalog
# ---------------------------------------------------------------------------

class SubscriptionPlan(db.Model):
    """A care plan tier sold through clinics (e.g., Plan A, B, C)."""
    id = db.Column(db.String(20), primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Integer, nullable=False)
    commission = db.Column(db.Integer, nullable=False)  # routed to the clinic
    company_cut = db.Column(db.Integer, nullable=False)  # kept by the platform
    provider_price_id = db.Column(db.String(120), unique=True)
    features = db.Column(db.JSON, default=list)
    status = db.Column(db.String(20), default="active")
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "commission": self.commission,
            "companyCut": self.company_cut,
            "priceId": self.provider_price_id,
            "features": list(self.features or []),
            "status": self.status,
        }


# ---------------------------------------------------------------------------
# Accounts and profiles
# ---------------------------------------------------------------------------

class Account(db.Model):
    """An authentication principal."""
    uid = db.Column(db.String(64), primary_key=True, default=new_id)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)


class UserProfile(db.Model):
    """Per-account profile document; role never changes after creation."""
    uid = db.Column(db.String(64), db.ForeignKey("account.uid"), primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    display_name = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=utc_now)

    account = db.relationship("Account", backref=db.backref("profile", uselist=False))

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "role": self.role,
            "displayName": self.display_name,
        }


class Clinic(db.Model):
    clinic_id = db.Column(db.String(64), db.ForeignKey("account.uid"), primary_key=True)
    clinic_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    base_fee_status = db.Column(db.String(20), default="pending")
    base_fee_provider_subscription_id = db.Column(db.String(120), index=True)
    base_fee_provider_customer_id = db.Column(db.String(120))
    commission_earned = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict:
        return {
            "clinicId": self.clinic_id,
            "clinicName": self.clinic_name,
            "email": self.email,
            "baseFeeStatus": self.base_fee_status,
            "commissionEarned": self.commission_earned or 0,
        }


class Patient(db.Model):
    patient_id = db.Column(db.String(64), db.ForeignKey("account.uid"), primary_key=True)
    # Not a foreign key: may hold the "unassigned" sentinel
    clinic_id = db.Column(db.String(64), nullable=False, default=UNASSIGNED_CLINIC, index=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(60))
    address = db.Column(db.String(255))
    status = db.Column(db.String(20), default="pending")
    joined_at = db.Column(db.DateTime, default=utc_now, index=True)

    def to_dict(self) -> dict:
        return {
            "patientId": self.patient_id,
            "clinicId": self.clinic_id,
            "name": self.name,
            "email": self.email,
            "status": self.status,
            "joinedAt": self.joined_at.isoformat() if self.joined_at else None,
        }


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

class Subscription(db.Model):
    """A patient's paid plan enrollment. Cancelled rows are kept for history."""
    subscription_id = db.Column(db.String(64), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(64), nullable=False, index=True)
    clinic_id = db.Column(db.String(64), nullable=False, index=True)
    plan_id = db.Column(db.String(20), db.ForeignKey("subscription_plan.id"), nullable=False)
    plan_snapshot = db.Column(db.JSON)
    status = db.Column(db.String(20), nullable=False, default="active")
    provider_subscription_id = db.Column(db.String(120), unique=True, nullable=False)
    provider_customer_id = db.Column(db.String(120))
    provider_checkout_session_id = db.Column(db.String(120))
    start_date = db.Column(db.DateTime, default=utc_now)
    end_date = db.Column(db.DateTime)
    last_payment_date = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    plan = db.relationship("SubscriptionPlan")

    __table_args__ = (
        db.Index("ix_subscription_clinic_status", "clinic_id", "status"),
    )

    def to_dict(self) -> dict:
        snap = self.plan_snapshot or {}
        return {
            "subscriptionId": self.subscription_id,
            "patientId": self.patient_id,
            "clinicId": self.clinic_id,
            "planId": self.plan_id,
            "planName": snap.get("name"),
            "price": snap.get("price"),
            "commission": snap.get("commission"),
            "status": self.status,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "lastPaymentDate": _iso(self.last_payment_date),
            "updatedAt": _iso(self.updated_at),
        }


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------

class ActivityFeedEntry(db.Model):
    """Append-only audit record consumed by dashboards."""
    __tablename__ = "activity_feed"

    activity_id = db.Column(db.String(64), primary_key=True, default=new_id)
    type = db.Column(db.String(40), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)
    clinic_id = db.Column(db.String(64), nullable=False)
    message = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=utc_now)
    details = db.Column(db.JSON, default=dict)

    __table_args__ = (
        db.Index("ix_activity_feed_timestamp", "timestamp"),
        db.Index("ix_activity_feed_clinic", "clinic_id", "timestamp"),
    )

    def to_dict(self) -> dict:
        return {
            "activityId": self.activity_id,
            "type": self.type,
            "userId": self.user_id,
            "clinicId": self.clinic_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "details": dict(self.details or {}),
        }


# ---------------------------------------------------------------------------
# Webhook idempotency
# ---------------------------------------------------------------------------

class ProcessedWebhookEvent(db.Model):
    """One row per provider event id that has been handled."""
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(120), unique=True, nullable=False)
    event_type = db.Column(db.String(80), nullable=False)
    provider_object_id = db.Column(db.String(120), index=True)
    outcome = db.Column(db.String(20), nullable=False)
    processed_at = db.Column(db.DateTime, default=utc_now)


# ---------------------------------------------------------------------------
# Insurance claims
# ---------------------------------------------------------------------------

class InsuranceClaim(db.Model):
    """A claim filed with a patient's insurer, reviewed by the back office."""
    claim_id = db.Column(db.String(64), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(64), db.ForeignKey("patient.patient_id"), nullable=False)
    clinic_id = db.Column(db.String(64), nullable=False, index=True)
    claim_amount = db.Column(db.Integer, nullable=False)
    claim_type = db.Column(db.String(20), nullable=False)
    insurance_provider = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    documents = db.Column(db.JSON, default=list)  # file names only
    status = db.Column(db.String(20), nullable=False, default="pending")
    submission_date = db.Column(db.DateTime, default=utc_now)
    processed_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    patient = db.relationship("Patient")

    __table_args__ = (
        db.Index("ix_insurance_claim_clinic_status", "clinic_id", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "claimId": self.claim_id,
            "patientId": self.patient_id,
            "patientName": self.patient.name if self.patient else None,
            "clinicId": self.clinic_id,
            "claimAmount": self.claim_amount,
            "claimType": self.claim_type,
            "insuranceProvider": self.insurance_provider,
            "description": self.description,
            "documents": list(self.documents or []),
            "status": self.status,
            "submissionDate": _iso(self.submission_date),
            "processedDate": _iso(self.processed_date),
        }

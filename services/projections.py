"""Read-only dashboard projections over current records."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func

from extensions import db
from models import Clinic, Patient, Subscription
from services.claims import pending_claims_count


def system_stats() -> dict:
    active = Subscription.query.filter_by(status="active").all()
    return {
        "totalClinics": Clinic.query.count(),
        "totalPatients": Patient.query.count(),
        "activeSubscriptions": len(active),
        "totalRevenue": sum(int((s.plan_snapshot or {}).get("price") or 0) for s in active),
        "pendingInsuranceClaims": pending_claims_count(),
    }


def clinic_stats(clinic_id: str) -> Optional[dict]:
    clinic = db.session.get(Clinic, clinic_id)
    if not clinic:
        return None
    active_count = (
        db.session.query(func.count(Subscription.subscription_id))
        .filter(Subscription.clinic_id == clinic_id, Subscription.status == "active")
        .scalar()
    )
    return {
        "totalPatients": Patient.query.filter_by(clinic_id=clinic_id).count(),
        "activeSubscriptions": active_count or 0,
        "commissionEarned": clinic.commission_earned or 0,
        "baseFeeStatus": clinic.base_fee_status,
        "insuranceClaimsPending": pending_claims_count(clinic_id),
    }


def recent_signups(clinic_id: Optional[str] = None, limit: int = 5) -> list[Patient]:
    query = Patient.query
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    return query.order_by(Patient.joined_at.desc()).limit(limit).all()


def list_patients(
    clinic_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[Patient]:
    """Patients by name, optionally for one clinic and one status."""
    query = Patient.query
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Patient.name, Patient.patient_id).limit(limit).all()


def list_subscriptions(
    clinic_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[Subscription]:
    """Most recently changed subscriptions first."""
    query = Subscription.query
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Subscription.updated_at.desc()).limit(limit).all()


def list_clinics() -> list[Clinic]:
    return Clinic.query.order_by(Clinic.clinic_name).all()

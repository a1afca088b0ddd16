"""Insurance claim intake and back-office review."""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import CLAIM_STATUSES, CLAIM_TRANSITIONS, CLAIM_TYPES, InsuranceClaim, Patient
from utils import safe_int, utc_now

logger = logging.getLogger(__name__)


class ClaimError(Exception):
    """Raised for invalid claim submissions or review steps."""

    pass


def submit_claim(
    patient_id: str,
    claim_amount,
    insurance_provider: str,
    claim_type: str,
    description: str = "",
    documents: Optional[list] = None,
    clinic_id: Optional[str] = None,
) -> InsuranceClaim:
    """File a new claim in ``pending`` state. Does not commit.

    The claim is booked against the patient's clinic; a *clinic_id* that
    does not match it is refused.
    """
    patient = db.session.get(Patient, patient_id) if patient_id else None
    if not patient:
        raise ClaimError("unknown patient")
    if clinic_id and clinic_id != patient.clinic_id:
        raise ClaimError("patient does not belong to this clinic")
    amount = safe_int(claim_amount, -1)
    if amount <= 0:
        raise ClaimError("claim amount must be a positive integer")
    if claim_type not in CLAIM_TYPES:
        raise ClaimError(f"unknown claim type: {claim_type}")
    if not insurance_provider:
        raise ClaimError("insurance provider is required")

    claim = InsuranceClaim(
        patient_id=patient.patient_id,
        clinic_id=patient.clinic_id,
        claim_amount=amount,
        claim_type=claim_type,
        insurance_provider=insurance_provider,
        description=description or "",
        documents=[str(name) for name in (documents or [])],
        status="pending",
    )
    db.session.add(claim)
    logger.info("Claim submitted for patient %s (%s, %s)", patient.patient_id, claim_type, amount)
    return claim


def set_claim_status(claim_id: str, status: str) -> InsuranceClaim:
    """Move a claim one review step forward. Does not commit."""
    if status not in CLAIM_STATUSES:
        raise ClaimError(f"unknown claim status: {status}")
    claim = db.session.get(InsuranceClaim, claim_id)
    if not claim:
        raise ClaimError("unknown claim")
    if status not in CLAIM_TRANSITIONS.get(claim.status, ()):
        raise ClaimError(f"cannot move claim from {claim.status} to {status}")
    claim.status = status
    claim.processed_date = utc_now()
    logger.info("Claim %s -> %s", claim_id, status)
    return claim


def list_claims(
    clinic_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[InsuranceClaim]:
    query = InsuranceClaim.query
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(InsuranceClaim.created_at.desc()).limit(limit).all()


def pending_claims_count(clinic_id: Optional[str] = None) -> int:
    query = InsuranceClaim.query.filter_by(status="pending")
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    return query.count()

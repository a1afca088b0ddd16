"""Registration: account creation, profile materialization, signup activity."""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import UNASSIGNED_CLINIC, VALID_ROLES, Account, Clinic, Patient, UserProfile
from services.activity import record_activity
from services.auth import AccountError, create_account

logger = logging.getLogger(__name__)


def materialize_profile(
    account: Account,
    role: str,
    display_name: str = "",
    *,
    clinic_name: str = "",
    clinic_id: Optional[str] = None,
    phone: str = "",
    address: str = "",
) -> UserProfile:
    """Write the profile document (and role record) for *account*.

    Safe to call again for the same role; a different role is refused.
    Does not commit.
    """
    if role not in VALID_ROLES:
        raise AccountError(f"unknown role: {role}")
    profile = db.session.get(UserProfile, account.uid)
    if profile:
        if profile.role != role:
            raise AccountError(f"role of {account.uid} is already {profile.role}")
        return profile

    profile = UserProfile(
        uid=account.uid,
        email=account.email,
        role=role,
        display_name=display_name or clinic_name,
    )
    db.session.add(profile)

    if role == "clinic":
        db.session.add(Clinic(
            clinic_id=account.uid,
            clinic_name=clinic_name or display_name,
            email=account.email,
            base_fee_status="pending",
        ))
    elif role == "patient":
        db.session.add(Patient(
            patient_id=account.uid,
            clinic_id=clinic_id or UNASSIGNED_CLINIC,
            name=display_name,
            email=account.email,
            phone=phone or None,
            address=address or None,
            status="pending",
        ))
    logger.info("Materialized %s profile for %s", role, account.uid)
    return profile


def register_clinic(email: str, password: str, clinic_name: str) -> Account:
    if not clinic_name:
        raise AccountError("clinic name is required")
    account = create_account(email, password)
    materialize_profile(account, "clinic", clinic_name=clinic_name)
    record_activity(
        "new_signup",
        user_id=account.uid,
        clinic_id=account.uid,
        message=f"{clinic_name}が新規クリニックとして登録しました。",
        details={"clinicName": clinic_name, "clinicId": account.uid},
    )
    db.session.commit()
    return account


def register_patient(
    email: str,
    password: str,
    name: str,
    clinic_id: Optional[str] = None,
    phone: str = "",
    address: str = "",
) -> Account:
    """Register a patient, optionally attached to an existing clinic."""
    if not name:
        raise AccountError("name is required")
    clinic = db.session.get(Clinic, clinic_id) if clinic_id else None
    if clinic_id and not clinic:
        raise AccountError(f"unknown clinic: {clinic_id}")
    account = create_account(email, password)
    resolved_clinic = clinic.clinic_id if clinic else UNASSIGNED_CLINIC
    materialize_profile(
        account, "patient", display_name=name,
        clinic_id=resolved_clinic, phone=phone, address=address,
    )
    details = {"patientName": name, "patientId": account.uid, "clinicId": resolved_clinic}
    if clinic:
        details["clinicName"] = clinic.clinic_name
    record_activity(
        "new_signup",
        user_id=account.uid,
        clinic_id=resolved_clinic,
        message=f"{name}が新規患者として登録しました。",
        details=details,
    )
    db.session.commit()
    return account

"""Authentication and registration routes."""

import logging

from flask import Blueprint, current_app, jsonify, request

from extensions import csrf, limiter
from models import ROLE_DASHBOARDS
from services.accounts import register_clinic, register_patient
from services.auth import (
    AccountError,
    authenticate,
    current_account,
    login_required,
    sign_in,
    sign_out,
)
from services.profiles import (
    PROFILE_NOT_READY_MESSAGE,
    ProfileNotFoundAfterRetries,
    RetryPolicy,
    await_profile,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
csrf.exempt(auth_bp)


def _retry_policy() -> RetryPolicy:
    return RetryPolicy.from_config(current_app.config.get("PROFILE_POLLING"))


def _signed_in_response(account, status: int = 200):
    """Wait for the profile and tell the client where to go."""
    try:
        profile = await_profile(account.uid, policy=_retry_policy())
    except ProfileNotFoundAfterRetries:
        return jsonify({"error": PROFILE_NOT_READY_MESSAGE}), 503
    body = profile.to_dict()
    body["redirect"] = ROLE_DASHBOARDS[profile.role]
    return jsonify(body), status


@auth_bp.route("/register/patient", methods=["POST"])
@limiter.limit("5 per minute")
def register_patient_route():
    data = request.get_json(silent=True) or {}
    try:
        account = register_patient(
            data.get("email", ""),
            data.get("password", ""),
            (data.get("name") or "").strip(),
            clinic_id=(data.get("clinicId") or "").strip() or None,
            phone=data.get("phone", ""),
            address=data.get("address", ""),
        )
    except AccountError as e:
        return jsonify({"error": str(e)}), 400
    sign_in(account)
    return _signed_in_response(account, status=201)


@auth_bp.route("/register/clinic", methods=["POST"])
@limiter.limit("5 per minute")
def register_clinic_route():
    data = request.get_json(silent=True) or {}
    try:
        account = register_clinic(
            data.get("email", ""),
            data.get("password", ""),
            (data.get("clinicName") or "").strip(),
        )
    except AccountError as e:
        return jsonify({"error": str(e)}), 400
    sign_in(account)
    return _signed_in_response(account, status=201)


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = request.get_json(silent=True) or {}
    account = authenticate(data.get("email", ""), data.get("password", ""))
    if not account:
        return jsonify({"error": "メールアドレスまたはパスワードが正しくありません。"}), 401
    sign_in(account)
    return _signed_in_response(account)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    sign_out()
    return jsonify({"signedOut": True}), 200


@auth_bp.route("/me")
@login_required
def me():
    return _signed_in_response(current_account())

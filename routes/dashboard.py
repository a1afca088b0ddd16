"""Dashboard read endpoints: plans, stats, listings and the activity feed."""

from flask import Blueprint, jsonify, request

from extensions import db
from models import UserProfile
from services.activity import recent_activity
from services.auth import current_account, role_required
from services.plans import list_plans
from services.projections import (
    clinic_stats,
    list_clinics,
    list_patients,
    list_subscriptions,
    recent_signups,
    system_stats,
)
from utils import safe_int

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api")

MAX_LIMIT = 100


def _limit(default: int) -> int:
    return max(1, min(safe_int(request.args.get("limit"), default), MAX_LIMIT))


def _clinic_scope():
    """Clinics only ever see their own data; admins may filter freely."""
    profile = db.session.get(UserProfile, current_account().uid)
    if profile.role == "clinic":
        return profile.uid
    return request.args.get("clinicId") or None


@dashboard_bp.route("/plans")
def plans():
    return jsonify([p.to_dict() for p in list_plans()])


@dashboard_bp.route("/stats/system")
@role_required("admin")
def stats_system():
    return jsonify(system_stats())


@dashboard_bp.route("/stats/clinic/<clinic_id>")
@role_required("admin", "clinic")
def stats_clinic(clinic_id):
    scope = _clinic_scope()
    if scope and scope != clinic_id:
        return jsonify({"error": "この操作を行う権限がありません。"}), 403
    stats = clinic_stats(clinic_id)
    if stats is None:
        return jsonify({"error": "not found"}), 404
    return jsonify(stats)


@dashboard_bp.route("/activity")
@role_required("admin", "clinic")
def activity():
    entries = recent_activity(clinic_id=_clinic_scope(), limit=_limit(10))
    return jsonify([e.to_dict() for e in entries])


@dashboard_bp.route("/signups")
@role_required("admin", "clinic")
def signups():
    patients = recent_signups(clinic_id=_clinic_scope(), limit=_limit(5))
    return jsonify([p.to_dict() for p in patients])


@dashboard_bp.route("/patients")
@role_required("admin", "clinic")
def patients():
    rows = list_patients(
        clinic_id=_clinic_scope(),
        status=request.args.get("status") or None,
        limit=_limit(50),
    )
    return jsonify([p.to_dict() for p in rows])


@dashboard_bp.route("/subscriptions")
@role_required("admin", "clinic")
def subscriptions():
    rows = list_subscriptions(
        clinic_id=_clinic_scope(),
        status=request.args.get("status") or None,
        limit=_limit(50),
    )
    return jsonify([s.to_dict() for s in rows])


@dashboard_bp.route("/clinics")
@role_required("admin")
def clinics():
    return jsonify([c.to_dict() for c in list_clinics()])

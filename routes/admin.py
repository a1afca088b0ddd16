"""Back-office routes: plan catalog management and insurance claims."""

import logging

from flask import Blueprint, jsonify, request

from extensions import csrf, db
from models import InsuranceClaim
from services.auth import role_required
from services.claims import ClaimError, list_claims, set_claim_status, submit_claim
from services.plans import PlanCatalogError, deactivate_plan, find_plan, list_plans, save_plan
from routes.dashboard import _clinic_scope, _limit
from utils import safe_int

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api")
csrf.exempt(admin_bp)

_CLAIM_ACTIONS = {"approve": "approved", "reject": "rejected", "pay": "paid"}


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _str(data: dict, key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Plan catalog
# ---------------------------------------------------------------------------

def _save_plan_from(plan_id: str, data: dict):
    price = safe_int(data.get("price"), -1)
    commission = safe_int(data.get("commission"), -1)
    company_cut = safe_int(data.get("companyCut"), -1)
    name = _str(data, "name")
    if not name:
        raise PlanCatalogError("Plan name is required")
    features = data.get("features") or []
    if not isinstance(features, list):
        raise PlanCatalogError("features must be a list")
    return save_plan(
        plan_id,
        name=name,
        price=price,
        commission=commission,
        company_cut=company_cut,
        provider_price_id=_str(data, "providerPriceId") or None,
        features=[str(f) for f in features],
        description=_str(data, "description"),
        status=_str(data, "status") or "active",
        sort_order=safe_int(data.get("sortOrder")),
    )


@admin_bp.route("/plans/all")
@role_required("admin")
def plans_all():
    return jsonify([p.to_dict() for p in list_plans(active_only=False)])


@admin_bp.route("/plans", methods=["POST"])
@role_required("admin")
def create_plan():
    data = _body()
    plan_id = _str(data, "id")
    if not plan_id:
        return jsonify({"error": "Plan id is required"}), 400
    if find_plan(plan_id):
        return jsonify({"error": f"Plan {plan_id} already exists"}), 409
    try:
        plan = _save_plan_from(plan_id, data)
    except PlanCatalogError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    db.session.commit()
    logger.info("Plan %s created", plan_id)
    return jsonify(plan.to_dict()), 201


@admin_bp.route("/plans/<plan_id>", methods=["PUT"])
@role_required("admin")
def update_plan(plan_id):
    if not find_plan(plan_id):
        return jsonify({"error": "not found"}), 404
    data = _body()
    try:
        plan = _save_plan_from(plan_id, data)
    except PlanCatalogError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    db.session.commit()
    logger.info("Plan %s updated", plan_id)
    return jsonify(plan.to_dict())


@admin_bp.route("/plans/<plan_id>/deactivate", methods=["POST"])
@role_required("admin")
def deactivate(plan_id):
    if not deactivate_plan(plan_id):
        return jsonify({"error": "not found"}), 404
    db.session.commit()
    return jsonify(find_plan(plan_id).to_dict())


# ---------------------------------------------------------------------------
# Insurance claims
# ---------------------------------------------------------------------------

@admin_bp.route("/claims")
@role_required("admin", "clinic")
def claims():
    entries = list_claims(
        clinic_id=_clinic_scope(),
        status=request.args.get("status") or None,
        limit=_limit(50),
    )
    return jsonify([c.to_dict() for c in entries])


@admin_bp.route("/claims", methods=["POST"])
@role_required("admin")
def create_claim():
    data = _body()
    documents = data.get("documents") or []
    if not isinstance(documents, list):
        return jsonify({"error": "documents must be a list of file names"}), 400
    try:
        claim = submit_claim(
            _str(data, "patientId"),
            data.get("claimAmount"),
            _str(data, "insuranceProvider"),
            _str(data, "claimType"),
            description=_str(data, "description"),
            documents=documents,
            clinic_id=_str(data, "clinicId") or None,
        )
    except ClaimError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    db.session.commit()
    return jsonify(claim.to_dict()), 201


@admin_bp.route("/claims/<claim_id>/<action>", methods=["POST"])
@role_required("admin")
def review_claim(claim_id, action):
    status = _CLAIM_ACTIONS.get(action)
    if not status or not db.session.get(InsuranceClaim, claim_id):
        return jsonify({"error": "not found"}), 404
    try:
        claim = set_claim_status(claim_id, status)
    except ClaimError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 409
    db.session.commit()
    return jsonify(claim.to_dict())

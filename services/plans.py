"""Care plan catalog."""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import SubscriptionPlan

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "id": "A",
        "name": "プランA",
        "price": 3000,
        "commission": 2000,
        "company_cut": 1000,
        "description": "個人のための基本的なサポートと追跡。",
        "features": [
            "ベーシック腰サポーター",
            "月次健康チェックイン",
            "メールサポート",
        ],
    },
    {
        "id": "B",
        "name": "プランB",
        "price": 4000,
        "commission": 2500,
        "company_cut": 1500,
        "description": "より頻繁なモニタリングによる強化されたサポート。",
        "features": [
            "アドバンス腰サポーター",
            "隔週の健康チェックイン",
            "優先メールサポート",
            "ウェルネスウェビナーへのアクセス",
        ],
    },
    {
        "id": "C",
        "name": "プランC",
        "price": 5000,
        "commission": 3000,
        "company_cut": 2000,
        "description": "個別ケア付きのプレミアムサポート。",
        "features": [
            "プレミアム腰サポーター",
            "週次健康チェックイン",
            "24/7 電話 & メールサポート",
            "ウェルネスウェビナーへのアクセス",
            "個別健康プラン",
        ],
    },
]


class PlanCatalogError(Exception):
    """Raised when a plan would violate the catalog's invariants."""

    pass


def validate_plan_economics(price: int, commission: int, company_cut: int) -> None:
    """Ensure the clinic/platform split adds up to the plan price."""
    if min(price, commission, company_cut) < 0:
        raise PlanCatalogError("Plan amounts must not be negative")
    if commission + company_cut != price:
        raise PlanCatalogError(
            f"commission ({commission}) + company cut ({company_cut}) != price ({price})"
        )


def find_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    return db.session.get(SubscriptionPlan, plan_id)


def find_plan_by_provider_price_id(price_id: str) -> Optional[SubscriptionPlan]:
    """Resolve which plan a Stripe price id belongs to (active or not)."""
    if not price_id:
        return None
    return SubscriptionPlan.query.filter_by(provider_price_id=price_id).first()


def list_plans(active_only: bool = True) -> list[SubscriptionPlan]:
    query = SubscriptionPlan.query
    if active_only:
        query = query.filter_by(status="active")
    return query.order_by(SubscriptionPlan.sort_order, SubscriptionPlan.id).all()


def snapshot(plan: SubscriptionPlan) -> dict:
    """Copy the plan economics that historical commission math relies on."""
    return {
        "name": plan.name,
        "price": plan.price,
        "commission": plan.commission,
        "companyCut": plan.company_cut,
    }


def save_plan(
    plan_id: str,
    *,
    name: str,
    price: int,
    commission: int,
    company_cut: int,
    provider_price_id: Optional[str] = None,
    features: Optional[list] = None,
    description: str = "",
    status: str = "active",
    sort_order: int = 0,
) -> SubscriptionPlan:
    """Create or update a plan. Does not commit."""
    validate_plan_economics(price, commission, company_cut)
    if status not in ("active", "inactive"):
        raise PlanCatalogError(f"Unknown plan status: {status}")
    if provider_price_id:
        holder = find_plan_by_provider_price_id(provider_price_id)
        if holder and holder.id != plan_id:
            raise PlanCatalogError(f"Price id {provider_price_id} already belongs to plan {holder.id}")
    plan = find_plan(plan_id)
    if not plan:
        plan = SubscriptionPlan(id=plan_id)
        db.session.add(plan)
    plan.name = name
    plan.price = price
    plan.commission = commission
    plan.company_cut = company_cut
    plan.provider_price_id = provider_price_id or None
    plan.features = list(features or [])
    plan.description = description
    plan.status = status
    plan.sort_order = sort_order
    return plan


def deactivate_plan(plan_id: str) -> bool:
    """Plans are never deleted, only deactivated. Does not commit."""
    plan = find_plan(plan_id)
    if not plan:
        return False
    plan.status = "inactive"
    logger.info("Deactivated plan %s", plan_id)
    return True


def seed_default_plans(price_ids: dict) -> None:
    """Install the default catalog, refreshing price ids from configuration.

    Runs once at start-up outside any request and commits its own work.
    """
    for order, defaults in enumerate(DEFAULT_PLANS):
        existing = find_plan(defaults["id"])
        price_id = price_ids.get(defaults["id"]) or None
        if existing:
            if price_id and existing.provider_price_id != price_id:
                existing.provider_price_id = price_id
                logger.info("Updated price id for plan %s", defaults["id"])
            continue
        save_plan(
            defaults["id"],
            name=defaults["name"],
            price=defaults["price"],
            commission=defaults["commission"],
            company_cut=defaults["company_cut"],
            provider_price_id=price_id,
            features=defaults["features"],
            description=defaults["description"],
            sort_order=order,
        )
        logger.info("Seeded plan %s", defaults["id"])
    db.session.commit()

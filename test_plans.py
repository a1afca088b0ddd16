"""Plan catalog tests."""

import pytest

from extensions import db
from services.plans import (
    DEFAULT_PLANS,
    PlanCatalogError,
    deactivate_plan,
    find_plan,
    find_plan_by_provider_price_id,
    list_plans,
    save_plan,
    seed_default_plans,
    snapshot,
    validate_plan_economics,
)


class TestPlanEconomics:
    @pytest.mark.parametrize("plan", DEFAULT_PLANS, ids=lambda p: p["id"])
    def test_default_plans_split_adds_up(self, plan):
        assert plan["commission"] + plan["company_cut"] == plan["price"]

    def test_bad_split_rejected(self):
        with pytest.raises(PlanCatalogError):
            validate_plan_economics(3000, 2000, 500)

    def test_negative_amount_rejected(self):
        with pytest.raises(PlanCatalogError):
            validate_plan_economics(1000, 2000, -1000)


class TestCatalog:
    def test_seeded_catalog(self, ctx):
        plans = list_plans()
        assert [(p.id, p.price) for p in plans] == [("A", 3000), ("B", 4000), ("C", 5000)]
        for plan in plans:
            assert plan.commission + plan.company_cut == plan.price

    def test_lookup_by_price_id(self, ctx):
        assert find_plan_by_provider_price_id("price_plan_c").id == "C"
        assert find_plan_by_provider_price_id("price_missing") is None
        assert find_plan_by_provider_price_id("") is None

    def test_save_plan_rejects_bad_split(self, ctx):
        with pytest.raises(PlanCatalogError):
            save_plan("D", name="プランD", price=6000, commission=4000, company_cut=1000)
        assert find_plan("D") is None

    def test_save_new_plan(self, ctx):
        save_plan("D", name="プランD", price=6000, commission=4000, company_cut=2000,
                  provider_price_id="price_plan_d", sort_order=3)
        db.session.commit()
        assert find_plan_by_provider_price_id("price_plan_d").name == "プランD"
        assert [p.id for p in list_plans()][-1] == "D"

    def test_price_id_belongs_to_one_plan(self, ctx):
        with pytest.raises(PlanCatalogError):
            save_plan("D", name="プランD", price=6000, commission=4000, company_cut=2000,
                      provider_price_id="price_plan_a")
        assert find_plan("D") is None

    def test_catalog_edits_are_left_to_the_caller(self, ctx):
        deactivate_plan("B")
        save_plan("A", name="プランA", price=3600, commission=2400, company_cut=1200,
                  provider_price_id="price_plan_a")
        db.session.rollback()
        assert find_plan("B").status == "active"
        assert find_plan("A").price == 3000

    def test_deactivate_plan(self, ctx):
        assert deactivate_plan("B") is True
        db.session.commit()
        assert [p.id for p in list_plans()] == ["A", "C"]
        assert len(list_plans(active_only=False)) == 3
        # still resolvable for existing subscriptions
        assert find_plan_by_provider_price_id("price_plan_b").status == "inactive"

    def test_deactivate_unknown_plan(self, ctx):
        assert deactivate_plan("Z") is False

    def test_reseeding_refreshes_price_ids(self, ctx):
        seed_default_plans({"A": "price_plan_a_v2"})
        assert find_plan("A").provider_price_id == "price_plan_a_v2"
        assert len(list_plans(active_only=False)) == 3

    def test_snapshot(self, ctx):
        assert snapshot(find_plan("A")) == {
            "name": "プランA", "price": 3000, "commission": 2000, "companyCut": 1000,
        }

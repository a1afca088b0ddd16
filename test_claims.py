"""Insurance claim service tests."""

import datetime

import pytest

from conftest import make_account
from extensions import db
from models import InsuranceClaim
from services.claims import (
    ClaimError,
    list_claims,
    pending_claims_count,
    set_claim_status,
    submit_claim,
)
from services.projections import clinic_stats, system_stats


def _claim(patient_id="p1", amount=12000, **kwargs):
    kwargs.setdefault("insurance_provider", "全国健康保険協会")
    kwargs.setdefault("claim_type", "medical")
    return submit_claim(patient_id, amount, **kwargs)


class TestSubmitClaim:
    def test_new_claim_is_pending_at_patient_clinic(self, clinic_and_patient):
        claim = _claim(description="腰痛治療", documents=["receipt.pdf"])
        db.session.commit()
        stored = db.session.get(InsuranceClaim, claim.claim_id)
        assert stored.status == "pending"
        assert stored.clinic_id == "clinic1"
        assert stored.processed_date is None
        data = stored.to_dict()
        assert data["patientName"] == "田中太郎"
        assert data["documents"] == ["receipt.pdf"]
        assert data["submissionDate"] is not None

    def test_unknown_patient(self, ctx):
        with pytest.raises(ClaimError):
            _claim(patient_id="ghost")

    def test_patient_from_another_clinic(self, clinic_and_patient):
        make_account("clinic2", "clinic2@example.com", "clinic", clinic_name="鈴木クリニック")
        with pytest.raises(ClaimError):
            _claim(clinic_id="clinic2")
        assert InsuranceClaim.query.count() == 0

    @pytest.mark.parametrize("amount", [0, -500, "abc", None, {"yen": 1}])
    def test_amount_must_be_positive(self, clinic_and_patient, amount):
        with pytest.raises(ClaimError):
            _claim(amount=amount)

    def test_unknown_claim_type(self, clinic_and_patient):
        with pytest.raises(ClaimError):
            _claim(claim_type="cosmetic")

    def test_provider_required(self, clinic_and_patient):
        with pytest.raises(ClaimError):
            _claim(insurance_provider="")

    def test_submission_is_left_to_the_caller(self, clinic_and_patient):
        _claim()
        db.session.rollback()
        assert InsuranceClaim.query.count() == 0


class TestClaimReview:
    def test_approve_then_pay(self, clinic_and_patient):
        claim = _claim()
        db.session.commit()
        set_claim_status(claim.claim_id, "approved")
        db.session.commit()
        assert claim.processed_date is not None
        set_claim_status(claim.claim_id, "paid")
        db.session.commit()
        assert db.session.get(InsuranceClaim, claim.claim_id).status == "paid"

    def test_rejected_claim_is_final(self, clinic_and_patient):
        claim = _claim()
        set_claim_status(claim.claim_id, "rejected")
        db.session.commit()
        for status in ("approved", "paid", "pending"):
            with pytest.raises(ClaimError):
                set_claim_status(claim.claim_id, status)

    def test_pending_cannot_be_paid_directly(self, clinic_and_patient):
        claim = _claim()
        with pytest.raises(ClaimError):
            set_claim_status(claim.claim_id, "paid")

    def test_unknown_status_or_claim(self, clinic_and_patient):
        claim = _claim()
        with pytest.raises(ClaimError):
            set_claim_status(claim.claim_id, "archived")
        with pytest.raises(ClaimError):
            set_claim_status("missing", "approved")


class TestClaimProjections:
    def test_listing_newest_first_and_filtered(self, clinic_and_patient):
        base = datetime.datetime(2026, 3, 1)
        for minutes in (0, 2, 1):
            claim = _claim(amount=1000 + minutes)
            claim.created_at = base + datetime.timedelta(minutes=minutes)
        db.session.commit()
        assert [c.claim_amount for c in list_claims()] == [1002, 1001, 1000]
        assert [c.claim_amount for c in list_claims(limit=1)] == [1002]
        assert list_claims(clinic_id="clinic2") == []
        assert list_claims(status="approved") == []

    def test_pending_counts_feed_stats(self, clinic_and_patient):
        first = _claim()
        _claim()
        db.session.commit()
        set_claim_status(first.claim_id, "approved")
        db.session.commit()
        assert pending_claims_count() == 1
        assert pending_claims_count("clinic1") == 1
        assert pending_claims_count("clinic2") == 0
        assert system_stats()["pendingInsuranceClaims"] == 1
        assert clinic_stats("clinic1")["insuranceClaimsPending"] == 1

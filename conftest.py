"""Shared pytest fixtures."""

import hashlib
import hmac
import json
import os
import time

import pytest

os.environ["DATABASE_URI"] = "sqlite://"  # In-memory database for tests
os.environ["APP_SECRET_KEY"] = "test-secret-key"
os.environ["CONFIG_PATH"] = "does-not-exist.yaml"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_BASE_FEE_PRICE_ID"] = "price_base_fee"
os.environ["STRIPE_PRICE_PLAN_A"] = "price_plan_a"
os.environ["STRIPE_PRICE_PLAN_B"] = "price_plan_b"
os.environ["STRIPE_PRICE_PLAN_C"] = "price_plan_c"
os.environ["PROFILE_POLL_MAX_ATTEMPTS"] = "2"
os.environ["PROFILE_POLL_DELAY_MS"] = "0"
os.environ["RATELIMIT_ENABLED"] = "false"

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import Account, Subscription  # noqa: E402
from services.accounts import materialize_profile  # noqa: E402
from services.plans import find_plan, snapshot  # noqa: E402
from services.stripe_gateway import StripeGateway  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStripeGateway(StripeGateway):
    """Stripe gateway with canned API responses; signature checks are real."""

    def __init__(self, config):
        super().__init__(config)
        self.line_items: dict[str, list[str]] = {}
        self.created_sessions: list[dict] = []
        self.checkout_error = None
        self.line_items_error = None

    def create_checkout_session(self, **params):
        if self.checkout_error:
            raise self.checkout_error
        session_id = f"cs_test_{len(self.created_sessions) + 1}"
        self.created_sessions.append(params)
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def list_line_item_price_ids(self, session_id):
        if self.line_items_error:
            raise self.line_items_error
        return list(self.line_items.get(session_id, []))


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header for *payload*."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def make_event(event_id: str, event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def make_account(uid: str, email: str, role: str, **profile):
    account = Account(uid=uid, email=email, password_hash="x")
    db.session.add(account)
    db.session.commit()
    materialize_profile(account, role, **profile)
    db.session.commit()
    return account


def make_subscription(subscription_id, patient_id, clinic_id, provider_subscription_id,
                      plan_id="A", status="active"):
    sub = Subscription(
        subscription_id=subscription_id,
        patient_id=patient_id,
        clinic_id=clinic_id,
        plan_id=plan_id,
        plan_snapshot=snapshot(find_plan(plan_id)),
        status=status,
        provider_subscription_id=provider_subscription_id,
        provider_customer_id="cus_test",
    )
    db.session.add(sub)
    db.session.commit()
    return sub


@pytest.fixture
def app():
    """Create application for testing."""
    application = create_app()
    application.config["TESTING"] = True
    application.config["WTF_CSRF_ENABLED"] = False
    application.extensions["stripe_gateway"] = FakeStripeGateway(
        application.config["STRIPE_CONFIG"]
    )
    yield application


@pytest.fixture
def ctx(app):
    """Run the test inside an application context."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["stripe_gateway"]


@pytest.fixture
def clinic_and_patient(ctx):
    """Clinic "clinic1" with patient "p1" registered to it."""
    make_account("clinic1", "clinic1@example.com", "clinic", clinic_name="佐藤クリニック")
    make_account("p1", "p1@example.com", "patient", display_name="田中太郎", clinic_id="clinic1")
    return {"clinic_id": "clinic1", "patient_id": "p1"}

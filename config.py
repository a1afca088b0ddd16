"""Configuration loading: YAML file + environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets

import yaml

from config_models import AppConfig, ProfilePollingConfig, StripeConfig

logger = logging.getLogger(__name__)

# Plan id -> environment variable holding its Stripe price id
PLAN_PRICE_ENV = {
    "A": "STRIPE_PRICE_PLAN_A",
    "B": "STRIPE_PRICE_PLAN_B",
    "C": "STRIPE_PRICE_PLAN_C",
}


def _env_int(name: str, fallback) -> int:
    raw = os.environ.get(name, fallback)
    try:
        return int(raw)
    except (ValueError, TypeError):
        logger.warning("Invalid integer for %s: %r, using %s", name, raw, fallback)
        return int(fallback)


def load_config():
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    Returns (AppConfig, StripeConfig, ProfilePollingConfig, database_uri).
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    stripe_cfg = raw.get("stripe", {})
    profiles_cfg = raw.get("profiles", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    yaml_prices = stripe_cfg.get("plan_price_ids", {}) or {}
    plan_price_ids = {
        plan_id: os.environ.get(env_name, yaml_prices.get(plan_id, ""))
        for plan_id, env_name in PLAN_PRICE_ENV.items()
    }

    webhook_secret = os.environ.get(
        "STRIPE_WEBHOOK_SECRET", stripe_cfg.get("webhook_secret", "")
    )
    if not webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured; webhooks will be rejected")

    return (
        AppConfig(
            name=app_cfg.get("name", "CarePlan"),
            secret_key=secret_key,
            public_url=os.environ.get(
                "APP_PUBLIC_URL", app_cfg.get("public_url", "http://localhost:5000")
            ).rstrip("/"),
            currency=app_cfg.get("currency", "jpy"),
        ),
        StripeConfig(
            secret_key=os.environ.get("STRIPE_SECRET_KEY", stripe_cfg.get("secret_key", "")),
            webhook_secret=webhook_secret,
            base_fee_price_id=os.environ.get(
                "STRIPE_BASE_FEE_PRICE_ID", stripe_cfg.get("base_fee_price_id", "")
            ),
            plan_price_ids=plan_price_ids,
            webhook_tolerance=_env_int(
                "STRIPE_WEBHOOK_TOLERANCE", stripe_cfg.get("webhook_tolerance", 300)
            ),
        ),
        ProfilePollingConfig(
            max_attempts=_env_int(
                "PROFILE_POLL_MAX_ATTEMPTS", profiles_cfg.get("max_attempts", 5)
            ),
            delay_ms=_env_int("PROFILE_POLL_DELAY_MS", profiles_cfg.get("delay_ms", 100)),
        ),
        os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///careplan.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

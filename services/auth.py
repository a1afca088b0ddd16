"""Authentication and authorization services."""

from __future__ import annotations

import logging
import secrets
from functools import wraps
from typing import Optional

from flask import g, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from models import Account, UserProfile

logger = logging.getLogger(__name__)


class AccountError(Exception):
    """Raised for invalid account operations (duplicate email, bad role...)."""

    pass


def create_account(email: str, password: str) -> Account:
    """Create an auth principal. Commits."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise AccountError("email and password are required")
    if Account.query.filter_by(email=email).first():
        raise AccountError("email already registered")
    account = Account(email=email, password_hash=generate_password_hash(password))
    db.session.add(account)
    db.session.commit()
    logger.info("Created account %s", account.uid)
    return account


def authenticate(email: str, password: str) -> Optional[Account]:
    """Return the account for valid credentials, else None."""
    email = (email or "").strip().lower()
    account = Account.query.filter_by(email=email).first()
    if account and check_password_hash(account.password_hash, password or ""):
        return account
    return None


def sign_in(account: Account) -> None:
    session.clear()
    session["account_uid"] = account.uid
    session.permanent = True


def sign_out() -> None:
    session.clear()


def current_account() -> Optional[Account]:
    """Return the signed-in account, cached on ``flask.g``."""
    if "current_account" not in g:
        uid = session.get("account_uid")
        g.current_account = db.session.get(Account, uid) if uid else None
    return g.current_account


def login_required(f):
    """Decorator that answers 401 when no account is signed in."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_account():
            return jsonify({"error": "ログインが必要です。"}), 401
        return f(*args, **kwargs)

    return decorated


def role_required(*roles: str):
    """Decorator that checks the signed-in account's profile role."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            account = current_account()
            if not account:
                return jsonify({"error": "ログインが必要です。"}), 401
            profile = db.session.get(UserProfile, account.uid)
            if not profile or profile.role not in roles:
                return jsonify({"error": "この操作を行う権限がありません。"}), 403
            return f(*args, **kwargs)

        return decorated

    return decorator


def ensure_admin_account(email: str = "admin@localhost") -> None:
    """Create a default admin account if no admin profile exists."""
    if UserProfile.query.filter_by(role="admin").count():
        return
    from services.accounts import materialize_profile

    account = Account.query.filter_by(email=email).first()
    if account:
        materialize_profile(account, "admin", display_name="Administrator")
        db.session.commit()
        return
    password = secrets.token_urlsafe(12)
    account = create_account(email, password)
    materialize_profile(account, "admin", display_name="Administrator")
    db.session.commit()
    # Print to stdout only, never log credentials to persistent log files
    print(
        f"Created default admin account {email}. Initial password: {password} "
        "(change immediately after first login)"
    )

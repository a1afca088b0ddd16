"""Shared Flask extension instances, bound to the app in ``create_app``."""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

db = SQLAlchemy()

# JSON endpoints opt out per blueprint or route; Stripe signs its own requests
csrf = CSRFProtect()

# In-process counters; the Stripe webhook route is exempt
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["300 per hour"],
    storage_uri="memory://",
)

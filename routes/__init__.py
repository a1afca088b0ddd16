"""Blueprint registration."""

from routes.admin import admin_bp
from routes.auth import auth_bp
from routes.billing import billing_bp
from routes.dashboard import dashboard_bp

ALL_BLUEPRINTS = [
    admin_bp,
    auth_bp,
    billing_bp,
    dashboard_bp,
]


def register_blueprints(app):
    """Register all application blueprints on *app*."""
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

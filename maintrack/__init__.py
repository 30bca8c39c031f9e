"""
Maintenance Work Order Tracker
Flask Application Factory.

Usage:
    from maintrack import create_app
    app = create_app()           # defaults to APP_ENV, then "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from maintrack.config import config
from maintrack.core.errors import ServiceError, ErrorKind
from maintrack.models import db
from maintrack.middleware.jwt_auth import init_jwt_middleware
from maintrack.middleware.logging_config import configure_logging
from maintrack.middleware.rate_limiter import init_rate_limits
from maintrack.middleware.security_headers import init_security_headers
from maintrack.middleware.timing import init_request_timing
from maintrack.utils.errors import api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # login only; storage from RATELIMIT_STORAGE_URI
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_security_headers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from maintrack.models import auth as _auth_models                # noqa: F401
    from maintrack.models import work_order as _work_order_models    # noqa: F401
    from maintrack.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS; migrations handle changes) ──
    os.makedirs(app.instance_path, exist_ok=True)  # default SQLite file lives here
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from maintrack.blueprints.auth_bp import auth_bp
    from maintrack.blueprints.user_bp import user_bp
    from maintrack.blueprints.work_order_bp import work_order_bp
    from maintrack.blueprints.finding_bp import finding_bp
    from maintrack.blueprints.action_bp import action_bp
    from maintrack.blueprints.notification_bp import notification_bp
    from maintrack.blueprints.health_bp import health_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(work_order_bp)
    app.register_blueprint(finding_bp)
    app.register_blueprint(action_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-superadmin")
    @click.option("--username", default=None, help="Defaults to SUPERADMIN_USERNAME.")
    @click.option("--password", default=None, help="Defaults to SUPERADMIN_PASSWORD.")
    def seed_superadmin_cmd(username, password):
        """Create (or reset) the bootstrap superadmin account."""
        from maintrack.services.user_service import seed_superadmin
        username = username or app.config["SUPERADMIN_USERNAME"]
        password = password or app.config.get("SUPERADMIN_PASSWORD")
        if not password:
            raise click.UsageError("Provide --password or set SUPERADMIN_PASSWORD")
        user = seed_superadmin(username, password)
        click.echo(f"Superadmin '{user.username}' ready (id={user.id}).")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return api_error(ServiceError(ErrorKind.NOT_FOUND, "Not found", {"path": request.path}))
        return e

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(ServiceError(ErrorKind.VALIDATION, "Method not allowed"), status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(ServiceError(ErrorKind.VALIDATION, "Request body too large"), status=413)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(
            ServiceError(ErrorKind.VALIDATION, "Too many requests", {"retry_after": e.description}),
            status=429,
        )

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(ServiceError(ErrorKind.INTERNAL, "Internal server error"))

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app

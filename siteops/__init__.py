"""
SiteOps Backend
Flask Application Factory.

Usage:
    from siteops import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from siteops.config import config
from siteops.middleware.jwt_auth import init_jwt_middleware
from siteops.middleware.logging_config import configure_logging
from siteops.middleware.rate_limiter import init_rate_limits
from siteops.middleware.tenant_context import init_tenant_context
from siteops.middleware.timing import init_request_timing
from siteops.models import db

logger = logging.getLogger(__name__)


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
    default_limits=[],                     # limits are applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    settings = config[config_name]
    settings.check()
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(settings)
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Middleware: timing → JWT → tenant ────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.content_length and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from siteops.models import auth as _auth_models              # noqa: F401
    from siteops.models import core as _core_models              # noqa: F401
    from siteops.models import stock as _stock_models            # noqa: F401
    from siteops.models import proposals as _proposal_models     # noqa: F401
    from siteops.models import rams as _rams_models              # noqa: F401
    from siteops.models import toolbox as _toolbox_models        # noqa: F401
    from siteops.models import scheduling as _scheduling_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from siteops.blueprints.admin_bp import admin_bp
    from siteops.blueprints.core_bp import core_bp
    from siteops.blueprints.health_bp import health_bp
    from siteops.blueprints.my_toolbox_bp import my_toolbox_bp
    from siteops.blueprints.proposals_bp import proposals_bp
    from siteops.blueprints.purchasing_bp import purchasing_bp
    from siteops.blueprints.rams_bp import rams_bp
    from siteops.blueprints.scheduler_bp import scheduler_bp
    from siteops.blueprints.stock_bp import stock_bp
    from siteops.blueprints.stock_orders_bp import stock_orders_bp
    from siteops.blueprints.toolbox_bp import toolbox_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(core_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(stock_orders_bp)
    app.register_blueprint(purchasing_bp)
    app.register_blueprint(proposals_bp)
    app.register_blueprint(rams_bp)
    app.register_blueprint(toolbox_bp)
    app.register_blueprint(my_toolbox_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(admin_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": e.description}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("siteops.services.scheduled_jobs")  # registers @register_job handlers
    from siteops.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    _register_cli(app)
    return app


def _register_cli(app):
    from siteops.models.auth import User
    from siteops.services import jwt_service, permission_service
    from siteops.services.scheduler_service import SchedulerService

    @app.cli.command("seed-permissions")
    def seed_permissions_cmd():
        """Create the permission catalogue and the system roles."""
        result = permission_service.seed_permissions()
        click.echo(f"Permissions created: {result['permissions_created']}, "
                   f"roles created: {result['roles_created']}")

    @app.cli.command("run-job")
    @click.argument("name")
    @click.option("--force", is_flag=True, help="Run even if the job is disabled.")
    def run_job_cmd(name, force):
        """Run one scheduled job now (meant for cron)."""
        result = SchedulerService.run_job(name, force=force)
        if result is None:
            raise click.ClickException(f"Unknown job '{name}'")
        click.echo(f"{name}: {result['status']} in {result['duration_ms']}ms")
        if result["error"]:
            raise click.ClickException(result["error"])

    @app.cli.command("issue-token")
    @click.argument("email")
    @click.option("--tenant-id", type=int, required=True)
    @click.option("--expires-in", type=int, default=None, help="Lifetime in seconds.")
    def issue_token_cmd(email, tenant_id, expires_in):
        """Print an access token for an existing user."""
        user = User.query.filter_by(tenant_id=tenant_id, email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f"No user {email} in tenant {tenant_id}")
        click.echo(jwt_service.token_for_user(user, expires_in=expires_in))

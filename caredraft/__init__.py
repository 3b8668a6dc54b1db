"""
CareDraft Proposal Workflow Service
Flask Application Factory.

Usage:
    from caredraft import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import importlib
import json
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from caredraft.config import config
from caredraft.middleware.logging_config import configure_logging
from caredraft.middleware.rate_limiter import init_rate_limits
from caredraft.middleware.request_context import init_request_context
from caredraft.models import db

logger = logging.getLogger(__name__)

# Every model module, so create_all and Alembic autogenerate see all tables
MODEL_MODULES = (
    "caredraft.models.auth",
    "caredraft.models.proposal",
    "caredraft.models.workflow",
    "caredraft.models.notification",
    "caredraft.models.scheduling",
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE rules unless foreign keys are switched on per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are attached per blueprint in init_rate_limits
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def create_app(config_name=None):
    """Build the workflow service app for ``config_name`` (development / testing / production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    app.config.setdefault("MAX_CONTENT_LENGTH", 256 * 1024)

    configure_logging(app)
    _init_extensions(app)
    init_request_context(app)
    _guard_json_bodies(app)

    for module in MODEL_MODULES:
        importlib.import_module(module)
    if not app.config.get("TESTING"):
        _create_tables(app)

    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    # Importing the job module fills the scheduler registry
    importlib.import_module("caredraft.services.scheduled_jobs")
    from caredraft.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app


# ── Factory steps ────────────────────────────────────────────────────────

def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _guard_json_bodies(app):
    @app.before_request
    def _require_json():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415, description="Content-Type must be application/json")


def _create_tables(app):
    # Local convenience; deployed databases are managed by `flask db upgrade`
    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            app.logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from caredraft.blueprints.health_bp import health_bp
    from caredraft.blueprints.notification_bp import notification_bp
    from caredraft.blueprints.proposal_workflow_bp import proposal_workflow_bp

    for bp in (health_bp, notification_bp, proposal_workflow_bp):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("process-deadlines")
    @click.option("--organization-id", default=None, help="Only process this organization's proposals.")
    def process_deadlines_cmd(organization_id):
        """Run the deadline processor once and print the report."""
        from caredraft.services.deadline_processor import DeadlineProcessor

        processor = DeadlineProcessor(budget_ms=app.config.get("DEADLINE_PROPOSAL_BUDGET_MS"))
        report = processor.process_all(processor.engine.proposals.list_active(organization_id))
        click.echo(json.dumps(report.to_dict(), indent=2))
        if report.errors:
            raise SystemExit(1)

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered scheduled job by name and record the run."""
        from caredraft.services.scheduler_service import SchedulerService

        result = SchedulerService.run_job(job_name)
        click.echo(json.dumps(result, indent=2, default=str))
        if result["status"] in ("failed", "error"):
            raise SystemExit(1)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_BAD_REQUEST"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description, "code": "ERR_BAD_REQUEST"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s: %s", request.path, e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

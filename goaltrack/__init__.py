"""
Goal Tracking Platform
Flask Application Factory.

Usage:
    from goaltrack import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS

from goaltrack.config import config
from goaltrack.core.exceptions import DomainError
from goaltrack.middleware.logging_config import configure_logging
from goaltrack.middleware.timing import init_request_timing
from goaltrack.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
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
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # ── Import all models so metadata is complete ────────────────────────
    from goaltrack.models import team as _team_models                  # noqa: F401
    from goaltrack.models import goal as _goal_models                  # noqa: F401
    from goaltrack.models import verification as _verification_models  # noqa: F401
    from goaltrack.models import audit as _audit_models                # noqa: F401

    # Dev SQLite file lives under instance/
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from goaltrack.blueprints.goals_bp import goals_bp
    from goaltrack.blueprints.action_plans_bp import action_plans_bp
    from goaltrack.blueprints.verification_bp import verification_bp
    from goaltrack.blueprints.insights_bp import insights_bp
    from goaltrack.blueprints.health_bp import health_bp

    app.register_blueprint(goals_bp)
    app.register_blueprint(action_plans_bp)
    app.register_blueprint(verification_bp)
    app.register_blueprint(insights_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-verification-templates")
    def seed_verification_templates_cmd():
        """Seed the default verification rubric templates."""
        from goaltrack.services.rubric import seed_default_templates
        count = seed_default_templates()
        db.session.commit()
        logger.info("Seeded %s new verification templates.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(DomainError)
    def domain_error(exc):
        from goaltrack.utils.errors import api_domain_error
        db.session.rollback()
        return api_domain_error(exc)

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app

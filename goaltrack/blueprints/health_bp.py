"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — database round-trip plus seeded-template check
    GET /api/v1/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from goaltrack.models import db
from goaltrack.models.verification import VerificationTemplate

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def live():
    """Liveness check. Only the database decides the status code."""
    checks = {}
    healthy = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        }
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        healthy = False
        logger.error("Health check: database failed: %s", exc)

    if healthy:
        active = VerificationTemplate.query.filter_by(is_active=True).count()
        # No templates is a setup gap, not an outage
        checks["verification_templates"] = {
            "status": "ok" if active else "empty",
            "active": active,
        }

    checks["app"] = {"testing": current_app.testing}

    body = {"status": "ok" if healthy else "degraded", "checks": checks}
    return jsonify(body), 200 if healthy else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe, always 200 once the app is serving."""
    return jsonify({"status": "ok"}), 200

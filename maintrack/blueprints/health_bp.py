"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — liveness with database round-trip
    GET /api/v1/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from maintrack.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
def live():
    """Liveness check with database status."""
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        database = {"status": "ok", "latency_ms": round(db_ms, 1)}
        overall = "ok"
    except SQLAlchemyError as exc:
        db.session.rollback()
        database = {"status": "error"}
        overall = "degraded"
        logger.error("Health check — database failed: %s", exc)

    status_code = 200 if overall == "ok" else 503
    return jsonify({"status": overall, "app": "maintrack", "checks": {"database": database}}), status_code

"""
Health probes. No token required.

    GET /api/v1/health        service name and registered job count
    GET /api/v1/health/ready  200 once the app has booted
    GET /api/v1/health/live   database round-trip, 503 when it fails
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from siteops.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    scheduler = current_app.extensions.get("scheduler")
    return jsonify({
        "status": "ok",
        "service": "siteops",
        "jobs_registered": len(scheduler.registered_job_names()) if scheduler else 0,
    })


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


@health_bp.route("/live", methods=["GET"])
def live():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness probe: database unreachable: %s", exc)
        return jsonify({"status": "degraded", "checks": {"database": {"status": "error"}}}), 503

    latency = round((time.perf_counter() - started) * 1000, 1)
    return jsonify({"status": "healthy", "checks": {"database": {"status": "ok", "latency_ms": latency}}})

"""
Request timing middleware.

Every response carries ``X-Request-ID`` (echoed from the caller when
present) and ``X-Request-Duration-Ms``. API calls are logged once on the
way out; health probes are not logged at all.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

HEALTH_PREFIX = "/api/v1/health"
SLOW_REQUEST_MS = 1000


def _log_level(status_code, duration_ms):
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Install the before/after request hooks."""

    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"
        if request.path.startswith(HEALTH_PREFIX):
            return response

        logger.log(
            _log_level(response.status_code, elapsed),
            "%s %s -> %d in %.0fms",
            request.method, request.path, response.status_code, elapsed,
            extra={
                "request_id": g.request_id,
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round(elapsed, 1),
                "tenant_id": g.get("jwt_tenant_id"),
                "user_id": g.get("jwt_user_id"),
            },
        )
        return response

"""
Scheduler blueprint: inspect, trigger and pause background jobs.

Endpoints:
    GET   /api/v1/scheduler/jobs
    GET   /api/v1/scheduler/jobs/<name>
    POST  /api/v1/scheduler/jobs/<name>/run       {force?}
    PATCH /api/v1/scheduler/jobs/<name>/toggle    {enabled}

Jobs run across every tenant, so all routes need Core.Admin.
"""

import logging

from flask import Blueprint, jsonify

from siteops.blueprints import request_data
from siteops.middleware.permission_required import require_permission
from siteops.services.scheduler_service import SchedulerService
from siteops.utils.errors import E, api_error, register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")
register_error_handlers(scheduler_bp)


@scheduler_bp.route("/jobs", methods=["GET"])
@require_permission("Core.Admin")
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
@require_permission("Core.Admin")
def get_job_status(job_name):
    status = SchedulerService.get_job_status(job_name)
    if status is None:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(status)


@scheduler_bp.route("/jobs/<job_name>/run", methods=["POST"])
@require_permission("Core.Admin")
def run_job(job_name):
    """Run a job now. Disabled jobs are skipped unless ``force`` is set."""
    result = SchedulerService.run_job(job_name, force=bool(request_data().get("force")))
    if result is None:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result)


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
@require_permission("Core.Admin")
def toggle_job(job_name):
    enabled = request_data().get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")

    result = SchedulerService.toggle_job(job_name, enabled)
    if result is None:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Job %s %s", job_name, "enabled" if enabled else "disabled")
    return jsonify(result)

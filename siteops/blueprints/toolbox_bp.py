"""
Toolbox talks blueprint: talk library, settings, schedules and the
manager view of scheduled talks.

Endpoints:
    TALKS        /api/v1/toolbox/talks                          GET, POST
                 /api/v1/toolbox/talks/<id>                     GET, PUT, DELETE
    SETTINGS     /api/v1/toolbox/settings                       GET, PUT
    SCHEDULES    /api/v1/toolbox/schedules                      GET, POST
                 /api/v1/toolbox/schedules/<id>                 GET, PUT, DELETE
                 /api/v1/toolbox/schedules/<id>/cancel          POST
                 /api/v1/toolbox/schedules/<id>/process         POST
    SCHEDULED    /api/v1/toolbox/scheduled-talks                GET
                 /api/v1/toolbox/scheduled-talks/<id>           GET
                 /api/v1/toolbox/scheduled-talks/<id>/cancel    POST
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, query_flag, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import scheduled_talk_service, toolbox_schedule_service, toolbox_talk_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

toolbox_bp = Blueprint("toolbox", __name__, url_prefix="/api/v1/toolbox")
register_error_handlers(toolbox_bp)


def _commit(payload):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload)


def _deleted():
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ═══════════════════════════════════════════════════════════════════════════
#  TALK LIBRARY
# ═══════════════════════════════════════════════════════════════════════════

@toolbox_bp.route("/talks", methods=["GET"])
@require_permission("ToolboxTalks.View")
def list_talks():
    q = toolbox_talk_service.list_talks(
        current_tenant_id(),
        search=request.args.get("search"),
        category=request.args.get("category"),
        active_only=query_flag("active_only"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [t.to_dict(include_content=False) for t in items], "total": total})


@toolbox_bp.route("/talks/<int:talk_id>", methods=["GET"])
@require_permission("ToolboxTalks.View")
def get_talk(talk_id):
    return jsonify(toolbox_talk_service.get_talk(current_tenant_id(), talk_id).to_dict())


@toolbox_bp.route("/talks", methods=["POST"])
@require_permission("ToolboxTalks.Create")
def create_talk():
    talk = toolbox_talk_service.create_talk(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(talk.to_dict(), url_for("toolbox.get_talk", talk_id=talk.id))


@toolbox_bp.route("/talks/<int:talk_id>", methods=["PUT"])
@require_permission("ToolboxTalks.Edit")
def update_talk(talk_id):
    talk = toolbox_talk_service.update_talk(current_tenant_id(), talk_id, request_data())
    return _commit(talk.to_dict())


@toolbox_bp.route("/talks/<int:talk_id>", methods=["DELETE"])
@require_permission("ToolboxTalks.Delete")
def delete_talk(talk_id):
    toolbox_talk_service.delete_talk(current_tenant_id(), talk_id)
    return _deleted()


# ═══════════════════════════════════════════════════════════════════════════
#  SETTINGS
# ═══════════════════════════════════════════════════════════════════════════

@toolbox_bp.route("/settings", methods=["GET"])
@require_permission("ToolboxTalks.View")
def get_settings():
    # First read creates the row with defaults.
    return _commit(toolbox_talk_service.get_settings(current_tenant_id()).to_dict())


@toolbox_bp.route("/settings", methods=["PUT"])
@require_permission("ToolboxTalks.Admin")
def update_settings():
    settings = toolbox_talk_service.update_settings(current_tenant_id(), request_data())
    return _commit(settings.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULES
# ═══════════════════════════════════════════════════════════════════════════

@toolbox_bp.route("/schedules", methods=["GET"])
@require_permission("ToolboxTalks.View")
def list_schedules():
    q = toolbox_schedule_service.list_schedules(
        current_tenant_id(),
        status=request.args.get("status"),
        talk_id=request.args.get("toolbox_talk_id", type=int),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [s.to_dict() for s in items], "total": total})


@toolbox_bp.route("/schedules/<int:schedule_id>", methods=["GET"])
@require_permission("ToolboxTalks.View")
def get_schedule(schedule_id):
    schedule = toolbox_schedule_service.get_schedule(current_tenant_id(), schedule_id)
    return jsonify(schedule.to_dict(include_assignments=True))


@toolbox_bp.route("/schedules", methods=["POST"])
@require_permission("ToolboxTalks.Schedule")
def create_schedule():
    schedule = toolbox_schedule_service.create_schedule(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(
        schedule.to_dict(include_assignments=True),
        url_for("toolbox.get_schedule", schedule_id=schedule.id),
    )


@toolbox_bp.route("/schedules/<int:schedule_id>", methods=["PUT"])
@require_permission("ToolboxTalks.Schedule")
def update_schedule(schedule_id):
    schedule = toolbox_schedule_service.update_schedule(current_tenant_id(), schedule_id, request_data())
    return _commit(schedule.to_dict(include_assignments=True))


@toolbox_bp.route("/schedules/<int:schedule_id>", methods=["DELETE"])
@require_permission("ToolboxTalks.Schedule")
def delete_schedule(schedule_id):
    toolbox_schedule_service.delete_schedule(current_tenant_id(), schedule_id)
    return _deleted()


@toolbox_bp.route("/schedules/<int:schedule_id>/cancel", methods=["POST"])
@require_permission("ToolboxTalks.Schedule")
def cancel_schedule(schedule_id):
    schedule = toolbox_schedule_service.cancel_schedule(current_tenant_id(), schedule_id)
    return _commit(schedule.to_dict())


@toolbox_bp.route("/schedules/<int:schedule_id>/process", methods=["POST"])
@require_permission("ToolboxTalks.Schedule")
def process_schedule(schedule_id):
    """Run a schedule now, without waiting for its next_run_date."""
    result = toolbox_schedule_service.process_schedule(current_tenant_id(), schedule_id)
    return _commit(result)


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED TALKS (manager view)
# ═══════════════════════════════════════════════════════════════════════════

@toolbox_bp.route("/scheduled-talks", methods=["GET"])
@require_permission("ToolboxTalks.ViewReports")
def list_scheduled_talks():
    q = scheduled_talk_service.list_talks(
        current_tenant_id(),
        employee_id=request.args.get("employee_id", type=int),
        status=request.args.get("status"),
        schedule_id=request.args.get("schedule_id", type=int),
        talk_id=request.args.get("toolbox_talk_id", type=int),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@toolbox_bp.route("/scheduled-talks/<int:scheduled_talk_id>", methods=["GET"])
@require_permission("ToolboxTalks.ViewReports")
def get_scheduled_talk(scheduled_talk_id):
    talk = scheduled_talk_service.get_talk(current_tenant_id(), scheduled_talk_id)
    return jsonify(talk.to_dict(include_progress=True))


@toolbox_bp.route("/scheduled-talks/<int:scheduled_talk_id>/cancel", methods=["POST"])
@require_permission("ToolboxTalks.Schedule")
def cancel_scheduled_talk(scheduled_talk_id):
    talk = scheduled_talk_service.cancel_talk(current_tenant_id(), scheduled_talk_id)
    return _commit(talk.to_dict())

"""
My toolbox talks: the employee's own assigned talks.

The caller is resolved to their Employee record; talks belonging to
anyone else read as 404.

Endpoints:
    GET  /api/v1/my/toolbox-talks
    GET  /api/v1/my/toolbox-talks/<id>
    POST /api/v1/my/toolbox-talks/<id>/sections/<section_id>/read   {time_spent_seconds?}
    POST /api/v1/my/toolbox-talks/<id>/video-progress               {watch_percent}
    POST /api/v1/my/toolbox-talks/<id>/quiz                         {answers: {question_id: answer}}
    POST /api/v1/my/toolbox-talks/<id>/complete                     {signature_data, signed_by_name}
"""

import logging

from flask import Blueprint, g, jsonify, request

from siteops.blueprints import paginate_query, request_data
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import scheduled_talk_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

my_toolbox_bp = Blueprint("my_toolbox", __name__, url_prefix="/api/v1/my/toolbox-talks")
register_error_handlers(my_toolbox_bp)


def _employee_view(talk):
    """Scheduled talk plus its content, with quiz answers hidden."""
    d = talk.to_dict(include_progress=True)
    d["talk"] = talk.talk.to_dict(include_answers=False)
    return d


def _commit(talk, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_employee_view(talk)), status


@my_toolbox_bp.route("", methods=["GET"])
def list_my_talks():
    q = scheduled_talk_service.my_talks(current_tenant_id(), g.jwt_user_id, status=request.args.get("status"))
    items, total = paginate_query(q)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@my_toolbox_bp.route("/<int:scheduled_talk_id>", methods=["GET"])
def get_my_talk(scheduled_talk_id):
    talk = scheduled_talk_service.get_my_talk(current_tenant_id(), g.jwt_user_id, scheduled_talk_id)
    return jsonify(_employee_view(talk))


@my_toolbox_bp.route("/<int:scheduled_talk_id>/sections/<int:section_id>/read", methods=["POST"])
def mark_section_read(scheduled_talk_id, section_id):
    talk = scheduled_talk_service.mark_section_read(
        current_tenant_id(), g.jwt_user_id, scheduled_talk_id, section_id,
        time_spent_seconds=request_data().get("time_spent_seconds", 0),
    )
    return _commit(talk)


@my_toolbox_bp.route("/<int:scheduled_talk_id>/video-progress", methods=["POST"])
def update_video_progress(scheduled_talk_id):
    talk = scheduled_talk_service.update_video_progress(
        current_tenant_id(), g.jwt_user_id, scheduled_talk_id, request_data().get("watch_percent"),
    )
    return _commit(talk)


@my_toolbox_bp.route("/<int:scheduled_talk_id>/quiz", methods=["POST"])
def submit_quiz(scheduled_talk_id):
    attempt = scheduled_talk_service.submit_quiz(
        current_tenant_id(), g.jwt_user_id, scheduled_talk_id, request_data().get("answers") or {},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(attempt.to_dict()), 201


@my_toolbox_bp.route("/<int:scheduled_talk_id>/complete", methods=["POST"])
def complete_talk(scheduled_talk_id):
    talk = scheduled_talk_service.complete_talk(
        current_tenant_id(), g.jwt_user_id, scheduled_talk_id, request_data(),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return _commit(talk)

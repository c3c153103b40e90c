"""
RAMS blueprint: risk assessment & method statement documents.

Endpoints:
    /api/v1/rams                                  GET, POST
    /api/v1/rams/<id>                             GET, PUT, DELETE
    /api/v1/rams/<id>/risks                       POST
    /api/v1/rams/<id>/risks/<rid>                 PUT, DELETE
    /api/v1/rams/<id>/steps                       POST
    /api/v1/rams/<id>/steps/<sid>                 PUT, DELETE
    /api/v1/rams/<id>/submit                      POST
    /api/v1/rams/<id>/approve                     POST   {comments?}
    /api/v1/rams/<id>/reject                      POST   {comments}
    /api/v1/rams/<id>/archive                     POST
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import rams_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

rams_bp = Blueprint("rams", __name__, url_prefix="/api/v1/rams")
register_error_handlers(rams_bp)


def _respond(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), status


@rams_bp.route("", methods=["GET"])
@require_permission("Rams.View")
def list_documents():
    q = rams_service.list_documents(
        current_tenant_id(),
        status=request.args.get("status"),
        site_id=request.args.get("site_id", type=int),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [d.to_dict(include_children=False) for d in items], "total": total})


@rams_bp.route("/<int:document_id>", methods=["GET"])
@require_permission("Rams.View")
def get_document(document_id):
    return jsonify(rams_service.get_document(current_tenant_id(), document_id).to_dict())


@rams_bp.route("", methods=["POST"])
@require_permission("Rams.Create")
def create_document():
    doc = rams_service.create_document(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(doc.to_dict(), url_for("rams.get_document", document_id=doc.id))


@rams_bp.route("/<int:document_id>", methods=["PUT"])
@require_permission("Rams.Edit")
def update_document(document_id):
    doc = rams_service.update_document(current_tenant_id(), document_id, request_data())
    return _respond(doc.to_dict())


@rams_bp.route("/<int:document_id>", methods=["DELETE"])
@require_permission("Rams.Delete")
def delete_document(document_id):
    rams_service.delete_document(current_tenant_id(), document_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ── Risk assessments ─────────────────────────────────────────────────────────

@rams_bp.route("/<int:document_id>/risks", methods=["POST"])
@require_permission("Rams.Edit")
def add_risk(document_id):
    risk = rams_service.add_risk(current_tenant_id(), document_id, request_data())
    return _respond(risk.to_dict(), 201)


@rams_bp.route("/<int:document_id>/risks/<int:risk_id>", methods=["PUT"])
@require_permission("Rams.Edit")
def update_risk(document_id, risk_id):
    risk = rams_service.update_risk(current_tenant_id(), document_id, risk_id, request_data())
    return _respond(risk.to_dict())


@rams_bp.route("/<int:document_id>/risks/<int:risk_id>", methods=["DELETE"])
@require_permission("Rams.Edit")
def delete_risk(document_id, risk_id):
    rams_service.delete_risk(current_tenant_id(), document_id, risk_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ── Method steps ─────────────────────────────────────────────────────────────

@rams_bp.route("/<int:document_id>/steps", methods=["POST"])
@require_permission("Rams.Edit")
def add_step(document_id):
    step = rams_service.add_step(current_tenant_id(), document_id, request_data())
    return _respond(step.to_dict(), 201)


@rams_bp.route("/<int:document_id>/steps/<int:step_id>", methods=["PUT"])
@require_permission("Rams.Edit")
def update_step(document_id, step_id):
    step = rams_service.update_step(current_tenant_id(), document_id, step_id, request_data())
    return _respond(step.to_dict())


@rams_bp.route("/<int:document_id>/steps/<int:step_id>", methods=["DELETE"])
@require_permission("Rams.Edit")
def delete_step(document_id, step_id):
    rams_service.delete_step(current_tenant_id(), document_id, step_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ── Workflow ─────────────────────────────────────────────────────────────────

@rams_bp.route("/<int:document_id>/submit", methods=["POST"])
@require_permission("Rams.Submit")
def submit_document(document_id):
    return _respond(rams_service.submit_document(current_tenant_id(), document_id).to_dict())


@rams_bp.route("/<int:document_id>/approve", methods=["POST"])
@require_permission("Rams.Approve")
def approve_document(document_id):
    doc = rams_service.approve_document(
        current_tenant_id(), document_id, current_user_name(), request_data().get("comments"),
    )
    return _respond(doc.to_dict())


@rams_bp.route("/<int:document_id>/reject", methods=["POST"])
@require_permission("Rams.Approve")
def reject_document(document_id):
    doc = rams_service.reject_document(
        current_tenant_id(), document_id, current_user_name(), request_data().get("comments"),
    )
    return _respond(doc.to_dict())


@rams_bp.route("/<int:document_id>/archive", methods=["POST"])
@require_permission("Rams.Admin")
def archive_document(document_id):
    return _respond(rams_service.archive_document(current_tenant_id(), document_id).to_dict())

"""
Proposals blueprint: client quotes, their sections, line items and workflow.

Endpoints:
    /api/v1/proposals                                      GET, POST
    /api/v1/proposals/<id>                                 GET, PUT, DELETE
    /api/v1/proposals/<id>/sections                        POST
    /api/v1/proposals/<id>/sections/<sid>                  PUT, DELETE
    /api/v1/proposals/<id>/sections/<sid>/items            POST
    /api/v1/proposals/<id>/items/<iid>                     PUT, DELETE
    /api/v1/proposals/<id>/submit                          POST
    /api/v1/proposals/<id>/review                          POST
    /api/v1/proposals/<id>/approve                         POST
    /api/v1/proposals/<id>/reject                          POST   {reason}
    /api/v1/proposals/<id>/win                             POST
    /api/v1/proposals/<id>/lose                            POST   {reason}
    /api/v1/proposals/<id>/cancel                          POST
    /api/v1/proposals/<id>/revisions                       GET, POST

Cost and margin figures are stripped unless the caller holds
Proposals.ViewCostings.
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, request_data
from siteops.middleware.permission_required import current_user_can, require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import proposal_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

proposals_bp = Blueprint("proposals", __name__, url_prefix="/api/v1/proposals")
register_error_handlers(proposals_bp)


def _proposal_dict(proposal, include_sections=True):
    return proposal.to_dict(
        include_sections=include_sections,
        include_costings=current_user_can("Proposals.ViewCostings"),
    )


def _respond(proposal):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_proposal_dict(proposal))


@proposals_bp.route("", methods=["GET"])
@require_permission("Proposals.View")
def list_proposals():
    q = proposal_service.list_proposals(
        current_tenant_id(),
        status=request.args.get("status"),
        company_id=request.args.get("company_id", type=int),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [_proposal_dict(p, include_sections=False) for p in items], "total": total})


@proposals_bp.route("/<int:proposal_id>", methods=["GET"])
@require_permission("Proposals.View")
def get_proposal(proposal_id):
    return jsonify(_proposal_dict(proposal_service.get_proposal(current_tenant_id(), proposal_id)))


@proposals_bp.route("", methods=["POST"])
@require_permission("Proposals.Create")
def create_proposal():
    proposal = proposal_service.create_proposal(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(_proposal_dict(proposal), url_for("proposals.get_proposal", proposal_id=proposal.id))


@proposals_bp.route("/<int:proposal_id>", methods=["PUT"])
@require_permission("Proposals.Edit")
def update_proposal(proposal_id):
    return _respond(proposal_service.update_proposal(current_tenant_id(), proposal_id, request_data()))


@proposals_bp.route("/<int:proposal_id>", methods=["DELETE"])
@require_permission("Proposals.Delete")
def delete_proposal(proposal_id):
    proposal_service.delete_proposal(current_tenant_id(), proposal_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ── Sections & line items ────────────────────────────────────────────────────
# Each mutation returns the whole proposal so the client sees new totals.

@proposals_bp.route("/<int:proposal_id>/sections", methods=["POST"])
@require_permission("Proposals.Edit")
def add_section(proposal_id):
    proposal_service.add_section(current_tenant_id(), proposal_id, request_data())
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/sections/<int:section_id>", methods=["PUT"])
@require_permission("Proposals.Edit")
def update_section(proposal_id, section_id):
    proposal_service.update_section(current_tenant_id(), proposal_id, section_id, request_data())
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/sections/<int:section_id>", methods=["DELETE"])
@require_permission("Proposals.Edit")
def delete_section(proposal_id, section_id):
    proposal_service.delete_section(current_tenant_id(), proposal_id, section_id)
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/sections/<int:section_id>/items", methods=["POST"])
@require_permission("Proposals.Edit")
def add_line_item(proposal_id, section_id):
    proposal_service.add_line_item(current_tenant_id(), proposal_id, section_id, request_data())
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/items/<int:item_id>", methods=["PUT"])
@require_permission("Proposals.Edit")
def update_line_item(proposal_id, item_id):
    proposal_service.update_line_item(current_tenant_id(), proposal_id, item_id, request_data())
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/items/<int:item_id>", methods=["DELETE"])
@require_permission("Proposals.Edit")
def delete_line_item(proposal_id, item_id):
    proposal_service.delete_line_item(current_tenant_id(), proposal_id, item_id)
    return _respond(proposal_service.get_proposal(current_tenant_id(), proposal_id))


# ── Workflow ─────────────────────────────────────────────────────────────────

@proposals_bp.route("/<int:proposal_id>/submit", methods=["POST"])
@require_permission("Proposals.Submit")
def submit_proposal(proposal_id):
    notes = request_data().get("notes")
    return _respond(proposal_service.submit_proposal(current_tenant_id(), proposal_id, notes))


@proposals_bp.route("/<int:proposal_id>/review", methods=["POST"])
@require_permission("Proposals.Approve")
def start_review(proposal_id):
    return _respond(proposal_service.start_review(current_tenant_id(), proposal_id))


@proposals_bp.route("/<int:proposal_id>/approve", methods=["POST"])
@require_permission("Proposals.Approve")
def approve_proposal(proposal_id):
    notes = request_data().get("notes")
    return _respond(proposal_service.approve_proposal(
        current_tenant_id(), proposal_id, current_user_name(), notes,
    ))


@proposals_bp.route("/<int:proposal_id>/reject", methods=["POST"])
@require_permission("Proposals.Approve")
def reject_proposal(proposal_id):
    reason = request_data().get("reason")
    return _respond(proposal_service.reject_proposal(
        current_tenant_id(), proposal_id, current_user_name(), reason,
    ))


@proposals_bp.route("/<int:proposal_id>/win", methods=["POST"])
@require_permission("Proposals.Edit")
def mark_won(proposal_id):
    data = request_data()
    return _respond(proposal_service.mark_won(
        current_tenant_id(), proposal_id, reason=data.get("reason"), won_date=data.get("won_date"),
    ))


@proposals_bp.route("/<int:proposal_id>/lose", methods=["POST"])
@require_permission("Proposals.Edit")
def mark_lost(proposal_id):
    data = request_data()
    return _respond(proposal_service.mark_lost(
        current_tenant_id(), proposal_id, data.get("reason"), lost_date=data.get("lost_date"),
    ))


@proposals_bp.route("/<int:proposal_id>/cancel", methods=["POST"])
@require_permission("Proposals.Edit")
def cancel_proposal(proposal_id):
    return _respond(proposal_service.cancel_proposal(current_tenant_id(), proposal_id, current_user_name()))


@proposals_bp.route("/<int:proposal_id>/revisions", methods=["GET"])
@require_permission("Proposals.View")
def list_revisions(proposal_id):
    revisions = proposal_service.list_revisions(current_tenant_id(), proposal_id)
    return jsonify({
        "items": [_proposal_dict(p, include_sections=False) for p in revisions],
        "total": len(revisions),
    })


@proposals_bp.route("/<int:proposal_id>/revisions", methods=["POST"])
@require_permission("Proposals.Create")
def create_revision(proposal_id):
    revision = proposal_service.create_revision(
        current_tenant_id(), proposal_id, current_user_name(), request_data().get("notes"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return created(_proposal_dict(revision), url_for("proposals.get_proposal", proposal_id=revision.id))

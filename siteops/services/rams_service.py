"""RAMS service: risk assessment & method statement documents.

Transaction policy: functions flush(), the route handler commits.

    Draft → PendingReview → Approved → Archived
                 └→ Rejected → PendingReview (resubmit)

Risks and method steps can only change while the document is Draft or
Rejected.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from siteops.core.exceptions import ConflictError, InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.core import Employee, Site
from siteops.models.proposals import Proposal
from siteops.models.rams import (
    EDITABLE_STATUSES,
    RAMS_APPROVED,
    RAMS_ARCHIVED,
    RAMS_DRAFT,
    RAMS_PENDING_REVIEW,
    RAMS_REJECTED,
    MethodStep,
    RamsDocument,
    RiskAssessment,
    validate_rams_transition,
)
from siteops.utils.helpers import apply_fields, get_tenant_record, require_fields, to_int

logger = logging.getLogger(__name__)

DOCUMENT_FIELDS = (
    "project_name", "project_reference", "project_type", "client_name", "site_address",
    "area_of_activity", "proposed_start_date", "proposed_end_date", "safety_officer_id",
    "method_statement_body", "proposal_id", "site_id",
)
RISK_FIELDS = (
    "task_activity", "location_area", "hazard_identified", "who_at_risk",
    "initial_likelihood", "initial_severity", "control_measures", "relevant_legislation",
    "reference_sops", "residual_likelihood", "residual_severity", "sort_order",
)
RISK_SCORES = ("initial_likelihood", "initial_severity", "residual_likelihood", "residual_severity")
STEP_FIELDS = (
    "step_title", "detailed_procedure", "linked_risk_assessment_id",
    "required_permits", "requires_signoff",
)


def get_document(tenant_id, document_id):
    return get_tenant_record(RamsDocument, document_id, tenant_id, label="RAMS document")


def list_documents(tenant_id, status=None, site_id=None, search=None):
    q = RamsDocument.active_for_tenant(tenant_id)
    if status:
        q = q.filter(RamsDocument.status == status)
    if site_id:
        q = q.filter(RamsDocument.site_id == site_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            RamsDocument.project_name.ilike(like),
            RamsDocument.project_reference.ilike(like),
            RamsDocument.client_name.ilike(like),
        ))
    return q.order_by(RamsDocument.created_at.desc(), RamsDocument.id.desc())


def _require_editable(doc):
    if doc.status not in EDITABLE_STATUSES:
        raise ValidationError(
            f"RAMS document {doc.project_reference} cannot be edited in status {doc.status}",
        )


def _check_reference(tenant_id, reference, exclude_id=None):
    q = RamsDocument.active_for_tenant(tenant_id).filter(RamsDocument.project_reference == reference)
    if exclude_id is not None:
        q = q.filter(RamsDocument.id != exclude_id)
    if q.first():
        raise ConflictError("RamsDocument", "project_reference", reference)


def _check_refs(tenant_id, data):
    if data.get("safety_officer_id") is not None:
        get_tenant_record(Employee, data["safety_officer_id"], tenant_id, label="Safety officer")
    if data.get("site_id") is not None:
        get_tenant_record(Site, data["site_id"], tenant_id)
    if data.get("proposal_id") is not None:
        get_tenant_record(Proposal, data["proposal_id"], tenant_id)


def _check_dates(doc):
    if doc.proposed_start_date and doc.proposed_end_date and doc.proposed_end_date < doc.proposed_start_date:
        raise ValidationError("proposed_end_date cannot be before proposed_start_date")


def create_document(tenant_id, data, user=None):
    require_fields(data, "project_name", "project_reference")
    _check_reference(tenant_id, data["project_reference"].strip())
    _check_refs(tenant_id, data)
    doc = RamsDocument(tenant_id=tenant_id, status=RAMS_DRAFT, created_by=user)
    apply_fields(doc, data, DOCUMENT_FIELDS, dates=("proposed_start_date", "proposed_end_date"))
    _check_dates(doc)
    db.session.add(doc)
    db.session.flush()
    logger.info("RAMS %s created", doc.project_reference, extra={"tenant_id": tenant_id})
    return doc


def update_document(tenant_id, document_id, data):
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    if data.get("project_reference"):
        _check_reference(tenant_id, data["project_reference"].strip(), doc.id)
    _check_refs(tenant_id, data)
    apply_fields(doc, data, DOCUMENT_FIELDS, dates=("proposed_start_date", "proposed_end_date"))
    _check_dates(doc)
    db.session.flush()
    return doc


def delete_document(tenant_id, document_id):
    doc = get_document(tenant_id, document_id)
    if doc.status != RAMS_DRAFT:
        raise ValidationError(f"Only Draft RAMS documents can be deleted (status: {doc.status})")
    doc.soft_delete()
    db.session.flush()


# ── Risk assessments ─────────────────────────────────────────────────────────


def _validate_scores(risk):
    bad = {}
    for field in RISK_SCORES:
        value = getattr(risk, field)
        if value is None or not 1 <= value <= 5:
            bad[field] = "must be between 1 and 5"
    if bad:
        raise ValidationError("Likelihood and severity must be between 1 and 5", details=bad)


def _get_risk(doc, risk_id):
    for risk in doc.risk_assessments:
        if risk.id == risk_id:
            return risk
    raise ValidationError(f"Risk assessment {risk_id} does not belong to this document")


def add_risk(tenant_id, document_id, data):
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    require_fields(data, "task_activity", "hazard_identified")
    risk = RiskAssessment(sort_order=len(doc.risk_assessments))
    apply_fields(risk, data, RISK_FIELDS, ints=RISK_SCORES + ("sort_order",))
    _validate_scores(risk)
    doc.risk_assessments.append(risk)
    db.session.flush()
    return risk


def update_risk(tenant_id, document_id, risk_id, data):
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    risk = _get_risk(doc, risk_id)
    apply_fields(risk, data, RISK_FIELDS, ints=RISK_SCORES + ("sort_order",))
    _validate_scores(risk)
    db.session.flush()
    return risk


def delete_risk(tenant_id, document_id, risk_id):
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    risk = _get_risk(doc, risk_id)
    for step in doc.method_steps:
        if step.linked_risk_assessment_id == risk.id:
            step.linked_risk_assessment_id = None
    doc.risk_assessments.remove(risk)
    db.session.flush()


# ── Method steps ─────────────────────────────────────────────────────────────


def _get_step(doc, step_id):
    for step in doc.method_steps:
        if step.id == step_id:
            return step
    raise ValidationError(f"Method step {step_id} does not belong to this document")


def _check_linked_risk(doc, data):
    linked = data.get("linked_risk_assessment_id")
    if linked is not None:
        _get_risk(doc, to_int(linked, "linked_risk_assessment_id"))


def add_step(tenant_id, document_id, data):
    """Append a method step; it always takes the next step number."""
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    require_fields(data, "step_title")
    _check_linked_risk(doc, data)
    next_number = max((s.step_number for s in doc.method_steps), default=0) + 1
    step = MethodStep(step_number=next_number)
    apply_fields(step, data, STEP_FIELDS, ints=("linked_risk_assessment_id",))
    doc.method_steps.append(step)
    db.session.flush()
    return step


def update_step(tenant_id, document_id, step_id, data):
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    step = _get_step(doc, step_id)
    _check_linked_risk(doc, data)
    apply_fields(step, data, STEP_FIELDS, ints=("linked_risk_assessment_id",))
    db.session.flush()
    return step


def delete_step(tenant_id, document_id, step_id):
    """Remove a step and close the gap in the numbering."""
    doc = get_document(tenant_id, document_id)
    _require_editable(doc)
    step = _get_step(doc, step_id)
    doc.method_steps.remove(step)
    for number, remaining in enumerate(sorted(doc.method_steps, key=lambda s: s.step_number), start=1):
        remaining.step_number = number
    db.session.flush()


# ── Workflow ─────────────────────────────────────────────────────────────────


def _transition(doc, new_status):
    old = doc.status
    if not validate_rams_transition(old, new_status):
        raise InvalidTransitionError("RamsDocument", old, new_status)
    doc.status = new_status
    logger.info("RAMS %s: %s → %s", doc.project_reference, old, new_status,
                extra={"tenant_id": doc.tenant_id})


def submit_document(tenant_id, document_id):
    doc = get_document(tenant_id, document_id)
    if not validate_rams_transition(doc.status, RAMS_PENDING_REVIEW):
        raise InvalidTransitionError("RamsDocument", doc.status, RAMS_PENDING_REVIEW)
    if not doc.risk_assessments:
        raise ValidationError("At least one risk assessment is required before submission")
    if not doc.method_steps:
        raise ValidationError("At least one method step is required before submission")
    _transition(doc, RAMS_PENDING_REVIEW)
    doc.date_submitted = datetime.now(timezone.utc)
    db.session.flush()
    return doc


def approve_document(tenant_id, document_id, reviewer, comments=None):
    doc = get_document(tenant_id, document_id)
    _transition(doc, RAMS_APPROVED)
    doc.reviewed_by = reviewer
    doc.approved_by = reviewer
    doc.date_approved = datetime.now(timezone.utc)
    if comments:
        doc.approval_comments = comments
    db.session.flush()
    return doc


def reject_document(tenant_id, document_id, reviewer, comments):
    if not comments or not str(comments).strip():
        raise ValidationError("Rejection comments are required", details={"comments": "required"})
    doc = get_document(tenant_id, document_id)
    _transition(doc, RAMS_REJECTED)
    doc.reviewed_by = reviewer
    doc.approval_comments = str(comments).strip()
    db.session.flush()
    return doc


def archive_document(tenant_id, document_id):
    doc = get_document(tenant_id, document_id)
    _transition(doc, RAMS_ARCHIVED)
    db.session.flush()
    return doc

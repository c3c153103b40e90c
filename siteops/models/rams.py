"""
RAMS Models: Risk Assessment and Method Statement documents.

RamsDocument
  ├── RiskAssessment   (hazard, initial L×S, controls, residual L×S)
  └── MethodStep       (numbered procedure, optionally linked to a risk)
"""

from siteops.models import db
from siteops.models.base import TenantModel, iso
from siteops.models.soft_delete import SoftDeleteMixin

RAMS_DRAFT = "Draft"
RAMS_PENDING_REVIEW = "PendingReview"
RAMS_APPROVED = "Approved"
RAMS_REJECTED = "Rejected"
RAMS_ARCHIVED = "Archived"

RAMS_TRANSITIONS = {
    RAMS_DRAFT:          [RAMS_PENDING_REVIEW],
    RAMS_PENDING_REVIEW: [RAMS_APPROVED, RAMS_REJECTED],
    RAMS_APPROVED:       [RAMS_ARCHIVED],
    RAMS_REJECTED:       [RAMS_PENDING_REVIEW],
    RAMS_ARCHIVED:       [],
}

EDITABLE_STATUSES = frozenset({RAMS_DRAFT, RAMS_REJECTED})

RISK_LOW = "Low"
RISK_MEDIUM = "Medium"
RISK_HIGH = "High"


def validate_rams_transition(old_status, new_status):
    """Return True if RamsDocument status transition is valid."""
    return new_status in RAMS_TRANSITIONS.get(old_status, [])


def risk_level(rating):
    """Map a 1..25 likelihood×severity rating onto Low / Medium / High."""
    if rating <= 4:
        return RISK_LOW
    if rating <= 12:
        return RISK_MEDIUM
    return RISK_HIGH


class RamsDocument(SoftDeleteMixin, TenantModel):
    __tablename__ = "rams_documents"

    id = db.Column(db.Integer, primary_key=True)
    project_name = db.Column(db.String(200), nullable=False)
    project_reference = db.Column(db.String(50), nullable=False)
    project_type = db.Column(db.String(50))
    client_name = db.Column(db.String(200))
    site_address = db.Column(db.Text)
    area_of_activity = db.Column(db.String(200))
    proposed_start_date = db.Column(db.Date)
    proposed_end_date = db.Column(db.Date)
    safety_officer_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True)
    method_statement_body = db.Column(db.Text)
    proposal_id = db.Column(db.Integer, db.ForeignKey("proposals.id"), nullable=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)
    status = db.Column(db.String(30), nullable=False, default=RAMS_DRAFT, index=True)

    date_submitted = db.Column(db.DateTime)
    reviewed_by = db.Column(db.String(150))
    approved_by = db.Column(db.String(150))
    date_approved = db.Column(db.DateTime)
    approval_comments = db.Column(db.Text)

    risk_assessments = db.relationship(
        "RiskAssessment", back_populates="document", cascade="all, delete-orphan",
        order_by="RiskAssessment.sort_order",
    )
    method_steps = db.relationship(
        "MethodStep", back_populates="document", cascade="all, delete-orphan",
        order_by="MethodStep.step_number",
    )

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "project_name": self.project_name,
            "project_reference": self.project_reference,
            "project_type": self.project_type,
            "client_name": self.client_name,
            "site_address": self.site_address,
            "area_of_activity": self.area_of_activity,
            "proposed_start_date": iso(self.proposed_start_date),
            "proposed_end_date": iso(self.proposed_end_date),
            "safety_officer_id": self.safety_officer_id,
            "method_statement_body": self.method_statement_body,
            "proposal_id": self.proposal_id,
            "site_id": self.site_id,
            "status": self.status,
            "date_submitted": iso(self.date_submitted),
            "reviewed_by": self.reviewed_by,
            "approved_by": self.approved_by,
            "date_approved": iso(self.date_approved),
            "approval_comments": self.approval_comments,
            "risk_assessment_count": len(self.risk_assessments),
            "method_step_count": len(self.method_steps),
            **self._audit_dict(),
        }
        if include_children:
            d["risk_assessments"] = [r.to_dict() for r in self.risk_assessments]
            d["method_steps"] = [s.to_dict() for s in self.method_steps]
        return d


class RiskAssessment(db.Model):
    __tablename__ = "rams_risk_assessments"

    id = db.Column(db.Integer, primary_key=True)
    rams_document_id = db.Column(
        db.Integer, db.ForeignKey("rams_documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    task_activity = db.Column(db.String(300), nullable=False)
    location_area = db.Column(db.String(200))
    hazard_identified = db.Column(db.Text, nullable=False)
    who_at_risk = db.Column(db.String(300))
    initial_likelihood = db.Column(db.Integer, nullable=False)
    initial_severity = db.Column(db.Integer, nullable=False)
    control_measures = db.Column(db.Text)
    relevant_legislation = db.Column(db.Text)
    reference_sops = db.Column(db.Text)
    residual_likelihood = db.Column(db.Integer, nullable=False)
    residual_severity = db.Column(db.Integer, nullable=False)
    sort_order = db.Column(db.Integer, default=0)

    document = db.relationship("RamsDocument", back_populates="risk_assessments")

    @property
    def initial_risk_rating(self):
        return self.initial_likelihood * self.initial_severity

    @property
    def residual_risk_rating(self):
        return self.residual_likelihood * self.residual_severity

    def to_dict(self):
        return {
            "id": self.id,
            "rams_document_id": self.rams_document_id,
            "task_activity": self.task_activity,
            "location_area": self.location_area,
            "hazard_identified": self.hazard_identified,
            "who_at_risk": self.who_at_risk,
            "initial_likelihood": self.initial_likelihood,
            "initial_severity": self.initial_severity,
            "initial_risk_rating": self.initial_risk_rating,
            "initial_risk_level": risk_level(self.initial_risk_rating),
            "control_measures": self.control_measures,
            "relevant_legislation": self.relevant_legislation,
            "reference_sops": self.reference_sops,
            "residual_likelihood": self.residual_likelihood,
            "residual_severity": self.residual_severity,
            "residual_risk_rating": self.residual_risk_rating,
            "residual_risk_level": risk_level(self.residual_risk_rating),
            "sort_order": self.sort_order,
        }


class MethodStep(db.Model):
    __tablename__ = "rams_method_steps"

    id = db.Column(db.Integer, primary_key=True)
    rams_document_id = db.Column(
        db.Integer, db.ForeignKey("rams_documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False)
    step_title = db.Column(db.String(200), nullable=False)
    detailed_procedure = db.Column(db.Text)
    linked_risk_assessment_id = db.Column(
        db.Integer, db.ForeignKey("rams_risk_assessments.id", ondelete="SET NULL"), nullable=True,
    )
    required_permits = db.Column(db.String(300))
    requires_signoff = db.Column(db.Boolean, default=False)

    document = db.relationship("RamsDocument", back_populates="method_steps")

    def to_dict(self):
        return {
            "id": self.id,
            "rams_document_id": self.rams_document_id,
            "step_number": self.step_number,
            "step_title": self.step_title,
            "detailed_procedure": self.detailed_procedure,
            "linked_risk_assessment_id": self.linked_risk_assessment_id,
            "required_permits": self.required_permits,
            "requires_signoff": self.requires_signoff,
        }

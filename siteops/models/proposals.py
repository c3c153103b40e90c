"""
Proposal Models: quotes sent to clients.

A Proposal owns Sections, which own LineItems. Totals are denormalised
onto each level by ``proposal_service.recalculate`` whenever a line
changes, so list views can sort by grand_total without joins.

Revisions share a root: ``parent_proposal_id`` always points at the
first version, and ``version`` increases across the chain.
"""

from siteops.models import db
from siteops.models.base import TenantModel, iso, money
from siteops.models.soft_delete import SoftDeleteMixin

PROPOSAL_DRAFT = "Draft"
PROPOSAL_SUBMITTED = "Submitted"
PROPOSAL_UNDER_REVIEW = "UnderReview"
PROPOSAL_APPROVED = "Approved"
PROPOSAL_REJECTED = "Rejected"
PROPOSAL_WON = "Won"
PROPOSAL_LOST = "Lost"
PROPOSAL_EXPIRED = "Expired"
PROPOSAL_CANCELLED = "Cancelled"

PROPOSAL_TRANSITIONS = {
    PROPOSAL_DRAFT:        [PROPOSAL_SUBMITTED, PROPOSAL_CANCELLED],
    PROPOSAL_SUBMITTED:    [PROPOSAL_UNDER_REVIEW, PROPOSAL_APPROVED, PROPOSAL_REJECTED, PROPOSAL_CANCELLED],
    PROPOSAL_UNDER_REVIEW: [PROPOSAL_APPROVED, PROPOSAL_REJECTED, PROPOSAL_CANCELLED],
    PROPOSAL_APPROVED:     [PROPOSAL_WON, PROPOSAL_LOST, PROPOSAL_CANCELLED],
    PROPOSAL_REJECTED:     [PROPOSAL_DRAFT],
    PROPOSAL_WON:          [],
    PROPOSAL_LOST:         [PROPOSAL_DRAFT],
    PROPOSAL_EXPIRED:      [PROPOSAL_DRAFT],
    PROPOSAL_CANCELLED:    [],
}

REVISABLE_STATUSES = frozenset({PROPOSAL_REJECTED, PROPOSAL_LOST, PROPOSAL_EXPIRED, PROPOSAL_APPROVED})
EXPIRABLE_STATUSES = (PROPOSAL_DRAFT, PROPOSAL_SUBMITTED, PROPOSAL_UNDER_REVIEW, PROPOSAL_APPROVED)


def validate_proposal_transition(old_status, new_status):
    """Return True if Proposal status transition is valid."""
    return new_status in PROPOSAL_TRANSITIONS.get(old_status, [])


class Proposal(SoftDeleteMixin, TenantModel):
    __tablename__ = "proposals"

    id = db.Column(db.Integer, primary_key=True)
    proposal_number = db.Column(db.String(30), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    parent_proposal_id = db.Column(db.Integer, db.ForeignKey("proposals.id"), nullable=True)

    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    company_name = db.Column(db.String(200))
    primary_contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id"), nullable=True)
    primary_contact_name = db.Column(db.String(200))

    project_name = db.Column(db.String(200), nullable=False)
    project_address = db.Column(db.Text)
    project_description = db.Column(db.Text)

    proposal_date = db.Column(db.Date, nullable=False)
    valid_until_date = db.Column(db.Date)
    status = db.Column(db.String(30), nullable=False, default=PROPOSAL_DRAFT, index=True)

    currency = db.Column(db.String(3), default="EUR")
    vat_rate = db.Column(db.Numeric(5, 2), default=23)
    discount_percent = db.Column(db.Numeric(5, 2), default=0)

    subtotal = db.Column(db.Numeric(18, 2), default=0)
    discount_amount = db.Column(db.Numeric(18, 2), default=0)
    net_total = db.Column(db.Numeric(18, 2), default=0)
    vat_amount = db.Column(db.Numeric(18, 2), default=0)
    grand_total = db.Column(db.Numeric(18, 2), default=0)
    total_cost = db.Column(db.Numeric(18, 2), default=0)
    total_margin = db.Column(db.Numeric(18, 2), default=0)
    margin_percent = db.Column(db.Numeric(7, 2), default=0)

    payment_terms = db.Column(db.Text)
    terms_and_conditions = db.Column(db.Text)
    notes = db.Column(db.Text)

    submitted_date = db.Column(db.DateTime)
    approved_date = db.Column(db.DateTime)
    approved_by = db.Column(db.String(150))
    won_date = db.Column(db.Date)
    lost_date = db.Column(db.Date)
    won_lost_reason = db.Column(db.Text)

    sections = db.relationship(
        "ProposalSection", back_populates="proposal", cascade="all, delete-orphan",
        order_by="ProposalSection.sort_order",
    )

    def to_dict(self, include_sections=True, include_costings=True):
        d = {
            "id": self.id,
            "proposal_number": self.proposal_number,
            "version": self.version,
            "parent_proposal_id": self.parent_proposal_id,
            "company_id": self.company_id,
            "company_name": self.company_name,
            "primary_contact_id": self.primary_contact_id,
            "primary_contact_name": self.primary_contact_name,
            "project_name": self.project_name,
            "project_address": self.project_address,
            "project_description": self.project_description,
            "proposal_date": iso(self.proposal_date),
            "valid_until_date": iso(self.valid_until_date),
            "status": self.status,
            "currency": self.currency,
            "vat_rate": money(self.vat_rate),
            "discount_percent": money(self.discount_percent),
            "subtotal": money(self.subtotal),
            "discount_amount": money(self.discount_amount),
            "net_total": money(self.net_total),
            "vat_amount": money(self.vat_amount),
            "grand_total": money(self.grand_total),
            "payment_terms": self.payment_terms,
            "terms_and_conditions": self.terms_and_conditions,
            "notes": self.notes,
            "submitted_date": iso(self.submitted_date),
            "approved_date": iso(self.approved_date),
            "approved_by": self.approved_by,
            "won_date": iso(self.won_date),
            "lost_date": iso(self.lost_date),
            "won_lost_reason": self.won_lost_reason,
            **self._audit_dict(),
        }
        if include_costings:
            d["total_cost"] = money(self.total_cost)
            d["total_margin"] = money(self.total_margin)
            d["margin_percent"] = money(self.margin_percent)
        if include_sections:
            d["sections"] = [s.to_dict(include_costings=include_costings) for s in self.sections]
        return d


class ProposalSection(db.Model):
    __tablename__ = "proposal_sections"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    section_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    sort_order = db.Column(db.Integer, default=0)
    section_total = db.Column(db.Numeric(18, 2), default=0)
    section_cost = db.Column(db.Numeric(18, 2), default=0)
    section_margin = db.Column(db.Numeric(18, 2), default=0)

    proposal = db.relationship("Proposal", back_populates="sections")
    line_items = db.relationship(
        "ProposalLineItem", back_populates="section", cascade="all, delete-orphan",
        order_by="ProposalLineItem.sort_order",
    )

    def to_dict(self, include_costings=True):
        d = {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "section_name": self.section_name,
            "description": self.description,
            "sort_order": self.sort_order,
            "section_total": money(self.section_total),
            "line_items": [li.to_dict(include_costings=include_costings) for li in self.line_items],
        }
        if include_costings:
            d["section_cost"] = money(self.section_cost)
            d["section_margin"] = money(self.section_margin)
        return d


class ProposalLineItem(db.Model):
    __tablename__ = "proposal_line_items"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer, db.ForeignKey("proposal_sections.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_code = db.Column(db.String(50))
    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Numeric(18, 2), nullable=False, default=1)
    unit = db.Column(db.String(20), default="Each")
    unit_price = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(18, 2), default=0)
    line_cost = db.Column(db.Numeric(18, 2), default=0)
    line_margin = db.Column(db.Numeric(18, 2), default=0)
    margin_percent = db.Column(db.Numeric(7, 2), default=0)
    sort_order = db.Column(db.Integer, default=0)

    section = db.relationship("ProposalSection", back_populates="line_items")

    def to_dict(self, include_costings=True):
        d = {
            "id": self.id,
            "section_id": self.section_id,
            "product_id": self.product_id,
            "product_code": self.product_code,
            "description": self.description,
            "quantity": money(self.quantity),
            "unit": self.unit,
            "unit_price": money(self.unit_price),
            "line_total": money(self.line_total),
            "sort_order": self.sort_order,
        }
        if include_costings:
            d["unit_cost"] = money(self.unit_cost)
            d["line_cost"] = money(self.line_cost)
            d["line_margin"] = money(self.line_margin)
            d["margin_percent"] = money(self.margin_percent)
        return d

"""Proposal service: quotes, pricing roll-up, workflow and revisions.

Transaction policy: functions flush(), the route handler commits.

Pricing (all Decimal, 2 dp, ROUND_HALF_EVEN):
    line     total = qty × price, cost = qty × unit_cost, margin = total − cost
    section  sums of its lines
    proposal subtotal − discount = net; net + VAT = grand total
             total_margin and margin_percent are measured against net
"""
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy import func, or_

from siteops.core.exceptions import InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.core import Company, Contact
from siteops.models.proposals import (
    EXPIRABLE_STATUSES,
    PROPOSAL_APPROVED,
    PROPOSAL_CANCELLED,
    PROPOSAL_DRAFT,
    PROPOSAL_EXPIRED,
    PROPOSAL_LOST,
    PROPOSAL_REJECTED,
    PROPOSAL_SUBMITTED,
    PROPOSAL_UNDER_REVIEW,
    PROPOSAL_WON,
    REVISABLE_STATUSES,
    Proposal,
    ProposalLineItem,
    ProposalSection,
    validate_proposal_transition,
)
from siteops.models.stock import Product
from siteops.utils.helpers import (
    apply_fields,
    get_tenant_record,
    next_yearly_number,
    parse_date_input,
    require_fields,
    to_decimal,
    to_int,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

HEADER_FIELDS = (
    "project_name", "project_address", "project_description", "currency",
    "payment_terms", "terms_and_conditions", "notes",
)


def _round(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)


def _pct(part, whole):
    if not whole or whole <= 0:
        return ZERO
    return _round(part / whole * HUNDRED)


def _note(proposal, text):
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M")
    entry = f"[{stamp}] {text}"
    proposal.notes = f"{proposal.notes}\n{entry}" if proposal.notes else entry


# ── Lookup ───────────────────────────────────────────────────────────────────


def get_proposal(tenant_id, proposal_id):
    return get_tenant_record(Proposal, proposal_id, tenant_id)


def list_proposals(tenant_id, status=None, company_id=None, search=None):
    q = Proposal.active_for_tenant(tenant_id)
    if status:
        q = q.filter(Proposal.status == status)
    if company_id:
        q = q.filter(Proposal.company_id == company_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Proposal.proposal_number.ilike(like),
            Proposal.project_name.ilike(like),
            Proposal.company_name.ilike(like),
        ))
    return q.order_by(Proposal.proposal_date.desc(), Proposal.id.desc())


def list_revisions(tenant_id, proposal_id):
    proposal = get_proposal(tenant_id, proposal_id)
    root_id = proposal.parent_proposal_id or proposal.id
    return (
        Proposal.active_for_tenant(tenant_id)
        .filter(or_(Proposal.id == root_id, Proposal.parent_proposal_id == root_id))
        .order_by(Proposal.version)
        .all()
    )


def _require_draft(proposal):
    if proposal.status != PROPOSAL_DRAFT:
        raise ValidationError(
            f"Proposal {proposal.proposal_number} can only be edited in Draft (status: {proposal.status})",
        )


# ── Calculation ──────────────────────────────────────────────────────────────


def _price_line(item):
    qty = Decimal(item.quantity or 0)
    item.line_total = _round(qty * Decimal(item.unit_price or 0))
    item.line_cost = _round(qty * Decimal(item.unit_cost or 0))
    item.line_margin = item.line_total - item.line_cost
    item.margin_percent = _pct(item.line_margin, item.line_total)


def recalculate(proposal):
    """Re-price every line, then roll totals up to sections and the proposal."""
    subtotal = ZERO
    total_cost = ZERO
    for section in proposal.sections:
        section_total = ZERO
        section_cost = ZERO
        for item in section.line_items:
            _price_line(item)
            section_total += item.line_total
            section_cost += item.line_cost
        section.section_total = section_total
        section.section_cost = section_cost
        section.section_margin = section_total - section_cost
        subtotal += section_total
        total_cost += section_cost

    discount_pct = Decimal(proposal.discount_percent or 0)
    vat_rate = Decimal(proposal.vat_rate or 0)

    proposal.subtotal = subtotal
    proposal.discount_amount = _round(subtotal * discount_pct / HUNDRED)
    net = subtotal - proposal.discount_amount
    proposal.net_total = net
    proposal.vat_amount = _round(net * vat_rate / HUNDRED)
    proposal.grand_total = net + proposal.vat_amount
    proposal.total_cost = total_cost
    proposal.total_margin = net - total_cost
    proposal.margin_percent = _pct(proposal.total_margin, net)
    return proposal


# ── Create / update ──────────────────────────────────────────────────────────


def _apply_company(tenant_id, proposal, data):
    if "company_id" in data:
        company = get_tenant_record(Company, data["company_id"], tenant_id)
        proposal.company_id = company.id
        proposal.company_name = company.company_name
    if "primary_contact_id" in data:
        contact_id = data["primary_contact_id"]
        if contact_id is None:
            proposal.primary_contact_id = None
            proposal.primary_contact_name = None
        else:
            contact = get_tenant_record(Contact, contact_id, tenant_id)
            if contact.company_id != proposal.company_id:
                raise ValidationError("Primary contact does not belong to the proposal's company")
            proposal.primary_contact_id = contact.id
            proposal.primary_contact_name = contact.full_name


def _apply_pricing_settings(proposal, data):
    for field in ("vat_rate", "discount_percent"):
        if field not in data:
            continue
        value = to_decimal(data[field], field, default=ZERO)
        if value < 0 or value > HUNDRED:
            raise ValidationError(f"{field} must be between 0 and 100", details={field: str(value)})
        setattr(proposal, field, value)


def _apply_dates(proposal, data):
    if "proposal_date" in data:
        proposal.proposal_date = parse_date_input(data["proposal_date"], "proposal_date") or date.today()
    if "valid_until_date" in data:
        proposal.valid_until_date = parse_date_input(data["valid_until_date"], "valid_until_date")
    if proposal.valid_until_date and proposal.valid_until_date < proposal.proposal_date:
        raise ValidationError("valid_until_date cannot be before proposal_date")


def create_proposal(tenant_id, data, user=None):
    """Create a Draft proposal (PROP-YYYY-NNNN), optionally with nested sections."""
    require_fields(data, "company_id", "project_name")
    proposal = Proposal(
        tenant_id=tenant_id,
        proposal_number=next_yearly_number(Proposal, Proposal.proposal_number, "PROP", tenant_id),
        version=1,
        status=PROPOSAL_DRAFT,
        proposal_date=date.today(),
        vat_rate=Decimal("23"),
        discount_percent=ZERO,
        created_by=user,
    )
    _apply_company(tenant_id, proposal, data)
    apply_fields(proposal, data, HEADER_FIELDS)
    _apply_pricing_settings(proposal, data)
    _apply_dates(proposal, data)
    db.session.add(proposal)

    for idx, raw in enumerate(data.get("sections") or []):
        _build_section(tenant_id, proposal, raw, default_order=idx)

    recalculate(proposal)
    db.session.flush()
    logger.info("Proposal %s created for %s", proposal.proposal_number, proposal.company_name,
                extra={"tenant_id": tenant_id})
    return proposal


def update_proposal(tenant_id, proposal_id, data):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    _apply_company(tenant_id, proposal, data)
    apply_fields(proposal, data, HEADER_FIELDS)
    _apply_pricing_settings(proposal, data)
    _apply_dates(proposal, data)
    recalculate(proposal)
    db.session.flush()
    return proposal


def delete_proposal(tenant_id, proposal_id):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    proposal.soft_delete()
    db.session.flush()


# ── Sections & line items ────────────────────────────────────────────────────


def _build_section(tenant_id, proposal, raw, default_order=0):
    require_fields(raw, "section_name")
    section = ProposalSection(
        section_name=raw["section_name"].strip(),
        description=raw.get("description"),
        sort_order=to_int(raw.get("sort_order"), "sort_order", default=default_order),
    )
    proposal.sections.append(section)
    for idx, item in enumerate(raw.get("line_items") or []):
        section.line_items.append(_build_line_item(tenant_id, item, default_order=idx))
    return section


def _build_line_item(tenant_id, raw, default_order=0, item=None):
    item = item or ProposalLineItem(sort_order=default_order)
    if raw.get("product_id") is not None:
        product = get_tenant_record(Product, raw["product_id"], tenant_id)
        item.product_id = product.id
        item.product_code = product.product_code
        if not raw.get("description") and not item.description:
            item.description = product.product_name
        if raw.get("unit_price") is None and item.unit_price is None:
            item.unit_price = product.base_rate or ZERO
        if raw.get("unit_cost") is None and item.unit_cost is None:
            item.unit_cost = product.cost_price or ZERO
        if raw.get("unit") is None and item.unit is None:
            item.unit = product.unit_type
    if raw.get("description"):
        item.description = raw["description"].strip()
    if not item.description:
        raise ValidationError("description is required", details={"description": "required"})
    if "quantity" in raw or item.quantity is None:
        qty = to_decimal(raw.get("quantity"), "quantity", default=Decimal("1"))
        if qty <= 0:
            raise ValidationError("quantity must be greater than zero", details={"quantity": str(qty)})
        item.quantity = qty
    for field in ("unit_price", "unit_cost"):
        if field in raw or getattr(item, field) is None:
            value = to_decimal(raw.get(field), field, default=getattr(item, field) or ZERO)
            if value < 0:
                raise ValidationError(f"{field} cannot be negative", details={field: str(value)})
            setattr(item, field, value)
    if raw.get("unit"):
        item.unit = raw["unit"]
    if "sort_order" in raw:
        item.sort_order = to_int(raw["sort_order"], "sort_order", default=0)
    _price_line(item)
    return item


def _get_section(proposal, section_id):
    for section in proposal.sections:
        if section.id == section_id:
            return section
    raise ValidationError(f"Section {section_id} does not belong to proposal {proposal.proposal_number}")


def add_section(tenant_id, proposal_id, data):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    section = _build_section(tenant_id, proposal, data, default_order=len(proposal.sections))
    recalculate(proposal)
    db.session.flush()
    return section


def update_section(tenant_id, proposal_id, section_id, data):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    section = _get_section(proposal, section_id)
    apply_fields(section, data, ("section_name", "description", "sort_order"), ints=("sort_order",))
    db.session.flush()
    return section


def delete_section(tenant_id, proposal_id, section_id):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    proposal.sections.remove(_get_section(proposal, section_id))
    recalculate(proposal)
    db.session.flush()
    return proposal


def add_line_item(tenant_id, proposal_id, section_id, data):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    section = _get_section(proposal, section_id)
    item = _build_line_item(tenant_id, data, default_order=len(section.line_items))
    section.line_items.append(item)
    recalculate(proposal)
    db.session.flush()
    return item


def _get_line_item(proposal, item_id):
    for section in proposal.sections:
        for item in section.line_items:
            if item.id == item_id:
                return section, item
    raise ValidationError(f"Line item {item_id} does not belong to proposal {proposal.proposal_number}")


def update_line_item(tenant_id, proposal_id, item_id, data):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    _, item = _get_line_item(proposal, item_id)
    _build_line_item(tenant_id, data, item=item)
    recalculate(proposal)
    db.session.flush()
    return item


def delete_line_item(tenant_id, proposal_id, item_id):
    proposal = get_proposal(tenant_id, proposal_id)
    _require_draft(proposal)
    section, item = _get_line_item(proposal, item_id)
    section.line_items.remove(item)
    recalculate(proposal)
    db.session.flush()
    return proposal


# ── Workflow ─────────────────────────────────────────────────────────────────


def _transition(proposal, new_status):
    old = proposal.status
    if not validate_proposal_transition(old, new_status):
        raise InvalidTransitionError("Proposal", old, new_status)
    proposal.status = new_status
    logger.info("Proposal %s: %s → %s", proposal.proposal_number, old, new_status,
                extra={"tenant_id": proposal.tenant_id})


def _validate_for_submission(proposal):
    if not proposal.sections:
        raise ValidationError("Proposal must have at least one section")
    empty = [s.section_name for s in proposal.sections if not s.line_items]
    if empty:
        raise ValidationError(
            f"Every section needs at least one line item (empty: {', '.join(empty)})",
            details={"empty_sections": empty},
        )
    if (proposal.grand_total or ZERO) <= 0:
        raise ValidationError("Proposal total must be greater than zero")


def submit_proposal(tenant_id, proposal_id, notes=None):
    proposal = get_proposal(tenant_id, proposal_id)
    if not validate_proposal_transition(proposal.status, PROPOSAL_SUBMITTED):
        raise InvalidTransitionError("Proposal", proposal.status, PROPOSAL_SUBMITTED)
    recalculate(proposal)
    _validate_for_submission(proposal)
    _transition(proposal, PROPOSAL_SUBMITTED)
    proposal.submitted_date = datetime.now(timezone.utc)
    _note(proposal, f"Submitted: {notes}" if notes else "Submitted for approval")
    db.session.flush()
    return proposal


def start_review(tenant_id, proposal_id):
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_UNDER_REVIEW)
    db.session.flush()
    return proposal


def approve_proposal(tenant_id, proposal_id, approver, notes=None):
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_APPROVED)
    proposal.approved_date = datetime.now(timezone.utc)
    proposal.approved_by = approver or "System"
    text = f"Approved by {proposal.approved_by}"
    _note(proposal, f"{text}: {notes}" if notes else text)
    db.session.flush()
    return proposal


def _require_reason(reason):
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required", details={"reason": "required"})
    return str(reason).strip()


def reject_proposal(tenant_id, proposal_id, rejected_by, reason):
    reason = _require_reason(reason)
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_REJECTED)
    proposal.won_lost_reason = reason
    _note(proposal, f"Rejected by {rejected_by or 'System'}: {reason}")
    db.session.flush()
    return proposal


def mark_won(tenant_id, proposal_id, reason=None, won_date=None):
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_WON)
    proposal.won_date = parse_date_input(won_date, "won_date") or date.today()
    proposal.won_lost_reason = reason
    _note(proposal, f"Won: {reason}" if reason else "Marked as Won")
    db.session.flush()
    return proposal


def mark_lost(tenant_id, proposal_id, reason, lost_date=None):
    reason = _require_reason(reason)
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_LOST)
    proposal.lost_date = parse_date_input(lost_date, "lost_date") or date.today()
    proposal.won_lost_reason = reason
    _note(proposal, f"Lost: {reason}")
    db.session.flush()
    return proposal


def cancel_proposal(tenant_id, proposal_id, cancelled_by=None):
    proposal = get_proposal(tenant_id, proposal_id)
    _transition(proposal, PROPOSAL_CANCELLED)
    _note(proposal, f"Cancelled by {cancelled_by or 'System'}")
    db.session.flush()
    return proposal


def create_revision(tenant_id, proposal_id, user=None, notes=None):
    """Copy a Rejected / Lost / Expired / Approved proposal into a new Draft.

    Every revision links to the root of the chain and takes the next
    version number in it. The validity window length is carried over.
    """
    original = get_proposal(tenant_id, proposal_id)
    if original.status not in REVISABLE_STATUSES:
        raise InvalidTransitionError(
            "Proposal", original.status, PROPOSAL_DRAFT,
            message=f"Cannot create revision from status '{original.status}'",
        )

    root_id = original.parent_proposal_id or original.id
    max_version = (
        db.session.query(func.max(Proposal.version))
        .filter(
            Proposal.tenant_id == tenant_id,
            or_(Proposal.id == root_id, Proposal.parent_proposal_id == root_id),
        )
        .scalar()
    ) or original.version

    today = date.today()
    valid_until = None
    if original.valid_until_date and original.proposal_date:
        valid_until = today + timedelta(days=(original.valid_until_date - original.proposal_date).days)

    revision = Proposal(
        tenant_id=tenant_id,
        proposal_number=next_yearly_number(Proposal, Proposal.proposal_number, "PROP", tenant_id),
        version=max_version + 1,
        parent_proposal_id=root_id,
        status=PROPOSAL_DRAFT,
        company_id=original.company_id,
        company_name=original.company_name,
        primary_contact_id=original.primary_contact_id,
        primary_contact_name=original.primary_contact_name,
        project_name=original.project_name,
        project_address=original.project_address,
        project_description=original.project_description,
        proposal_date=today,
        valid_until_date=valid_until,
        currency=original.currency,
        vat_rate=original.vat_rate,
        discount_percent=original.discount_percent,
        payment_terms=original.payment_terms,
        terms_and_conditions=original.terms_and_conditions,
        notes=f"Revision of {original.proposal_number} (v{original.version})" + (f"\n{notes}" if notes else ""),
        created_by=user,
    )
    for section in original.sections:
        copy = ProposalSection(
            section_name=section.section_name,
            description=section.description,
            sort_order=section.sort_order,
        )
        for item in section.line_items:
            copy.line_items.append(ProposalLineItem(
                product_id=item.product_id,
                product_code=item.product_code,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                unit_cost=item.unit_cost,
                sort_order=item.sort_order,
            ))
        revision.sections.append(copy)

    db.session.add(revision)
    recalculate(revision)
    db.session.flush()
    logger.info("Proposal %s revised as %s (v%d)", original.proposal_number,
                revision.proposal_number, revision.version, extra={"tenant_id": tenant_id})
    return revision


def expire_proposals(today=None):
    """Flip proposals past their validity date to Expired, across all tenants."""
    today = today or date.today()
    stale = (
        Proposal.query_active()
        .filter(
            Proposal.status.in_(EXPIRABLE_STATUSES),
            Proposal.valid_until_date.isnot(None),
            Proposal.valid_until_date < today,
        )
        .all()
    )
    for proposal in stale:
        previous = proposal.status
        proposal.status = PROPOSAL_EXPIRED
        _note(proposal, f"Expired (was {previous})")
    db.session.flush()
    if stale:
        logger.info("Expired %d proposals", len(stale))
    return len(stale)

"""Stock order service: the site-requisition state machine.

Transaction policy: functions flush(), the route handler commits.

    Draft → PendingApproval → Approved → AwaitingPick → ReadyForCollection → Collected
                 │                 └──────────────┬───────────────┘
                 └→ Draft (reject)     any pre-Collected state → Cancelled

Stock side effects:
    approve  reserved += qty            (after an available-to-promise check)
    collect  on_hand  -= qty, reserved -= qty, OrderIssue transaction
    cancel   reserved -= qty            (only if the order held a reservation)

Reservation release clamps at zero so a level touched by a manual
adjustment in between can never go negative.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from siteops.core.exceptions import InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.core import Site
from siteops.models.stock import (
    ORDER_APPROVED,
    ORDER_AWAITING_PICK,
    ORDER_CANCELLED,
    ORDER_COLLECTED,
    ORDER_DRAFT,
    ORDER_PENDING_APPROVAL,
    ORDER_READY_FOR_COLLECTION,
    ORDER_STATUSES,
    RESERVING_STATUSES,
    TXN_ORDER_ISSUE,
    Product,
    StockLevel,
    StockLocation,
    StockOrder,
    StockOrderLine,
    validate_order_transition,
)
from siteops.services import stock_service
from siteops.utils.helpers import (
    get_tenant_record,
    next_document_number,
    parse_date_input,
    require_fields,
    to_int,
)

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _transition(order, new_status):
    old = order.status
    if not validate_order_transition(old, new_status):
        raise InvalidTransitionError("StockOrder", old, new_status)
    order.status = new_status
    logger.info(
        "Stock order %s: %s → %s", order.order_number, old, new_status,
        extra={"tenant_id": order.tenant_id, "order_id": order.id},
    )


def get_order(tenant_id, order_id):
    return get_tenant_record(StockOrder, order_id, tenant_id)


def list_orders(tenant_id, status=None, site_id=None, search=None):
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    q = StockOrder.active_for_tenant(tenant_id)
    if status:
        q = q.filter(StockOrder.status == status)
    if site_id:
        q = q.filter(StockOrder.site_id == site_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(StockOrder.order_number.ilike(like) | StockOrder.site_name.ilike(like))
    return q.order_by(StockOrder.order_date.desc(), StockOrder.id.desc())


# ── Create / update ──────────────────────────────────────────────────────────


def _build_lines(tenant_id, order, raw_lines):
    """Replace ``order.lines`` from request data, pricing each at base_rate."""
    if not raw_lines:
        raise ValidationError("At least one order line is required")

    lines = []
    for idx, raw in enumerate(raw_lines):
        qty = to_int(raw.get("quantity", raw.get("quantity_requested")), f"lines[{idx}].quantity")
        if qty is None or qty <= 0:
            raise ValidationError(
                f"lines[{idx}].quantity must be greater than zero",
                details={f"lines[{idx}].quantity": str(qty)},
            )
        product = get_tenant_record(Product, raw.get("product_id"), tenant_id)
        unit_price = product.base_rate or Decimal("0")
        lines.append(StockOrderLine(
            product_id=product.id,
            quantity_requested=qty,
            quantity_issued=0,
            unit_price=unit_price,
            line_total=unit_price * qty,
        ))

    order.lines = lines
    order.order_total = sum((ln.line_total for ln in lines), Decimal("0"))


def create_order(tenant_id, data, user=None):
    """Create a Draft order (SO-YYYYMMDD-NNN) priced from product base rates."""
    require_fields(data, "site_id", "source_location_id")
    site = get_tenant_record(Site, data["site_id"], tenant_id)
    location = get_tenant_record(StockLocation, data["source_location_id"], tenant_id)

    order = StockOrder(
        tenant_id=tenant_id,
        order_number=next_document_number(StockOrder, StockOrder.order_number, "SO", tenant_id),
        site_id=site.id,
        site_name=site.site_name,
        source_location_id=location.id,
        order_date=_now(),
        required_date=parse_date_input(data.get("required_date"), "required_date"),
        status=ORDER_DRAFT,
        requested_by=data.get("requested_by") or user,
        notes=data.get("notes"),
        created_by=user,
    )
    _build_lines(tenant_id, order, data.get("lines"))
    db.session.add(order)
    db.session.flush()
    logger.info(
        "Stock order %s created for site %s (%d lines)",
        order.order_number, site.site_code, len(order.lines),
        extra={"tenant_id": tenant_id, "order_id": order.id},
    )
    return order


def update_order(tenant_id, order_id, data):
    order = get_order(tenant_id, order_id)
    if order.status != ORDER_DRAFT:
        raise ValidationError(f"Only Draft orders can be edited (status: {order.status})")

    if "site_id" in data:
        site = get_tenant_record(Site, data["site_id"], tenant_id)
        order.site_id = site.id
        order.site_name = site.site_name
    if "source_location_id" in data:
        order.source_location_id = get_tenant_record(
            StockLocation, data["source_location_id"], tenant_id,
        ).id
    if "required_date" in data:
        order.required_date = parse_date_input(data["required_date"], "required_date")
    for field in ("notes", "requested_by"):
        if field in data:
            setattr(order, field, data[field])
    if "lines" in data:
        _build_lines(tenant_id, order, data["lines"])
    db.session.flush()
    return order


def delete_order(tenant_id, order_id):
    order = get_order(tenant_id, order_id)
    if order.status not in (ORDER_DRAFT, ORDER_CANCELLED):
        raise ValidationError(f"Only Draft or Cancelled orders can be deleted (status: {order.status})")
    order.soft_delete()
    db.session.flush()


# ── Workflow ─────────────────────────────────────────────────────────────────


def submit_order(tenant_id, order_id):
    order = get_order(tenant_id, order_id)
    if order.status == ORDER_DRAFT and not order.lines:
        raise ValidationError("Cannot submit an order without lines")
    _transition(order, ORDER_PENDING_APPROVAL)
    db.session.flush()
    return order


def _level_for(order, line):
    return StockLevel.query.filter_by(
        tenant_id=order.tenant_id,
        product_id=line.product_id,
        location_id=order.source_location_id,
    ).first()


def approve_order(tenant_id, order_id, approver):
    """PendingApproval → Approved, reserving every line at the source location.

    All lines are checked before any reservation is made, so a shortfall
    on the last line leaves every level untouched.
    """
    order = get_order(tenant_id, order_id)
    if not validate_order_transition(order.status, ORDER_APPROVED):
        raise InvalidTransitionError("StockOrder", order.status, ORDER_APPROVED)

    # Lines for the same product share one level.
    needed: dict[int, int] = {}
    for line in order.lines:
        needed[line.product_id] = needed.get(line.product_id, 0) + line.quantity_requested

    levels = {}
    for line in order.lines:
        if line.product_id in levels:
            continue
        level = _level_for(order, line)
        available = level.quantity_available if level else 0
        requested = needed[line.product_id]
        if level is None or available < requested:
            raise ValidationError(
                f"Insufficient available stock for product {line.product.product_code}. "
                f"Available: {available}, Requested: {requested}",
                details={"product_id": line.product_id, "available": available, "requested": requested},
            )
        levels[line.product_id] = level

    for product_id, level in levels.items():
        level.quantity_reserved += needed[product_id]

    _transition(order, ORDER_APPROVED)
    order.approved_by = approver
    order.approved_date = _now()
    db.session.flush()
    return order


def reject_order(tenant_id, order_id, rejected_by, reason):
    """PendingApproval → Draft with the reason appended to notes."""
    if not reason or not str(reason).strip():
        raise ValidationError("A rejection reason is required", details={"reason": "required"})
    order = get_order(tenant_id, order_id)
    if order.status != ORDER_PENDING_APPROVAL:
        raise InvalidTransitionError("StockOrder", order.status, ORDER_DRAFT)
    _transition(order, ORDER_DRAFT)
    entry = f"Rejected by {rejected_by}: {str(reason).strip()}"
    order.notes = f"{order.notes}\n{entry}" if order.notes else entry
    db.session.flush()
    return order


def mark_awaiting_pick(tenant_id, order_id):
    order = get_order(tenant_id, order_id)
    if order.status != ORDER_APPROVED:
        raise InvalidTransitionError("StockOrder", order.status, ORDER_AWAITING_PICK)
    _transition(order, ORDER_AWAITING_PICK)
    db.session.flush()
    return order


def mark_ready_for_collection(tenant_id, order_id):
    order = get_order(tenant_id, order_id)
    _transition(order, ORDER_READY_FOR_COLLECTION)
    db.session.flush()
    return order


def collect_order(tenant_id, order_id, user=None):
    """Issue the stock: Approved / ReadyForCollection → Collected."""
    order = get_order(tenant_id, order_id)
    if order.status not in (ORDER_APPROVED, ORDER_READY_FOR_COLLECTION):
        raise InvalidTransitionError(
            "StockOrder", order.status, ORDER_COLLECTED,
            message=(
                f"Order {order.order_number} cannot be collected from status {order.status}; "
                "it must be Approved or ReadyForCollection"
            ),
        )

    now = _now()
    for line in order.lines:
        level = _level_for(order, line)
        qty = line.quantity_requested
        if level is None or level.quantity_on_hand < qty:
            on_hand = level.quantity_on_hand if level else 0
            raise ValidationError(
                f"Insufficient stock on hand for product {line.product.product_code}. "
                f"On hand: {on_hand}, Requested: {qty}"
            )
        level.quantity_on_hand -= qty
        level.quantity_reserved = max(0, level.quantity_reserved - qty)
        level.last_movement_date = now
        line.quantity_issued = qty
        stock_service.record_transaction(
            tenant_id, TXN_ORDER_ISSUE, line.product_id, order.source_location_id, -qty,
            reference_type="StockOrder", reference_id=order.id,
            notes=f"Issued via {order.order_number}", user=user,
        )

    _transition(order, ORDER_COLLECTED)
    order.collected_date = now
    db.session.flush()
    return order


def cancel_order(tenant_id, order_id, reason=None, cancelled_by=None):
    """Cancel from any pre-Collected state, releasing a held reservation."""
    order = get_order(tenant_id, order_id)
    held_reservation = order.status in RESERVING_STATUSES
    _transition(order, ORDER_CANCELLED)

    if held_reservation:
        for line in order.lines:
            level = _level_for(order, line)
            if level is not None:
                level.quantity_reserved = max(0, level.quantity_reserved - line.quantity_requested)

    if reason:
        entry = f"Cancelled by {cancelled_by or 'System'}: {reason}"
        order.notes = f"{order.notes}\n{entry}" if order.notes else entry
    db.session.flush()
    return order


# ── Picking docket ───────────────────────────────────────────────────────────


def get_docket(tenant_id, order_id):
    """Order header plus lines sorted by bay code (unbayed last) for picking."""
    order = get_order(tenant_id, order_id)
    rows = []
    for line in order.lines:
        level = _level_for(order, line)
        bay_code = level.bay_location.bay_code if level and level.bay_location else None
        rows.append({
            **line.to_dict(),
            "bay_code": bay_code,
            "unit_type": line.product.unit_type if line.product else None,
            "quantity_on_hand": level.quantity_on_hand if level else 0,
        })
    rows.sort(key=lambda r: (r["bay_code"] is None, r["bay_code"] or "", r["product_code"] or ""))
    return {
        **order.to_dict(include_lines=False),
        "source_location_code": order.source_location.location_code if order.source_location else None,
        "lines": rows,
    }

"""Purchasing service: purchase orders and goods receipts.

Transaction policy: functions flush(), the route handler commits.

PO lifecycle:
    Draft → Confirmed → PartiallyReceived → FullyReceived
    Draft / Confirmed / PartiallyReceived → Cancelled

A goods receipt (GRN) books accepted quantities into stock and, when it
is linked to a PO, rolls received quantities up to the PO lines and then
to the PO status.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from siteops.core.exceptions import InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.stock import (
    PO_CANCELLED,
    PO_CONFIRMED,
    PO_DRAFT,
    PO_FULLY_RECEIVED,
    PO_LINE_CANCELLED,
    PO_LINE_COMPLETE,
    PO_LINE_OPEN,
    PO_LINE_PARTIAL,
    PO_PARTIALLY_RECEIVED,
    TXN_GRN_RECEIPT,
    GoodsReceipt,
    GoodsReceiptLine,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    StockLocation,
    Supplier,
)
from siteops.services import stock_service
from siteops.utils.helpers import (
    get_tenant_record,
    next_document_number,
    parse_date_input,
    require_fields,
    to_decimal,
    to_int,
)

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = (PO_CONFIRMED, PO_PARTIALLY_RECEIVED)


def _now():
    return datetime.now(timezone.utc)


def get_purchase_order(tenant_id, po_id):
    return get_tenant_record(PurchaseOrder, po_id, tenant_id)


def list_purchase_orders(tenant_id, status=None, supplier_id=None, search=None):
    q = PurchaseOrder.active_for_tenant(tenant_id)
    if status:
        q = q.filter(PurchaseOrder.status == status)
    if supplier_id:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    if search:
        q = q.filter(PurchaseOrder.po_number.ilike(f"%{search.strip()}%"))
    return q.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc())


def _build_po_lines(tenant_id, po, raw_lines):
    if not raw_lines:
        raise ValidationError("At least one purchase order line is required")
    lines = []
    for idx, raw in enumerate(raw_lines):
        qty = to_int(raw.get("quantity_ordered", raw.get("quantity")), f"lines[{idx}].quantity_ordered")
        if qty is None or qty <= 0:
            raise ValidationError(f"lines[{idx}].quantity_ordered must be greater than zero")
        product = get_tenant_record(Product, raw.get("product_id"), tenant_id)
        price = to_decimal(raw.get("unit_price"), f"lines[{idx}].unit_price")
        if price is None:
            price = product.cost_price if product.cost_price is not None else (product.base_rate or Decimal("0"))
        if price < 0:
            raise ValidationError(f"lines[{idx}].unit_price cannot be negative")
        lines.append(PurchaseOrderLine(
            product_id=product.id,
            quantity_ordered=qty,
            quantity_received=0,
            unit_price=price,
            line_status=PO_LINE_OPEN,
        ))
    po.lines = lines
    po.total_value = sum((ln.unit_price * ln.quantity_ordered for ln in lines), Decimal("0"))


def create_purchase_order(tenant_id, data, user=None):
    require_fields(data, "supplier_id")
    supplier = get_tenant_record(Supplier, data["supplier_id"], tenant_id)
    po = PurchaseOrder(
        tenant_id=tenant_id,
        po_number=next_document_number(PurchaseOrder, PurchaseOrder.po_number, "PO", tenant_id),
        supplier_id=supplier.id,
        order_date=_now(),
        expected_date=parse_date_input(data.get("expected_date"), "expected_date"),
        status=PO_DRAFT,
        notes=data.get("notes"),
        created_by=user,
    )
    _build_po_lines(tenant_id, po, data.get("lines"))
    db.session.add(po)
    db.session.flush()
    logger.info("Purchase order %s created (%s)", po.po_number, supplier.supplier_code,
                extra={"tenant_id": tenant_id})
    return po


def update_purchase_order(tenant_id, po_id, data):
    po = get_purchase_order(tenant_id, po_id)
    if po.status != PO_DRAFT:
        raise ValidationError(f"Only Draft purchase orders can be edited (status: {po.status})")
    if "supplier_id" in data:
        po.supplier_id = get_tenant_record(Supplier, data["supplier_id"], tenant_id).id
    if "expected_date" in data:
        po.expected_date = parse_date_input(data["expected_date"], "expected_date")
    if "notes" in data:
        po.notes = data["notes"]
    if "lines" in data:
        _build_po_lines(tenant_id, po, data["lines"])
    db.session.flush()
    return po


def delete_purchase_order(tenant_id, po_id):
    po = get_purchase_order(tenant_id, po_id)
    if po.status != PO_DRAFT:
        raise ValidationError(f"Only Draft purchase orders can be deleted (status: {po.status})")
    po.soft_delete()
    db.session.flush()


def confirm_purchase_order(tenant_id, po_id):
    po = get_purchase_order(tenant_id, po_id)
    if po.status != PO_DRAFT:
        raise InvalidTransitionError("PurchaseOrder", po.status, PO_CONFIRMED)
    po.status = PO_CONFIRMED
    db.session.flush()
    logger.info("Purchase order %s confirmed", po.po_number, extra={"tenant_id": tenant_id})
    return po


def cancel_purchase_order(tenant_id, po_id):
    po = get_purchase_order(tenant_id, po_id)
    if po.status in (PO_FULLY_RECEIVED, PO_CANCELLED):
        raise InvalidTransitionError("PurchaseOrder", po.status, PO_CANCELLED)
    for line in po.lines:
        if line.line_status in (PO_LINE_OPEN, PO_LINE_PARTIAL):
            line.line_status = PO_LINE_CANCELLED
    po.status = PO_CANCELLED
    db.session.flush()
    logger.info("Purchase order %s cancelled", po.po_number, extra={"tenant_id": tenant_id})
    return po


# ── Goods receipts ───────────────────────────────────────────────────────────


def list_goods_receipts(tenant_id, supplier_id=None, purchase_order_id=None):
    q = GoodsReceipt.query_for_tenant(tenant_id)
    if supplier_id:
        q = q.filter(GoodsReceipt.supplier_id == supplier_id)
    if purchase_order_id:
        q = q.filter(GoodsReceipt.purchase_order_id == purchase_order_id)
    return q.order_by(GoodsReceipt.receipt_date.desc(), GoodsReceipt.id.desc())


def get_goods_receipt(tenant_id, grn_id):
    return get_tenant_record(GoodsReceipt, grn_id, tenant_id)


def _roll_up_po_status(po):
    statuses = [ln.line_status for ln in po.lines]
    if all(s in (PO_LINE_COMPLETE, PO_LINE_CANCELLED) for s in statuses):
        po.status = PO_FULLY_RECEIVED
    elif any(s in (PO_LINE_PARTIAL, PO_LINE_COMPLETE) for s in statuses):
        po.status = PO_PARTIALLY_RECEIVED


def _open_line_for_product(po, product_id):
    """First PO line for ``product_id`` that still has quantity outstanding."""
    for ln in sorted(po.lines, key=lambda line: line.id):
        if ln.product_id == product_id and ln.line_status in (PO_LINE_OPEN, PO_LINE_PARTIAL):
            return ln
    return None


def create_goods_receipt(tenant_id, data, user=None):
    """Book a delivery into stock (GRN-YYYYMMDD-NNN).

    Per line: on_hand += received − rejected, one GrnReceipt transaction,
    and the linked PO line's received quantity and status move forward.
    Lines that name only a product are matched to the first open PO line
    for that product.
    """
    require_fields(data, "supplier_id", "location_id")
    supplier = get_tenant_record(Supplier, data["supplier_id"], tenant_id)
    location = get_tenant_record(StockLocation, data["location_id"], tenant_id)

    po = None
    if data.get("purchase_order_id"):
        po = get_purchase_order(tenant_id, data["purchase_order_id"])
        if po.status not in RECEIVABLE_STATUSES:
            raise ValidationError(
                f"Purchase order {po.po_number} is {po.status}; "
                "goods can only be received against Confirmed or PartiallyReceived orders"
            )
        if po.supplier_id != supplier.id:
            raise ValidationError("Goods receipt supplier does not match the purchase order supplier")

    raw_lines = data.get("lines") or []
    if not raw_lines:
        raise ValidationError("At least one receipt line is required")

    now = _now()
    grn = GoodsReceipt(
        tenant_id=tenant_id,
        grn_number=next_document_number(GoodsReceipt, GoodsReceipt.grn_number, "GRN", tenant_id),
        supplier_id=supplier.id,
        purchase_order_id=po.id if po else None,
        location_id=location.id,
        receipt_date=now,
        delivery_note_ref=data.get("delivery_note_ref"),
        received_by=data.get("received_by") or user,
        notes=data.get("notes"),
        created_by=user,
    )
    db.session.add(grn)
    db.session.flush()

    po_lines = {ln.id: ln for ln in po.lines} if po else {}
    for idx, raw in enumerate(raw_lines):
        received = to_int(raw.get("quantity_received"), f"lines[{idx}].quantity_received")
        rejected = to_int(raw.get("quantity_rejected"), f"lines[{idx}].quantity_rejected", default=0)
        if received is None or received <= 0:
            raise ValidationError(f"lines[{idx}].quantity_received must be greater than zero")
        if rejected < 0 or rejected > received:
            raise ValidationError(f"lines[{idx}].quantity_rejected must be between 0 and quantity_received")

        po_line = None
        if raw.get("purchase_order_line_id") is not None:
            po_line = po_lines.get(raw["purchase_order_line_id"])
            if po_line is None:
                raise ValidationError(
                    f"lines[{idx}].purchase_order_line_id does not belong to the purchase order",
                )
            product_id = po_line.product_id
        else:
            product_id = get_tenant_record(Product, raw.get("product_id"), tenant_id).id
            if po is not None:
                po_line = _open_line_for_product(po, product_id)

        line = GoodsReceiptLine(
            product_id=product_id,
            purchase_order_line_id=po_line.id if po_line else None,
            quantity_received=received,
            quantity_rejected=rejected,
            rejection_reason=raw.get("rejection_reason"),
            batch_number=raw.get("batch_number"),
        )
        grn.lines.append(line)

        accepted = received - rejected
        level = stock_service.get_or_create_level(tenant_id, product_id, location.id)
        level.quantity_on_hand += accepted
        level.last_movement_date = now
        stock_service.record_transaction(
            tenant_id, TXN_GRN_RECEIPT, product_id, location.id, accepted,
            reference_type="GRN", reference_id=grn.id,
            notes=f"Received via {grn.grn_number}", user=user,
        )

        if po_line is not None:
            po_line.quantity_received += received
            po_line.line_status = (
                PO_LINE_COMPLETE if po_line.quantity_received >= po_line.quantity_ordered else PO_LINE_PARTIAL
            )

    if po is not None:
        _roll_up_po_status(po)

    db.session.flush()
    logger.info(
        "Goods receipt %s booked (%d lines)%s", grn.grn_number, len(grn.lines),
        f" against {po.po_number} → {po.status}" if po else "",
        extra={"tenant_id": tenant_id},
    )
    return grn

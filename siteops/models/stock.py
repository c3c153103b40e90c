"""
Stock Management Models.

Warehouse master data (categories, products, suppliers, locations, bays),
the stock ledger (levels + transactions), internal stock orders that move
stock from a warehouse to a site, and purchasing (purchase orders + goods
receipts).

Status lifecycle (StockOrder):
    Draft → PendingApproval → Approved → AwaitingPick → ReadyForCollection → Collected
    any pre-Collected state → Cancelled; PendingApproval → Draft on reject

Status lifecycle (PurchaseOrder):
    Draft → Confirmed → PartiallyReceived → FullyReceived
    Draft / Confirmed / PartiallyReceived → Cancelled

Status lifecycle (Stocktake):
    Draft → InProgress → Completed
    Draft / InProgress → Cancelled
"""

from siteops.models import db
from siteops.models.base import TenantModel, iso, money
from siteops.models.soft_delete import SoftDeleteMixin


# ── Status constants ─────────────────────────────────────────────────────────

ORDER_DRAFT = "Draft"
ORDER_PENDING_APPROVAL = "PendingApproval"
ORDER_APPROVED = "Approved"
ORDER_AWAITING_PICK = "AwaitingPick"
ORDER_READY_FOR_COLLECTION = "ReadyForCollection"
ORDER_COLLECTED = "Collected"
ORDER_CANCELLED = "Cancelled"

ORDER_STATUSES = (
    ORDER_DRAFT, ORDER_PENDING_APPROVAL, ORDER_APPROVED, ORDER_AWAITING_PICK,
    ORDER_READY_FOR_COLLECTION, ORDER_COLLECTED, ORDER_CANCELLED,
)

ORDER_TRANSITIONS = {
    ORDER_DRAFT:                [ORDER_PENDING_APPROVAL, ORDER_CANCELLED],
    ORDER_PENDING_APPROVAL:     [ORDER_APPROVED, ORDER_DRAFT, ORDER_CANCELLED],
    ORDER_APPROVED:             [ORDER_AWAITING_PICK, ORDER_READY_FOR_COLLECTION,
                                 ORDER_COLLECTED, ORDER_CANCELLED],
    ORDER_AWAITING_PICK:        [ORDER_READY_FOR_COLLECTION, ORDER_CANCELLED],
    ORDER_READY_FOR_COLLECTION: [ORDER_COLLECTED, ORDER_CANCELLED],
    ORDER_COLLECTED:            [],
    ORDER_CANCELLED:            [],
}

# States in which the order holds a reservation against StockLevel.quantity_reserved
RESERVING_STATUSES = frozenset({ORDER_APPROVED, ORDER_AWAITING_PICK, ORDER_READY_FOR_COLLECTION})

PO_DRAFT = "Draft"
PO_CONFIRMED = "Confirmed"
PO_PARTIALLY_RECEIVED = "PartiallyReceived"
PO_FULLY_RECEIVED = "FullyReceived"
PO_CANCELLED = "Cancelled"

PO_LINE_OPEN = "Open"
PO_LINE_PARTIAL = "Partial"
PO_LINE_COMPLETE = "Complete"
PO_LINE_CANCELLED = "Cancelled"

TXN_GRN_RECEIPT = "GrnReceipt"
TXN_ORDER_ISSUE = "OrderIssue"
TXN_ADJUSTMENT = "Adjustment"
TRANSACTION_TYPES = (TXN_GRN_RECEIPT, TXN_ORDER_ISSUE, TXN_ADJUSTMENT)

STOCKTAKE_DRAFT = "Draft"
STOCKTAKE_IN_PROGRESS = "InProgress"
STOCKTAKE_COMPLETED = "Completed"
STOCKTAKE_CANCELLED = "Cancelled"
STOCKTAKE_STATUSES = (STOCKTAKE_DRAFT, STOCKTAKE_IN_PROGRESS, STOCKTAKE_COMPLETED, STOCKTAKE_CANCELLED)

LOCATION_TYPES = ("Warehouse", "SiteStore", "Van")


def validate_order_transition(old_status, new_status):
    """Return True if StockOrder status transition is valid."""
    return new_status in ORDER_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# Master data
# ═════════════════════════════════════════════════════════════════════════════

class Category(SoftDeleteMixin, TenantModel):
    __tablename__ = "stock_categories"

    id = db.Column(db.Integer, primary_key=True)
    category_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    sort_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "category_name": self.category_name,
            "description": self.description,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
        }


class Supplier(SoftDeleteMixin, TenantModel):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)
    supplier_code = db.Column(db.String(50), nullable=False)
    supplier_name = db.Column(db.String(200), nullable=False)
    contact_name = db.Column(db.String(100))
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    payment_terms = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "supplier_code", name="uq_supplier_tenant_code"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "supplier_code": self.supplier_code,
            "supplier_name": self.supplier_name,
            "contact_name": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
        }


class Product(SoftDeleteMixin, TenantModel):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    product_code = db.Column(db.String(50), nullable=False)
    product_name = db.Column(db.String(200), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("stock_categories.id"), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    unit_type = db.Column(db.String(20), default="Each")
    base_rate = db.Column(db.Numeric(18, 2), default=0)
    cost_price = db.Column(db.Numeric(18, 2), nullable=True)
    reorder_level = db.Column(db.Integer, default=0)
    reorder_quantity = db.Column(db.Integer, default=0)
    lead_time_days = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_code", name="uq_product_tenant_code"),
    )

    category = db.relationship("Category")
    supplier = db.relationship("Supplier")

    def to_dict(self, include_costings=True):
        d = {
            "id": self.id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "category_id": self.category_id,
            "category_name": self.category.category_name if self.category else None,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.supplier_name if self.supplier else None,
            "unit_type": self.unit_type,
            "base_rate": money(self.base_rate),
            "reorder_level": self.reorder_level,
            "reorder_quantity": self.reorder_quantity,
            "lead_time_days": self.lead_time_days,
            "is_active": self.is_active,
        }
        if include_costings:
            d["cost_price"] = money(self.cost_price)
        return d


class StockLocation(SoftDeleteMixin, TenantModel):
    __tablename__ = "stock_locations"

    id = db.Column(db.Integer, primary_key=True)
    location_code = db.Column(db.String(50), nullable=False)
    location_name = db.Column(db.String(200), nullable=False)
    location_type = db.Column(db.String(30), default="Warehouse")
    address = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "location_code", name="uq_location_tenant_code"),
    )

    bays = db.relationship("BayLocation", back_populates="location", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "location_code": self.location_code,
            "location_name": self.location_name,
            "location_type": self.location_type,
            "address": self.address,
            "is_active": self.is_active,
        }


class BayLocation(SoftDeleteMixin, TenantModel):
    __tablename__ = "bay_locations"

    id = db.Column(db.Integer, primary_key=True)
    stock_location_id = db.Column(
        db.Integer, db.ForeignKey("stock_locations.id", ondelete="CASCADE"), nullable=False,
    )
    bay_code = db.Column(db.String(30), nullable=False)
    bay_name = db.Column(db.String(100))
    capacity = db.Column(db.Integer)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("stock_location_id", "bay_code", name="uq_bay_location_code"),
    )

    location = db.relationship("StockLocation", back_populates="bays")

    def to_dict(self):
        return {
            "id": self.id,
            "stock_location_id": self.stock_location_id,
            "bay_code": self.bay_code,
            "bay_name": self.bay_name,
            "capacity": self.capacity,
            "is_active": self.is_active,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Stock ledger
# ═════════════════════════════════════════════════════════════════════════════

class StockLevel(TenantModel):
    """On-hand / reserved quantity of one product at one location."""

    __tablename__ = "stock_levels"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    bay_location_id = db.Column(db.Integer, db.ForeignKey("bay_locations.id"), nullable=True)
    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    quantity_reserved = db.Column(db.Integer, nullable=False, default=0)
    quantity_on_order = db.Column(db.Integer, nullable=False, default=0)
    last_movement_date = db.Column(db.DateTime)
    last_count_date = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_level_product_location"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_level_on_hand"),
        db.CheckConstraint("quantity_reserved >= 0", name="ck_stock_level_reserved"),
    )

    product = db.relationship("Product")
    location = db.relationship("StockLocation")
    bay_location = db.relationship("BayLocation")

    @property
    def quantity_available(self):
        return (self.quantity_on_hand or 0) - (self.quantity_reserved or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "product_name": self.product.product_name if self.product else None,
            "location_id": self.location_id,
            "location_code": self.location.location_code if self.location else None,
            "bay_location_id": self.bay_location_id,
            "bay_code": self.bay_location.bay_code if self.bay_location else None,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_reserved": self.quantity_reserved,
            "quantity_available": self.quantity_available,
            "quantity_on_order": self.quantity_on_order,
            "reorder_level": self.product.reorder_level if self.product else None,
            "last_movement_date": iso(self.last_movement_date),
            "last_count_date": iso(self.last_count_date),
        }


class StockTransaction(TenantModel):
    __tablename__ = "stock_transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(30), nullable=False, index=True)
    transaction_date = db.Column(db.DateTime, nullable=False)
    transaction_type = db.Column(db.String(30), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # signed: + receipt, − issue
    reference_type = db.Column(db.String(30))
    reference_id = db.Column(db.Integer)
    notes = db.Column(db.Text)

    product = db.relationship("Product")
    location = db.relationship("StockLocation")

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "transaction_date": iso(self.transaction_date),
            "transaction_type": self.transaction_type,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Stocktakes
# ═════════════════════════════════════════════════════════════════════════════

class Stocktake(SoftDeleteMixin, TenantModel):
    """Physical count of every stocked product at one location."""

    __tablename__ = "stocktakes"

    id = db.Column(db.Integer, primary_key=True)
    stocktake_number = db.Column(db.String(30), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    count_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STOCKTAKE_DRAFT, index=True)
    counted_by = db.Column(db.String(150))
    notes = db.Column(db.Text)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    lines = db.relationship(
        "StocktakeLine", back_populates="stocktake", cascade="all, delete-orphan",
        order_by="StocktakeLine.id",
    )
    location = db.relationship("StockLocation")

    def sorted_lines(self):
        """Walk order: bay code with unbayed lines last, then product code."""
        return sorted(
            self.lines,
            key=lambda ln: (
                ln.bay_code is None,
                ln.bay_code or "",
                ln.product.product_code if ln.product else "",
            ),
        )

    def to_dict(self, include_lines=True):
        d = {
            "id": self.id,
            "stocktake_number": self.stocktake_number,
            "location_id": self.location_id,
            "location_code": self.location.location_code if self.location else None,
            "count_date": iso(self.count_date),
            "status": self.status,
            "counted_by": self.counted_by,
            "notes": self.notes,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "total_lines": len(self.lines),
            "counted_lines": sum(1 for ln in self.lines if ln.counted_quantity is not None),
            "variance_lines": sum(1 for ln in self.lines if ln.variance),
        }
        if include_lines:
            d["lines"] = [ln.to_dict() for ln in self.sorted_lines()]
        return d


class StocktakeLine(db.Model):
    __tablename__ = "stocktake_lines"

    id = db.Column(db.Integer, primary_key=True)
    stocktake_id = db.Column(
        db.Integer, db.ForeignKey("stocktakes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    bay_location_id = db.Column(db.Integer, db.ForeignKey("bay_locations.id"), nullable=True)
    bay_code = db.Column(db.String(30))
    system_quantity = db.Column(db.Integer, nullable=False, default=0)
    counted_quantity = db.Column(db.Integer, nullable=True)  # None until counted
    variance_reason = db.Column(db.String(300))
    adjustment_created = db.Column(db.Boolean, nullable=False, default=False)

    stocktake = db.relationship("Stocktake", back_populates="lines")
    product = db.relationship("Product")

    @property
    def variance(self):
        if self.counted_quantity is None:
            return None
        return self.counted_quantity - self.system_quantity

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "product_name": self.product.product_name if self.product else None,
            "bay_location_id": self.bay_location_id,
            "bay_code": self.bay_code,
            "system_quantity": self.system_quantity,
            "counted_quantity": self.counted_quantity,
            "variance": self.variance,
            "variance_reason": self.variance_reason,
            "adjustment_created": self.adjustment_created,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Stock orders
# ═════════════════════════════════════════════════════════════════════════════

class StockOrder(SoftDeleteMixin, TenantModel):
    __tablename__ = "stock_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(30), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False)
    site_name = db.Column(db.String(200))
    source_location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    order_date = db.Column(db.DateTime, nullable=False)
    required_date = db.Column(db.Date)
    status = db.Column(db.String(30), nullable=False, default=ORDER_DRAFT, index=True)
    order_total = db.Column(db.Numeric(18, 2), default=0)
    requested_by = db.Column(db.String(150))
    approved_by = db.Column(db.String(150))
    approved_date = db.Column(db.DateTime)
    collected_date = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    lines = db.relationship(
        "StockOrderLine", back_populates="order", cascade="all, delete-orphan",
        order_by="StockOrderLine.id",
    )
    site = db.relationship("Site")
    source_location = db.relationship("StockLocation")

    def to_dict(self, include_lines=True):
        d = {
            "id": self.id,
            "order_number": self.order_number,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "source_location_id": self.source_location_id,
            "source_location_name": self.source_location.location_name if self.source_location else None,
            "order_date": iso(self.order_date),
            "required_date": iso(self.required_date),
            "status": self.status,
            "order_total": money(self.order_total),
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "approved_date": iso(self.approved_date),
            "collected_date": iso(self.collected_date),
            "notes": self.notes,
            "line_count": len(self.lines),
            **self._audit_dict(),
        }
        if include_lines:
            d["lines"] = [ln.to_dict() for ln in self.lines]
        return d


class StockOrderLine(db.Model):
    __tablename__ = "stock_order_lines"

    id = db.Column(db.Integer, primary_key=True)
    stock_order_id = db.Column(
        db.Integer, db.ForeignKey("stock_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity_requested = db.Column(db.Integer, nullable=False)
    quantity_issued = db.Column(db.Integer, nullable=False, default=0)
    unit_price = db.Column(db.Numeric(18, 2), default=0)
    line_total = db.Column(db.Numeric(18, 2), default=0)

    order = db.relationship("StockOrder", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "product_name": self.product.product_name if self.product else None,
            "quantity_requested": self.quantity_requested,
            "quantity_issued": self.quantity_issued,
            "unit_price": money(self.unit_price),
            "line_total": money(self.line_total),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Purchasing
# ═════════════════════════════════════════════════════════════════════════════

class PurchaseOrder(SoftDeleteMixin, TenantModel):
    __tablename__ = "purchase_orders"

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(30), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)
    order_date = db.Column(db.DateTime, nullable=False)
    expected_date = db.Column(db.Date)
    status = db.Column(db.String(30), nullable=False, default=PO_DRAFT, index=True)
    total_value = db.Column(db.Numeric(18, 2), default=0)
    notes = db.Column(db.Text)

    lines = db.relationship(
        "PurchaseOrderLine", back_populates="purchase_order", cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    supplier = db.relationship("Supplier")

    def to_dict(self, include_lines=True):
        d = {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.supplier_name if self.supplier else None,
            "order_date": iso(self.order_date),
            "expected_date": iso(self.expected_date),
            "status": self.status,
            "total_value": money(self.total_value),
            "notes": self.notes,
            **self._audit_dict(),
        }
        if include_lines:
            d["lines"] = [ln.to_dict() for ln in self.lines]
        return d


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(
        db.Integer, db.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_price = db.Column(db.Numeric(18, 2), default=0)
    line_status = db.Column(db.String(20), nullable=False, default=PO_LINE_OPEN)

    purchase_order = db.relationship("PurchaseOrder", back_populates="lines")
    product = db.relationship("Product")

    @property
    def line_total(self):
        return (self.unit_price or 0) * self.quantity_ordered

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "unit_price": money(self.unit_price),
            "line_total": money(self.line_total),
            "line_status": self.line_status,
        }


class GoodsReceipt(TenantModel):
    __tablename__ = "goods_receipts"

    id = db.Column(db.Integer, primary_key=True)
    grn_number = db.Column(db.String(30), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("stock_locations.id"), nullable=False)
    receipt_date = db.Column(db.DateTime, nullable=False)
    delivery_note_ref = db.Column(db.String(100))
    received_by = db.Column(db.String(150))
    notes = db.Column(db.Text)

    lines = db.relationship(
        "GoodsReceiptLine", back_populates="goods_receipt", cascade="all, delete-orphan",
        order_by="GoodsReceiptLine.id",
    )
    supplier = db.relationship("Supplier")
    purchase_order = db.relationship("PurchaseOrder")
    location = db.relationship("StockLocation")

    def to_dict(self):
        return {
            "id": self.id,
            "grn_number": self.grn_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.supplier_name if self.supplier else None,
            "purchase_order_id": self.purchase_order_id,
            "po_number": self.purchase_order.po_number if self.purchase_order else None,
            "location_id": self.location_id,
            "receipt_date": iso(self.receipt_date),
            "delivery_note_ref": self.delivery_note_ref,
            "received_by": self.received_by,
            "notes": self.notes,
            "lines": [ln.to_dict() for ln in self.lines],
        }


class GoodsReceiptLine(db.Model):
    __tablename__ = "goods_receipt_lines"

    id = db.Column(db.Integer, primary_key=True)
    goods_receipt_id = db.Column(
        db.Integer, db.ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    purchase_order_line_id = db.Column(db.Integer, db.ForeignKey("purchase_order_lines.id"), nullable=True)
    quantity_received = db.Column(db.Integer, nullable=False)
    quantity_rejected = db.Column(db.Integer, nullable=False, default=0)
    rejection_reason = db.Column(db.String(300))
    batch_number = db.Column(db.String(50))

    goods_receipt = db.relationship("GoodsReceipt", back_populates="lines")
    product = db.relationship("Product")

    @property
    def quantity_accepted(self):
        return self.quantity_received - (self.quantity_rejected or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.product_code if self.product else None,
            "purchase_order_line_id": self.purchase_order_line_id,
            "quantity_received": self.quantity_received,
            "quantity_rejected": self.quantity_rejected,
            "quantity_accepted": self.quantity_accepted,
            "rejection_reason": self.rejection_reason,
            "batch_number": self.batch_number,
        }

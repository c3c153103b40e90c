"""Stock & warehouse service: master data and the stock ledger.

Transaction policy: functions flush() for ID generation, never commit().
The route handler commits through ``db_commit_or_error``.

Covers:
- Category / Product / Supplier / StockLocation / BayLocation CRUD
- Stock levels, low-stock report
- Manual adjustments and the transaction ledger

``get_or_create_level`` and ``record_transaction`` are shared with the
stock-order and purchasing services so every quantity movement goes
through one place.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from siteops.core.exceptions import ConflictError, ValidationError
from siteops.models import db
from siteops.models.stock import (
    LOCATION_TYPES,
    TRANSACTION_TYPES,
    TXN_ADJUSTMENT,
    BayLocation,
    Category,
    Product,
    StockLevel,
    StockLocation,
    StockTransaction,
    Supplier,
)
from siteops.utils.helpers import (
    apply_fields,
    get_tenant_record,
    next_document_number,
    require_fields,
    to_int,
)

logger = logging.getLogger(__name__)

CATEGORY_FIELDS = ("category_name", "description", "sort_order", "is_active")
SUPPLIER_FIELDS = (
    "supplier_code", "supplier_name", "contact_name", "email", "phone",
    "address", "payment_terms", "is_active",
)
PRODUCT_FIELDS = (
    "product_code", "product_name", "category_id", "supplier_id", "unit_type",
    "base_rate", "cost_price", "reorder_level", "reorder_quantity", "lead_time_days",
    "is_active",
)
LOCATION_FIELDS = ("location_code", "location_name", "location_type", "address", "is_active")
BAY_FIELDS = ("bay_code", "bay_name", "capacity", "is_active")


def _search(query, term, *columns):
    if not term:
        return query
    like = f"%{term.strip()}%"
    return query.filter(or_(*[c.ilike(like) for c in columns]))


def _ensure_unique(model, column, value, tenant_id, exclude_id=None, label=None):
    q = model.active_for_tenant(tenant_id).filter(column == value)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first():
        raise ConflictError(label or model.__name__, column.key, value)


# ── Categories ───────────────────────────────────────────────────────────────


def list_categories(tenant_id, search=None):
    q = Category.active_for_tenant(tenant_id)
    q = _search(q, search, Category.category_name)
    return q.order_by(Category.sort_order, Category.category_name)


def create_category(tenant_id, data, user=None):
    require_fields(data, "category_name")
    cat = Category(tenant_id=tenant_id, created_by=user)
    apply_fields(cat, data, CATEGORY_FIELDS, ints=("sort_order",))
    db.session.add(cat)
    db.session.flush()
    return cat


def update_category(tenant_id, category_id, data):
    cat = get_tenant_record(Category, category_id, tenant_id)
    apply_fields(cat, data, CATEGORY_FIELDS, ints=("sort_order",))
    db.session.flush()
    return cat


def delete_category(tenant_id, category_id):
    cat = get_tenant_record(Category, category_id, tenant_id)
    cat.soft_delete()
    db.session.flush()


# ── Suppliers ────────────────────────────────────────────────────────────────


def list_suppliers(tenant_id, search=None, active_only=False):
    q = Supplier.active_for_tenant(tenant_id)
    q = _search(q, search, Supplier.supplier_code, Supplier.supplier_name)
    if active_only:
        q = q.filter(Supplier.is_active.is_(True))
    return q.order_by(Supplier.supplier_name)


def create_supplier(tenant_id, data, user=None):
    require_fields(data, "supplier_code", "supplier_name")
    _ensure_unique(Supplier, Supplier.supplier_code, data["supplier_code"].strip(), tenant_id)
    sup = Supplier(tenant_id=tenant_id, created_by=user)
    apply_fields(sup, data, SUPPLIER_FIELDS)
    db.session.add(sup)
    db.session.flush()
    return sup


def update_supplier(tenant_id, supplier_id, data):
    sup = get_tenant_record(Supplier, supplier_id, tenant_id)
    if data.get("supplier_code"):
        _ensure_unique(Supplier, Supplier.supplier_code, data["supplier_code"].strip(), tenant_id, sup.id)
    apply_fields(sup, data, SUPPLIER_FIELDS)
    db.session.flush()
    return sup


def delete_supplier(tenant_id, supplier_id):
    sup = get_tenant_record(Supplier, supplier_id, tenant_id)
    sup.soft_delete()
    db.session.flush()


# ── Products ─────────────────────────────────────────────────────────────────


def _check_product_refs(tenant_id, data):
    if data.get("category_id") is not None:
        get_tenant_record(Category, data["category_id"], tenant_id)
    if data.get("supplier_id") is not None:
        get_tenant_record(Supplier, data["supplier_id"], tenant_id)


def _apply_product(product, data):
    apply_fields(
        product, data, PRODUCT_FIELDS,
        decimals=("base_rate", "cost_price"),
        ints=("category_id", "supplier_id", "reorder_level", "reorder_quantity", "lead_time_days"),
    )
    for field in ("base_rate", "cost_price", "reorder_level", "reorder_quantity"):
        value = getattr(product, field)
        if value is not None and value < 0:
            raise ValidationError(f"{field} cannot be negative", details={field: str(value)})


def list_products(tenant_id, search=None, category_id=None, active_only=False):
    q = Product.active_for_tenant(tenant_id)
    q = _search(q, search, Product.product_code, Product.product_name)
    if category_id:
        q = q.filter(Product.category_id == category_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.product_code)


def create_product(tenant_id, data, user=None):
    require_fields(data, "product_code", "product_name")
    _ensure_unique(Product, Product.product_code, data["product_code"].strip(), tenant_id)
    _check_product_refs(tenant_id, data)
    product = Product(tenant_id=tenant_id, created_by=user)
    _apply_product(product, data)
    db.session.add(product)
    db.session.flush()
    logger.info("Product %s created", product.product_code, extra={"tenant_id": tenant_id})
    return product


def update_product(tenant_id, product_id, data):
    product = get_tenant_record(Product, product_id, tenant_id)
    if data.get("product_code"):
        _ensure_unique(Product, Product.product_code, data["product_code"].strip(), tenant_id, product.id)
    _check_product_refs(tenant_id, data)
    _apply_product(product, data)
    db.session.flush()
    return product


def delete_product(tenant_id, product_id):
    product = get_tenant_record(Product, product_id, tenant_id)
    product.soft_delete()
    db.session.flush()


# ── Locations & bays ─────────────────────────────────────────────────────────


def list_locations(tenant_id, search=None):
    q = StockLocation.active_for_tenant(tenant_id)
    q = _search(q, search, StockLocation.location_code, StockLocation.location_name)
    return q.order_by(StockLocation.location_code)


def _check_location_type(data):
    loc_type = data.get("location_type")
    if loc_type and loc_type not in LOCATION_TYPES:
        raise ValidationError(
            f"location_type must be one of {', '.join(LOCATION_TYPES)}",
            details={"location_type": loc_type},
        )


def create_location(tenant_id, data, user=None):
    require_fields(data, "location_code", "location_name")
    _check_location_type(data)
    _ensure_unique(StockLocation, StockLocation.location_code, data["location_code"].strip(), tenant_id)
    loc = StockLocation(tenant_id=tenant_id, created_by=user)
    apply_fields(loc, data, LOCATION_FIELDS)
    db.session.add(loc)
    db.session.flush()
    return loc


def update_location(tenant_id, location_id, data):
    loc = get_tenant_record(StockLocation, location_id, tenant_id)
    _check_location_type(data)
    if data.get("location_code"):
        _ensure_unique(
            StockLocation, StockLocation.location_code, data["location_code"].strip(), tenant_id, loc.id,
        )
    apply_fields(loc, data, LOCATION_FIELDS)
    db.session.flush()
    return loc


def delete_location(tenant_id, location_id):
    loc = get_tenant_record(StockLocation, location_id, tenant_id)
    on_hand = (
        db.session.query(db.func.coalesce(db.func.sum(StockLevel.quantity_on_hand), 0))
        .filter(StockLevel.location_id == loc.id)
        .scalar()
    )
    if on_hand:
        raise ValidationError(f"Location {loc.location_code} still holds {on_hand} units of stock")
    loc.soft_delete()
    db.session.flush()


def list_bays(tenant_id, location_id):
    loc = get_tenant_record(StockLocation, location_id, tenant_id)
    return BayLocation.active_for_tenant(tenant_id).filter(
        BayLocation.stock_location_id == loc.id,
    ).order_by(BayLocation.bay_code).all()


def create_bay(tenant_id, location_id, data, user=None):
    loc = get_tenant_record(StockLocation, location_id, tenant_id)
    require_fields(data, "bay_code")
    code = data["bay_code"].strip()
    if BayLocation.active_for_tenant(tenant_id).filter_by(stock_location_id=loc.id, bay_code=code).first():
        raise ConflictError("BayLocation", "bay_code", code)
    bay = BayLocation(tenant_id=tenant_id, stock_location_id=loc.id, created_by=user)
    apply_fields(bay, data, BAY_FIELDS, ints=("capacity",))
    db.session.add(bay)
    db.session.flush()
    return bay


def update_bay(tenant_id, bay_id, data):
    bay = get_tenant_record(BayLocation, bay_id, tenant_id)
    apply_fields(bay, data, BAY_FIELDS, ints=("capacity",))
    db.session.flush()
    return bay


def delete_bay(tenant_id, bay_id):
    bay = get_tenant_record(BayLocation, bay_id, tenant_id)
    StockLevel.query.filter_by(bay_location_id=bay.id).update({"bay_location_id": None})
    bay.soft_delete()
    db.session.flush()


# ── Stock levels ─────────────────────────────────────────────────────────────


def find_level(tenant_id, product_id, location_id):
    return StockLevel.query.filter_by(
        tenant_id=tenant_id, product_id=product_id, location_id=location_id,
    ).first()


def get_or_create_level(tenant_id, product_id, location_id):
    level = find_level(tenant_id, product_id, location_id)
    if level is None:
        level = StockLevel(
            tenant_id=tenant_id, product_id=product_id, location_id=location_id,
            quantity_on_hand=0, quantity_reserved=0, quantity_on_order=0,
        )
        db.session.add(level)
        db.session.flush()
    return level


def list_levels(tenant_id, location_id=None, product_id=None):
    q = StockLevel.query_for_tenant(tenant_id).join(Product, Product.id == StockLevel.product_id)
    q = q.filter(Product.deleted_at.is_(None))
    if location_id:
        q = q.filter(StockLevel.location_id == location_id)
    if product_id:
        q = q.filter(StockLevel.product_id == product_id)
    return q.order_by(Product.product_code, StockLevel.location_id)


def low_stock(tenant_id, location_id=None):
    """Levels at or below their product's reorder level."""
    q = list_levels(tenant_id, location_id=location_id)
    return q.filter(StockLevel.quantity_on_hand <= Product.reorder_level).all()


def set_level_bay(tenant_id, level_id, bay_location_id):
    level = get_tenant_record(StockLevel, level_id, tenant_id)
    if bay_location_id is not None:
        bay = get_tenant_record(BayLocation, bay_location_id, tenant_id)
        if bay.stock_location_id != level.location_id:
            raise ValidationError("Bay belongs to a different location")
    level.bay_location_id = bay_location_id
    db.session.flush()
    return level


# ── Transactions ─────────────────────────────────────────────────────────────


def record_transaction(
    tenant_id, txn_type, product_id, location_id, quantity,
    reference_type=None, reference_id=None, notes=None, user=None,
):
    """Append one signed movement to the ledger (TXN-YYYYMMDD-NNN)."""
    txn = StockTransaction(
        tenant_id=tenant_id,
        transaction_number=next_document_number(
            StockTransaction, StockTransaction.transaction_number, "TXN", tenant_id,
        ),
        transaction_date=datetime.now(timezone.utc),
        transaction_type=txn_type,
        product_id=product_id,
        location_id=location_id,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by=user,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def list_transactions(tenant_id, product_id=None, location_id=None, txn_type=None):
    if txn_type and txn_type not in TRANSACTION_TYPES:
        raise ValidationError(f"transaction_type must be one of {', '.join(TRANSACTION_TYPES)}")
    q = StockTransaction.query_for_tenant(tenant_id)
    if product_id:
        q = q.filter(StockTransaction.product_id == product_id)
    if location_id:
        q = q.filter(StockTransaction.location_id == location_id)
    if txn_type:
        q = q.filter(StockTransaction.transaction_type == txn_type)
    return q.order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc())


def adjust_stock(tenant_id, data, user=None):
    """Manual +/- correction of on-hand quantity.

    Never takes on-hand below zero or below what is already reserved.
    """
    require_fields(data, "product_id", "location_id", "quantity", "reason")
    delta = to_int(data["quantity"], "quantity")
    if delta == 0:
        raise ValidationError("quantity must be non-zero")
    product = get_tenant_record(Product, data["product_id"], tenant_id)
    location = get_tenant_record(StockLocation, data["location_id"], tenant_id)

    level = get_or_create_level(tenant_id, product.id, location.id)
    new_on_hand = level.quantity_on_hand + delta
    if new_on_hand < 0:
        raise ValidationError(
            f"Adjustment would take {product.product_code} below zero. "
            f"On hand: {level.quantity_on_hand}, Adjustment: {delta}"
        )
    if new_on_hand < level.quantity_reserved:
        raise ValidationError(
            f"Adjustment would leave {product.product_code} below reserved quantity. "
            f"Reserved: {level.quantity_reserved}, On hand after: {new_on_hand}"
        )
    level.quantity_on_hand = new_on_hand
    level.last_movement_date = datetime.now(timezone.utc)
    txn = record_transaction(
        tenant_id, TXN_ADJUSTMENT, product.id, location.id, delta,
        reference_type="Adjustment", notes=data["reason"].strip(), user=user,
    )
    logger.info(
        "Stock adjusted %s @ %s by %+d → %d",
        product.product_code, location.location_code, delta, new_on_hand,
        extra={"tenant_id": tenant_id},
    )
    return level, txn

"""Stocktake service: physical counts and the adjustments they produce.

Transaction policy: functions flush(), the route handler commits.

Lifecycle:
    Draft → InProgress → Completed
    Draft / InProgress → Cancelled

Creating a stocktake lists every product holding stock at the location.
Starting it snapshots the system quantities the count is compared to;
completing it books one Adjustment transaction per line whose counted
quantity differs from that snapshot.
"""
import logging
from datetime import datetime, timezone

from siteops.core.exceptions import InvalidTransitionError, ValidationError
from siteops.models import db
from siteops.models.stock import (
    STOCKTAKE_CANCELLED,
    STOCKTAKE_COMPLETED,
    STOCKTAKE_DRAFT,
    STOCKTAKE_IN_PROGRESS,
    STOCKTAKE_STATUSES,
    TXN_ADJUSTMENT,
    StockLevel,
    StockLocation,
    Stocktake,
    StocktakeLine,
)
from siteops.services import stock_service
from siteops.utils.helpers import get_tenant_record, next_document_number, require_fields, to_int

logger = logging.getLogger(__name__)


def list_stocktakes(tenant_id, location_id=None, status=None):
    if status and status not in STOCKTAKE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STOCKTAKE_STATUSES)}")
    q = Stocktake.active_for_tenant(tenant_id)
    if location_id:
        q = q.filter(Stocktake.location_id == location_id)
    if status:
        q = q.filter(Stocktake.status == status)
    return q.order_by(Stocktake.count_date.desc(), Stocktake.id.desc())


def get_stocktake(tenant_id, stocktake_id):
    return get_tenant_record(Stocktake, stocktake_id, tenant_id)


def _stocked_levels(tenant_id, location_id):
    return (
        StockLevel.query_for_tenant(tenant_id)
        .filter(StockLevel.location_id == location_id, StockLevel.quantity_on_hand > 0)
        .order_by(StockLevel.id)
        .all()
    )


def create_stocktake(tenant_id, data, user=None):
    """Open a Draft count listing every product with stock at the location."""
    require_fields(data, "location_id")
    location = get_tenant_record(StockLocation, data["location_id"], tenant_id)
    levels = _stocked_levels(tenant_id, location.id)
    if not levels:
        raise ValidationError(f"No products with stock found at location {location.location_code}")

    stocktake = Stocktake(
        tenant_id=tenant_id,
        stocktake_number=next_document_number(Stocktake, Stocktake.stocktake_number, "ST", tenant_id),
        location_id=location.id,
        count_date=datetime.now(timezone.utc),
        status=STOCKTAKE_DRAFT,
        counted_by=(data.get("counted_by") or user),
        notes=data.get("notes"),
        created_by=user,
    )
    for level in levels:
        stocktake.lines.append(StocktakeLine(
            product_id=level.product_id,
            bay_location_id=level.bay_location_id,
            bay_code=level.bay_location.bay_code if level.bay_location else None,
            system_quantity=level.quantity_on_hand,
        ))
    db.session.add(stocktake)
    db.session.flush()
    logger.info(
        "Stocktake %s created for %s with %d line(s)",
        stocktake.stocktake_number, location.location_code, len(levels),
        extra={"tenant_id": tenant_id},
    )
    return stocktake


def start_stocktake(tenant_id, stocktake_id):
    """Draft → InProgress, re-reading on-hand quantities as the count baseline."""
    stocktake = get_stocktake(tenant_id, stocktake_id)
    if stocktake.status != STOCKTAKE_DRAFT:
        raise InvalidTransitionError("Stocktake", stocktake.status, STOCKTAKE_IN_PROGRESS)
    for line in stocktake.lines:
        level = stock_service.find_level(tenant_id, line.product_id, stocktake.location_id)
        line.system_quantity = level.quantity_on_hand if level else 0
    stocktake.status = STOCKTAKE_IN_PROGRESS
    stocktake.started_at = datetime.now(timezone.utc)
    db.session.flush()
    return stocktake


def count_line(tenant_id, stocktake_id, line_id, data):
    stocktake = get_stocktake(tenant_id, stocktake_id)
    if stocktake.status != STOCKTAKE_IN_PROGRESS:
        raise ValidationError(f"Lines can only be counted while the stocktake is InProgress (status: {stocktake.status})")
    line = next((ln for ln in stocktake.lines if ln.id == line_id), None)
    if line is None:
        raise ValidationError(f"Line {line_id} does not belong to stocktake {stocktake.stocktake_number}")

    require_fields(data, "counted_quantity")
    counted = to_int(data["counted_quantity"], "counted_quantity")
    if counted < 0:
        raise ValidationError("counted_quantity cannot be negative", details={"counted_quantity": counted})
    line.counted_quantity = counted
    if "variance_reason" in data:
        line.variance_reason = data["variance_reason"]
    db.session.flush()
    return line


def complete_stocktake(tenant_id, stocktake_id, user=None):
    """InProgress → Completed, booking each variance as an Adjustment."""
    stocktake = get_stocktake(tenant_id, stocktake_id)
    if stocktake.status != STOCKTAKE_IN_PROGRESS:
        raise InvalidTransitionError("Stocktake", stocktake.status, STOCKTAKE_COMPLETED)
    uncounted = [ln for ln in stocktake.lines if ln.counted_quantity is None]
    if uncounted:
        raise ValidationError(f"{len(uncounted)} line(s) have not been counted yet")

    now = datetime.now(timezone.utc)
    adjustments = 0
    for line in stocktake.lines:
        level = stock_service.get_or_create_level(tenant_id, line.product_id, stocktake.location_id)
        level.last_count_date = now
        variance = line.variance
        if not variance:
            continue
        new_on_hand = level.quantity_on_hand + variance
        if new_on_hand < 0:
            raise ValidationError(
                f"Stock of {line.product.product_code} moved since the count started. "
                f"On hand: {level.quantity_on_hand}, Variance: {variance}"
            )
        level.quantity_on_hand = new_on_hand
        level.last_movement_date = now
        stock_service.record_transaction(
            tenant_id, TXN_ADJUSTMENT, line.product_id, stocktake.location_id, variance,
            reference_type="Stocktake", reference_id=stocktake.id,
            notes=f"Stocktake adjustment via {stocktake.stocktake_number}", user=user,
        )
        line.adjustment_created = True
        adjustments += 1

    stocktake.status = STOCKTAKE_COMPLETED
    stocktake.completed_at = now
    db.session.flush()
    logger.info(
        "Stocktake %s completed with %d adjustment(s)", stocktake.stocktake_number, adjustments,
        extra={"tenant_id": tenant_id},
    )
    return stocktake


def cancel_stocktake(tenant_id, stocktake_id):
    stocktake = get_stocktake(tenant_id, stocktake_id)
    if stocktake.status in (STOCKTAKE_COMPLETED, STOCKTAKE_CANCELLED):
        raise InvalidTransitionError("Stocktake", stocktake.status, STOCKTAKE_CANCELLED)
    stocktake.status = STOCKTAKE_CANCELLED
    db.session.flush()
    return stocktake


def delete_stocktake(tenant_id, stocktake_id):
    stocktake = get_stocktake(tenant_id, stocktake_id)
    if stocktake.status == STOCKTAKE_COMPLETED:
        raise ValidationError("Completed stocktakes cannot be deleted")
    stocktake.soft_delete()
    db.session.flush()

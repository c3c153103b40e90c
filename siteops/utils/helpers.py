"""Shared utility functions used across services and blueprints.

get_tenant_record:    tenant-scoped lookup that raises NotFoundError
parse_date:           returns None on bad input
parse_date_input:     raises ValidationError on bad input
to_decimal:           JSON number → Decimal
next_document_number: PREFIX-YYYYMMDD-NNN sequences per tenant
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError

from siteops.core.exceptions import NotFoundError, ValidationError
from siteops.models import db
from siteops.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_tenant_record(model, pk, tenant_id, label=None):
    """Tenant-scoped lookup by primary key; soft-deleted rows count as missing."""
    obj = _lookup(model, pk, tenant_id)
    if not obj:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk, tenant_id=tenant_id)
    return obj


def _lookup(model, pk, tenant_id):
    if pk is None:
        return None
    if hasattr(model, "get_active"):
        return model.get_active(tenant_id, pk)
    return model.query.filter_by(id=pk, tenant_id=tenant_id).first()


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field="date"):
    """Parse a date, raising ValidationError when the value is present but unreadable."""
    if not value:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.", details={field: str(value)},
        )
    return parsed


def to_decimal(value, field="value", default=None):
    """Convert a JSON number/string to Decimal, raising ValidationError on junk."""
    if value is None or value == "":
        return default
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: str(value)})
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={field: str(value)})
    return number


def to_int(value, field="value", default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError, OverflowError):
        raise ValidationError(f"{field} must be an integer", details={field: str(value)})


# ── Document numbering ───────────────────────────────────────────────────────

def next_document_number(model, column, prefix, tenant_id, on=None, width=3):
    """Next ``PREFIX-YYYYMMDD-NNN`` number for one tenant and day.

    The sequence restarts every day; the highest existing suffix for the
    day is incremented, so gaps left by deletes are never reused.
    """
    on = on or date.today()
    stem = f"{prefix}-{on.strftime('%Y%m%d')}-"
    return _next_in_sequence(model, column, stem, tenant_id, width)


def next_yearly_number(model, column, prefix, tenant_id, year=None, width=4):
    """Next ``PREFIX-YYYY-NNNN`` number for one tenant and year."""
    year = year or date.today().year
    stem = f"{prefix}-{year}-"
    return _next_in_sequence(model, column, stem, tenant_id, width)


def _next_in_sequence(model, column, stem, tenant_id, width):
    # zero-padded suffixes sort as text until they outgrow the padding
    last = (
        db.session.query(column)
        .filter(model.tenant_id == tenant_id, column.like(f"{stem}%"))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
        .scalar()
    )
    seq = 1
    if last:
        try:
            seq = int(last[len(stem):]) + 1
        except ValueError:
            logger.warning("Unparseable document number %r, restarting sequence", last)
    return f"{stem}{seq:0{width}d}"


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure, ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")


def apply_fields(obj, data, fields, dates=(), decimals=(), ints=()):
    """Copy the keys of ``data`` that appear in ``fields`` onto ``obj``.

    Keys absent from ``data`` are left untouched, so the same helper
    serves create (all fields) and partial update.
    """
    for field in fields:
        if field not in data:
            continue
        value = data[field]
        if field in dates:
            value = parse_date_input(value, field)
        elif field in decimals:
            value = to_decimal(value, field)
        elif field in ints:
            value = to_int(value, field)
        elif isinstance(value, str):
            value = value.strip()
        setattr(obj, field, value)
    return obj


def require_fields(data, *fields):
    """Raise ValidationError naming every missing/blank required field."""
    missing = [f for f in fields if data.get(f) in (None, "") or (isinstance(data.get(f), str) and not data[f].strip())]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={f: "required" for f in missing},
        )

"""
TenantModel: Abstract base class for tenant-scoped models.

All business records inherit from TenantModel instead of db.Model
directly. This adds:
  - tenant_id FK column with index
  - created_at / updated_at / created_by audit columns
  - query_for_tenant() for tables without soft delete
  - _audit_dict() for to_dict payloads
"""

from datetime import datetime, timezone

from siteops.models import db


def utcnow():
    return datetime.now(timezone.utc)


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    created_by = db.Column(db.String(150), nullable=True)

    @classmethod
    def query_for_tenant(cls, tenant_id):
        return cls.query.filter(cls.tenant_id == tenant_id)

    def _audit_dict(self):
        return {
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }


def money(value):
    """Decimal column value → JSON-friendly float (None stays None)."""
    return float(value) if value is not None else None


def iso(value):
    return value.isoformat() if value else None

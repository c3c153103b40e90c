"""
Soft Delete Mixin.

Records that include this mixin are marked as deleted rather than
physically removed. List and get endpoints only ever see active rows,
so a second DELETE on the same id answers 404.

Usage:
    class Site(SoftDeleteMixin, TenantModel):
        ...

    site.soft_delete()
    db.session.commit()

    Site.active_for_tenant(tid).order_by(Site.site_name).all()
"""

from datetime import datetime, timezone

from siteops.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to tenant-scoped models."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self):
        self.deleted_at = datetime.now(timezone.utc)

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def active_for_tenant(cls, tenant_id):
        """Active (non-deleted) rows of one tenant."""
        return cls.query_active().filter(cls.tenant_id == tenant_id)

    @classmethod
    def get_active(cls, tenant_id, pk):
        """Fetch a single active row by id inside a tenant, or None."""
        return cls.active_for_tenant(tenant_id).filter(cls.id == pk).first()

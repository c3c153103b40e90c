"""
Auth Models: tenants, their users, and role-based permissions.

A tenant is one construction company. Users log in to exactly one
tenant. Roles come in two flavours:

    system roles   tenant_id NULL, seeded by ``flask seed-permissions``
    custom roles   created per tenant through /api/v1/admin/roles

Permission codenames read "<Module>.<Action>", e.g.
"StockManagement.ApproveOrders".
"""

from siteops.models import db
from siteops.models.base import iso, utcnow


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    default_currency = db.Column(db.String(3), default="EUR")
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "default_currency": self.default_currency,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class User(db.Model):
    """A login. Site staff are linked to one through Employee.user_id."""

    __tablename__ = "users"
    __table_args__ = (
        # emails are unique per tenant, not globally
        db.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    tenant = db.relationship("Tenant", back_populates="users")
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email

    @property
    def role_names(self):
        return sorted(ur.role.name for ur in self.user_roles.all())

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }
        if include_roles:
            d["roles"] = self.role_names
        return d


class Role(db.Model):
    __tablename__ = "roles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    is_system = db.Column(db.Boolean, default=False)

    role_permissions = db.relationship(
        "RolePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan",
    )
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic")

    @property
    def codenames(self):
        return sorted(rp.permission.codename for rp in self.role_permissions.all())

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "is_system": self.is_system,
        }
        if include_permissions:
            d["permissions"] = self.codenames
        return d


class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    codename = db.Column(db.String(100), unique=True, nullable=False)
    module = db.Column(db.String(50), nullable=False, index=True)
    description = db.Column(db.String(300))

    role_permissions = db.relationship("RolePermission", back_populates="permission", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "codename": self.codename,
            "module": self.module,
            "description": self.description,
        }


# ── Junction tables ──────────────────────────────────────────────────────────


class RolePermission(db.Model):
    __tablename__ = "role_permissions"
    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions"),
    )

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False,
    )

    role = db.relationship("Role", back_populates="role_permissions")
    permission = db.relationship("Permission", back_populates="role_permissions")


class UserRole(db.Model):
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_roles"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)

    user = db.relationship("User", back_populates="user_roles")
    role = db.relationship("Role", back_populates="user_roles")

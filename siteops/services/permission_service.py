"""
Permission Service: DB-driven RBAC with an in-process cache.

Resolution: user → user_roles → roles → role_permissions → permissions.
Evaluation is deny-by-default; the ``Admin`` role is a superuser and
passes every check.

The permission catalogue and the default roles are declared here and
written to the database by ``seed_permissions`` (``flask seed-permissions``).
"""

import logging
import threading
import time
from typing import Optional

from siteops.core.exceptions import ConflictError, ValidationError
from siteops.models import db
from siteops.models.auth import Permission, Role, RolePermission, User, UserRole

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

_permission_cache: dict[int, tuple[float, set[str], list[str]]] = {}
_cache_lock = threading.Lock()

ADMIN_ROLE = "Admin"
SUPERUSER_ROLES = {ADMIN_ROLE}

# ── Catalogue ────────────────────────────────────────────────────────────────

PERMISSION_CATALOGUE = {
    "StockManagement": (
        "View", "CreateOrders", "ApproveOrders", "ViewCostings", "ManageProducts",
        "ManageSuppliers", "ReceiveGoods", "Stocktake", "Admin",
    ),
    "Proposals": ("View", "Create", "Edit", "Delete", "Submit", "Approve", "ViewCostings", "Admin"),
    "ToolboxTalks": ("View", "Create", "Edit", "Delete", "Schedule", "ViewReports", "Admin"),
    "Rams": ("View", "Create", "Edit", "Delete", "Submit", "Approve", "Admin"),
    "Core": ("ManageSites", "ManageEmployees", "ManageCompanies", "ManageUsers", "ManageRoles", "Admin"),
}


def all_codenames() -> list[str]:
    return [f"{module}.{action}" for module, actions in PERMISSION_CATALOGUE.items() for action in actions]


def _module_codenames(module: str, exclude=()) -> list[str]:
    return [f"{module}.{a}" for a in PERMISSION_CATALOGUE[module] if a not in exclude]


DEFAULT_ROLES = {
    ADMIN_ROLE: ("Full access to every module", all_codenames()),
    "Finance": (
        "Read access plus cost and margin visibility",
        [
            "StockManagement.View", "StockManagement.ViewCostings",
            "Proposals.View", "Proposals.ViewCostings",
            "ToolboxTalks.View", "Rams.View",
        ],
    ),
    "OfficeStaff": (
        "Prepares proposals and raises stock orders",
        [
            "Proposals.View", "Proposals.Create", "Proposals.Edit", "Proposals.Submit",
            "StockManagement.View", "StockManagement.CreateOrders",
        ],
    ),
    "SiteManager": (
        "Raises stock orders for their sites",
        ["StockManagement.View", "StockManagement.CreateOrders"],
    ),
    "WarehouseStaff": (
        "Runs the warehouse: products, suppliers, receipts, picking",
        _module_codenames("StockManagement", exclude=("Admin", "ViewCostings")),
    ),
}


# ── Cache ────────────────────────────────────────────────────────────────────

def _get_cached(user_id: int) -> Optional[tuple[set[str], list[str]]]:
    with _cache_lock:
        entry = _permission_cache.get(user_id)
        if entry is None:
            return None
        cached_at, perms, roles = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[user_id]
            return None
        return perms, roles


def _set_cached(user_id: int, perms: set[str], roles: list[str]) -> None:
    with _cache_lock:
        _permission_cache[user_id] = (time.time(), perms, roles)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        _permission_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


# ── Resolution ───────────────────────────────────────────────────────────────

def _resolve(user_id: int) -> tuple[set[str], list[str]]:
    cached = _get_cached(user_id)
    if cached is not None:
        return cached

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        _set_cached(user_id, set(), [])
        return set(), []

    role_rows = (
        db.session.query(Role.id, Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .filter((Role.tenant_id.is_(None)) | (Role.tenant_id == user.tenant_id))
        .all()
    )
    role_ids = sorted({rid for rid, _ in role_rows})
    role_names = sorted({name for _, name in role_rows})

    perms: set[str] = set()
    if role_ids:
        rows = (
            db.session.query(Permission.codename)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id.in_(role_ids))
            .distinct()
            .all()
        )
        perms = {r[0] for r in rows}
    _set_cached(user_id, perms, role_names)
    return perms, role_names


def get_user_role_names(user_id: int) -> list[str]:
    return _resolve(user_id)[1]


def get_user_permissions(user_id: int) -> set[str]:
    return _resolve(user_id)[0]


def is_superuser(user_id: int) -> bool:
    return any(r in SUPERUSER_ROLES for r in get_user_role_names(user_id))


def has_permission(user_id: int, codename: str) -> bool:
    if is_superuser(user_id):
        return True
    return codename in get_user_permissions(user_id)


def has_any_permission(user_id: int, codenames: list[str]) -> bool:
    if is_superuser(user_id):
        return True
    return bool(get_user_permissions(user_id) & set(codenames))


# ── Seeding / administration ─────────────────────────────────────────────────

def seed_permissions() -> dict:
    """Create missing Permission rows and the system roles. Idempotent."""
    by_code = {p.codename: p for p in Permission.query.all()}
    created_perms = 0
    for module, actions in PERMISSION_CATALOGUE.items():
        for action in actions:
            code = f"{module}.{action}"
            if code not in by_code:
                perm = Permission(codename=code, module=module, description=f"{module}: {action}")
                db.session.add(perm)
                by_code[code] = perm
                created_perms += 1
    db.session.flush()

    created_roles = 0
    for name, (description, codenames) in DEFAULT_ROLES.items():
        role = Role.query.filter(Role.tenant_id.is_(None), Role.name == name).first()
        if role is None:
            role = Role(tenant_id=None, name=name, description=description, is_system=True)
            db.session.add(role)
            db.session.flush()
            created_roles += 1
        existing = {rp.permission_id for rp in role.role_permissions.all()}
        for code in codenames:
            perm = by_code[code]
            if perm.id not in existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
    db.session.commit()
    invalidate_all_cache()
    logger.info("Seeded %d permissions and %d roles", created_perms, created_roles)
    return {"permissions_created": created_perms, "roles_created": created_roles}


def create_role(tenant_id: int, name: str, codenames: list[str], description: str | None = None) -> Role:
    """Create a tenant-scoped custom role holding the given permissions."""
    if name in DEFAULT_ROLES or Role.query.filter_by(tenant_id=tenant_id, name=name).first():
        raise ConflictError("Role", "name", name)
    perms = Permission.query.filter(Permission.codename.in_(codenames)).all() if codenames else []
    unknown = sorted(set(codenames) - {p.codename for p in perms})
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", details={"unknown": unknown})
    role = Role(tenant_id=tenant_id, name=name, description=description, is_system=False)
    db.session.add(role)
    db.session.flush()
    for perm in perms:
        db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
    db.session.flush()
    return role


def set_user_roles(user: User, role_ids: list[int]) -> list[str]:
    """Replace a user's role assignments. Roles must be system or same-tenant."""
    roles = Role.query.filter(Role.id.in_(role_ids)).all() if role_ids else []
    bad = [r.id for r in roles if r.tenant_id not in (None, user.tenant_id)]
    missing = sorted(set(role_ids) - {r.id for r in roles})
    if bad or missing:
        raise ValidationError("Invalid role ids", details={"role_ids": sorted(bad + missing)})
    UserRole.query.filter_by(user_id=user.id).delete()
    for role in roles:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))
    db.session.flush()
    invalidate_cache(user.id)
    return sorted(r.name for r in roles)

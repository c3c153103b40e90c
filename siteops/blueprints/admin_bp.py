"""
Admin blueprint: tenant users, roles and the permission catalogue.

Endpoints:
    GET    /api/v1/admin/users                    list users (search)
    POST   /api/v1/admin/users                    create user
    GET    /api/v1/admin/users/<id>               user with roles + effective permissions
    PUT    /api/v1/admin/users/<id>/roles         replace role assignments {role_ids}
    GET    /api/v1/admin/roles                    system + tenant roles
    POST   /api/v1/admin/roles                    create tenant role {name, permissions}
    GET    /api/v1/admin/permissions              catalogue grouped by module
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, paginate_query, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.models.auth import Permission, Role
from siteops.services import core_service, permission_service
from siteops.utils.errors import E, api_error, register_error_handlers
from siteops.utils.helpers import db_commit_or_error, require_fields

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@require_permission("Core.ManageUsers")
def list_users():
    items, total = paginate_query(core_service.list_users(current_tenant_id(), request.args.get("search")))
    return jsonify({"items": [u.to_dict(include_roles=True) for u in items], "total": total})


@admin_bp.route("/users", methods=["POST"])
@require_permission("Core.ManageUsers")
def create_user():
    user = core_service.create_user(current_tenant_id(), request_data())
    err = db_commit_or_error()
    if err:
        return err
    return created(user.to_dict(include_roles=True), url_for("admin.get_user", user_id=user.id))


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@require_permission("Core.ManageUsers")
def get_user(user_id):
    user = core_service.get_user(current_tenant_id(), user_id)
    d = user.to_dict(include_roles=True)
    d["permissions"] = sorted(permission_service.get_user_permissions(user.id))
    return jsonify(d)


@admin_bp.route("/users/<int:user_id>/roles", methods=["PUT"])
@require_permission("Core.ManageRoles")
def set_user_roles(user_id):
    role_ids = request_data().get("role_ids")
    if not isinstance(role_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "role_ids must be a list")
    user = core_service.get_user(current_tenant_id(), user_id)
    roles = permission_service.set_user_roles(user, role_ids)
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Roles for user %d set to %s", user.id, roles, extra={"tenant_id": user.tenant_id})
    return jsonify(user.to_dict(include_roles=True))


# ═══════════════════════════════════════════════════════════════
# Roles & permissions
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/roles", methods=["GET"])
@require_permission("Core.ManageRoles")
def list_roles():
    roles = (
        Role.query
        .filter((Role.tenant_id.is_(None)) | (Role.tenant_id == current_tenant_id()))
        .order_by(Role.is_system.desc(), Role.name)
        .all()
    )
    return jsonify({"roles": [r.to_dict(include_permissions=True) for r in roles]})


@admin_bp.route("/roles", methods=["POST"])
@require_permission("Core.ManageRoles")
def create_role():
    data = request_data()
    require_fields(data, "name")
    codenames = data.get("permissions") or []
    if not isinstance(codenames, list):
        return api_error(E.VALIDATION_INVALID, "permissions must be a list of codenames")
    role = permission_service.create_role(
        current_tenant_id(), data["name"].strip(), codenames, data.get("description"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(role.to_dict(include_permissions=True)), 201


@admin_bp.route("/permissions", methods=["GET"])
@require_permission("Core.ManageRoles")
def list_permissions():
    modules = {}
    for perm in Permission.query.order_by(Permission.module, Permission.codename).all():
        modules.setdefault(perm.module, []).append(perm.to_dict())
    return jsonify({"permissions": modules})

"""
Permission Decorators: RBAC guards for route functions.

Usage:
    @stock_orders_bp.route("/<int:order_id>/approve", methods=["POST"])
    @require_permission("StockManagement.ApproveOrders")
    def approve_order(order_id):
        ...

    @stock_bp.route("/adjustments", methods=["POST"])
    @require_any_permission("StockManagement.Stocktake", "StockManagement.Admin")
    def create_adjustment():
        ...

jwt_auth answers unauthenticated /api/v1 calls before these run, so a
missing g.jwt_user_id only happens outside the API tree and is denied.
"""

import functools
import logging

from flask import g, jsonify

from siteops.services.permission_service import has_any_permission, has_permission

logger = logging.getLogger(__name__)


def _guard(allowed, denial):
    """Wrap a view so it only runs when ``allowed(user_id)`` holds."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = g.get("jwt_user_id")
            if user_id is None:
                return jsonify({"error": "Authentication required"}), 401
            if not allowed(user_id):
                logger.warning("User %d denied %s: needs %s", user_id, f.__name__, denial)
                return jsonify({"error": "Permission denied", **denial}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_permission(codename: str):
    """Require ``codename``; holders of the Admin role always pass."""
    return _guard(lambda uid: has_permission(uid, codename), {"required": codename})


def require_any_permission(*codenames: str):
    """Require at least one of ``codenames``."""
    wanted = list(codenames)
    return _guard(lambda uid: has_any_permission(uid, wanted), {"required_any": wanted})


def current_user_can(codename: str) -> bool:
    """Non-decorator check, e.g. for stripping costing fields from a response."""
    user_id = g.get("jwt_user_id")
    return user_id is not None and has_permission(user_id, codename)

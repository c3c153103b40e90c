"""
Tenant Context Middleware: pins each authenticated request to one tenant.

Runs after jwt_auth. For a request that carries a valid token:
  1. the token must name a tenant
  2. that tenant must exist and be active
  3. the token's user must be an active member of it

Then g.tenant is set and services receive its id via current_tenant_id().
Failures answer 403: the caller is authenticated but not admitted.
"""

import logging

from flask import g, jsonify, request

from siteops.middleware.jwt_auth import is_protected
from siteops.models import db
from siteops.models.auth import Tenant, User

logger = logging.getLogger(__name__)


def current_tenant_id() -> int:
    """Tenant of the current request. Only valid behind the middleware."""
    return g.tenant.id


def _forbidden(message):
    return jsonify({"error": message}), 403


def init_tenant_context(app):
    @app.before_request
    def _tenant_context():
        g.tenant = None
        if not is_protected(request.path) or g.get("jwt_user_id") is None:
            return None

        tenant_id = g.get("jwt_tenant_id")
        if tenant_id is None:
            return _forbidden("Token has no tenant")

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("Token names unknown tenant %s", tenant_id)
            return _forbidden("Tenant not found")
        if not tenant.is_active:
            logger.warning("Request for deactivated tenant %s", tenant.slug, extra={"tenant_id": tenant.id})
            return _forbidden("Tenant account is deactivated")

        user = db.session.get(User, g.jwt_user_id)
        if user is None or user.tenant_id != tenant.id or not user.is_active:
            logger.warning("User %s not admitted to tenant %s", g.jwt_user_id, tenant.id,
                           extra={"tenant_id": tenant.id})
            return _forbidden("User is not active in this tenant")

        g.tenant = tenant
        g.jwt_user_name = g.jwt_user_name or user.full_name
        return None

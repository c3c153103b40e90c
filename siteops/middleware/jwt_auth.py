"""
JWT Auth Middleware: turns the Bearer token into g.jwt_* values.

Every /api/v1 path except the public ones needs a valid access token.
Missing, expired or malformed tokens get a 401 before any view runs.

Sets:
    g.jwt_user_id    int
    g.jwt_tenant_id  int | None
    g.jwt_roles      list[str]
    g.jwt_user_name  display name written to audit fields (approved_by, ...)
"""

import logging

import jwt as pyjwt
from flask import g, request

from siteops.services.jwt_service import decode_access_token
from siteops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"
PUBLIC_PREFIXES = ("/api/v1/health",)


def is_protected(path: str) -> bool:
    """True for API paths that need an authenticated caller."""
    return path.startswith(API_PREFIX) and not path.startswith(PUBLIC_PREFIXES)


def _bearer_token():
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    return token.strip() if scheme == "Bearer" and token.strip() else None


def init_jwt_middleware(app):
    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.jwt_roles = []
        g.jwt_user_name = None

        if request.method == "OPTIONS" or not is_protected(request.path):
            return None

        token = _bearer_token()
        if token is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")

        try:
            claims = decode_access_token(token)
            user_id = int(claims["sub"])
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token has expired")
        except (pyjwt.InvalidTokenError, KeyError, ValueError, TypeError):
            logger.info("Rejected bearer token on %s %s", request.method, request.path)
            return api_error(E.UNAUTHORIZED, "Invalid token")

        g.jwt_user_id = user_id
        g.jwt_tenant_id = claims.get("tenant_id")
        g.jwt_roles = claims.get("roles") or []
        g.jwt_user_name = claims.get("name")
        return None

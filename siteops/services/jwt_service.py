"""
JWT Service: access-token generation and verification.

Access token: 60 minutes (configurable via JWT_ACCESS_EXPIRES)
Algorithm:    HS256

Token payload:
{
    "sub": "<user_id>",          # string, per RFC 7519
    "tenant_id": <tenant_id>,
    "roles": ["SiteManager", ...],
    "name": "Jane Murphy",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

There is no login endpoint; tokens are minted here for tooling and tests
(``flask issue-token``) and by whatever identity provider fronts the API.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

DEFAULT_ACCESS_EXPIRES = 3600
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES))


def generate_access_token(
    user_id: int,
    tenant_id: int | None,
    roles: list[str],
    name: str | None = None,
    expires_in: int | None = None,
) -> str:
    """Generate a signed access token for one user."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "roles": roles,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=expires_in if expires_in is not None else _get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    if name:
        payload["name"] = name
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def token_for_user(user, expires_in: int | None = None) -> str:
    """Mint a token from a User row (roles and display name included)."""
    return generate_access_token(
        user.id, user.tenant_id, user.role_names, name=user.full_name, expires_in=expires_in,
    )


def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT.

    Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError on failure.
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")

"""
SiteOps Backend
Blueprint registry and shared request helpers.
"""

from flask import g, jsonify, request


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit:  max items (default 50, clamped to 1..max_limit)
        offset: starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = max(1, min(int(request.args.get("limit", default_limit)), max_limit))
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def current_user_name():
    """Display name of the JWT user, used for approved_by / requested_by stamps."""
    return getattr(g, "jwt_user_name", None) or "System"


def created(payload, location):
    """201 response carrying the new resource and its ``Location`` header."""
    response = jsonify(payload)
    response.status_code = 201
    response.headers["Location"] = location
    return response


def request_data():
    """JSON body of the current request, ``{}`` when absent or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def query_flag(name, default=False):
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")

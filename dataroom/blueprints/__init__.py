"""
Data Room Governance Engine
Blueprint registry and shared request helpers.
"""

from flask import current_app, g, request

from dataroom.core.exceptions import InvalidInputError
from dataroom.models.audit import ActorIdentity
from dataroom.utils.helpers import parse_datetime


def get_dataroom():
    """The DataRoom facade bound to the current app."""
    return current_app.extensions["dataroom"]


def current_user():
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or None
    )


def request_actor() -> ActorIdentity:
    """Actor identity for the access log, built from X-User* headers."""
    user_id = current_user()
    email = request.headers.get("X-User-Email") or None
    return ActorIdentity(
        user_id=user_id,
        user_name=request.headers.get("X-User-Name") or None,
        user_role=request.headers.get("X-User-Role") or None,
        email=email,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent") or None,
        is_anonymous=not (user_id or email),
    )


def json_object() -> dict:
    """Request JSON body as a dict; an empty or missing body gives {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError("JSON body must be an object", details={"body": type(data).__name__})
    return data


def request_id():
    return getattr(g, "request_id", None)


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an in-memory list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def date_range_arg():
    """(start, end) from ?from=&to= query params, or None when neither is set."""
    start = parse_datetime(request.args.get("from"))
    end = parse_datetime(request.args.get("to"))
    if start is None and end is None:
        return None
    return start, end


def bool_arg(name):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")

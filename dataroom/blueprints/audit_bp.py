"""
Data Room Governance Engine
Access log blueprint.

Endpoints:
    GET  /api/v1/access-log             — list / filter entries (newest first)
    POST /api/v1/access-log             — record an entry
    GET  /api/v1/access-log/statistics  — aggregate statistics
    GET  /api/v1/access-log/export      — CSV / JSON download
    POST /api/v1/access-log/clear       — authorized bulk clear
"""

from flask import Blueprint, Response, jsonify, request

from dataroom.blueprints import (
    bool_arg,
    current_user,
    date_range_arg,
    get_dataroom,
    json_object,
    paginate_list,
    request_actor,
)

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")

_MIMETYPES = {"csv": "text/csv", "json": "application/json"}


def _criteria():
    return {
        "action": request.args.get("action") or None,
        "document_id": request.args.get("document_id") or None,
        "session_id": request.args.get("session_id") or None,
        "date_range": date_range_arg(),
        "actor_id": request.args.get("actor") or None,
        "success": bool_arg("success"),
        "search": request.args.get("q") or None,
    }


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/access-log", methods=["GET"])
def list_access_log():
    """
    Return paginated access log entries with optional filters.

    Query params:
        action       — view | download | upload | share | delete
        document_id  — filter by document
        session_id   — filter by share session
        from, to     — inclusive ISO date/datetime bounds
        actor        — user id or email
        success      — true | false
        q            — free-text search
        limit/offset — pagination
    """
    entries = get_dataroom().query_access_log(**_criteria())
    items, total = paginate_list(entries)
    return jsonify({"items": [e.to_dict() for e in items], "total": total})


@audit_bp.route("/access-log", methods=["POST"])
def record_access():
    """Record an access event. The actor defaults to the request's X-User headers."""
    data = json_object()
    if "actor" not in data:
        data["actor"] = request_actor()
    entry = get_dataroom().record_access(data)
    return jsonify(entry.to_dict()), 201


@audit_bp.route("/access-log/statistics", methods=["GET"])
def access_statistics():
    return jsonify(get_dataroom().access_statistics())


@audit_bp.route("/access-log/export", methods=["GET"])
def export_access_log():
    fmt = (request.args.get("format") or "csv").lower()
    body = get_dataroom().export_access_log(fmt, **_criteria())
    return Response(
        body,
        mimetype=_MIMETYPES.get(fmt, "text/plain"),
        headers={"Content-Disposition": f"attachment; filename=access-log.{fmt}"},
    )


@audit_bp.route("/access-log/clear", methods=["POST"])
def clear_access_log():
    """Drop every entry. Requires X-User to be one of AUDIT_ADMINS."""
    removed = get_dataroom().clear_access_log(current_user())
    return jsonify({"removed": removed})

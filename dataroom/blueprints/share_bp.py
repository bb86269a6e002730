"""
Share session & NDA management blueprint.

Routes:
  GET    /share-sessions                    – list sessions (?active=true)
  POST   /share-sessions                    – create session + link
  GET    /share-sessions/statistics         – total / active / expired / revoked
  GET    /share-sessions/<sid>              – detail (does not count an access)
  POST   /share-sessions/<sid>/revoke       – deactivate (idempotent)
  GET    /share-sessions/<sid>/nda          – NDA requests (?status=&q=&sort=)
  POST   /share-sessions/<sid>/nda          – request an NDA signature
  GET    /share-sessions/<sid>/nda/statistics
  GET    /nda/<nda_id>                      – NDA detail
  POST   /nda/<nda_id>/sign                 – accept
  POST   /nda/<nda_id>/decline              – refuse
"""

from flask import Blueprint, jsonify, request

from dataroom.blueprints import bool_arg, get_dataroom, json_object, paginate_list, request_actor
from dataroom.utils.errors import E, api_error

share_bp = Blueprint("share_sessions", __name__, url_prefix="/api/v1")

_SESSION_OPTIONS = (
    "viewer_tier", "access_level", "nda_required", "nda_template",
    "nda_deadline_policy", "recipients",
)


def _now():
    return get_dataroom().clock()


# ═════════════════════════════════════════════════════════════════════════════
# SHARE SESSIONS
# ═════════════════════════════════════════════════════════════════════════════

@share_bp.route("/share-sessions", methods=["GET"])
def list_sessions():
    sessions = get_dataroom().list_share_sessions(active_only=bool_arg("active") is True)
    items, total = paginate_list(sessions)
    now = _now()
    return jsonify({"items": [s.to_dict(now) for s in items], "total": total})


@share_bp.route("/share-sessions", methods=["POST"])
def create_session():
    """Create a share session.

    Body: { name, document_ids: [...], expires_at?, viewer_tier?, access_level?,
            nda_required?, nda_template?, nda_deadline_policy?, recipients?,
            approval_workflow_id? }
    """
    data = json_object()
    document_ids = data.get("document_ids")
    if not isinstance(document_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "document_ids must be a non-empty array")

    options = {k: data[k] for k in _SESSION_OPTIONS if k in data}
    session = get_dataroom().create_share_session(
        data.get("name") or "",
        document_ids,
        data.get("expires_at"),
        actor=request_actor(),
        approval_workflow_id=data.get("approval_workflow_id"),
        **options,
    )
    return jsonify(session.to_dict(_now())), 201


@share_bp.route("/share-sessions/statistics", methods=["GET"])
def session_statistics():
    return jsonify(get_dataroom().shares.session_statistics())


@share_bp.route("/share-sessions/<sid>", methods=["GET"])
def get_session(sid):
    session = get_dataroom().get_share_session(sid)
    return jsonify(session.to_dict(_now()))


@share_bp.route("/share-sessions/<sid>/revoke", methods=["POST"])
def revoke_session(sid):
    session = get_dataroom().revoke_share_session(sid, actor=request_actor())
    return jsonify(session.to_dict(_now()))


# ═════════════════════════════════════════════════════════════════════════════
# NDA
# ═════════════════════════════════════════════════════════════════════════════

@share_bp.route("/share-sessions/<sid>/nda", methods=["GET"])
def list_nda_requests(sid):
    room = get_dataroom()
    room.get_share_session(sid)
    ndas = room.ndas.list_requests(
        sid,
        status=request.args.get("status"),
        search=request.args.get("q"),
        sort_by=request.args.get("sort", "requested_at"),
    )
    items, total = paginate_list(ndas)
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@share_bp.route("/share-sessions/<sid>/nda/statistics", methods=["GET"])
def nda_statistics(sid):
    room = get_dataroom()
    room.get_share_session(sid)
    return jsonify(room.ndas.statistics(sid))


@share_bp.route("/share-sessions/<sid>/nda", methods=["POST"])
def request_nda(sid):
    """Body: { signer: {name, email, company?, title?} | name, email, ...,
              deadline_policy?, template?, message? }"""
    data = json_object()
    signer = data.get("signer") or {
        k: data.get(k) for k in ("name", "email", "company", "title")
    }
    if not isinstance(signer, dict):
        return api_error(E.VALIDATION_INVALID, "signer must be an object")
    nda = get_dataroom().request_nda(
        sid,
        signer,
        data.get("deadline_policy"),
        template=data.get("template"),
        custom_message=data.get("message"),
    )
    return jsonify(nda.to_dict()), 201


@share_bp.route("/nda/<nda_id>", methods=["GET"])
def get_nda(nda_id):
    return jsonify(get_dataroom().get_nda(nda_id).to_dict())


@share_bp.route("/nda/<nda_id>/sign", methods=["POST"])
def sign_nda(nda_id):
    """Body: { email? }. When given it must match the intended signer."""
    data = json_object()
    nda = get_dataroom().sign_nda(nda_id, data.get("email"))
    return jsonify(nda.to_dict())


@share_bp.route("/nda/<nda_id>/decline", methods=["POST"])
def decline_nda(nda_id):
    """Body: { email?, reason? }"""
    data = json_object()
    nda = get_dataroom().decline_nda(nda_id, data.get("email"), data.get("reason"))
    return jsonify(nda.to_dict())

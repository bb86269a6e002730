"""
Public share-link blueprint — what a link visitor hits.

Routes:
  GET /share/<sid>                     – resolve the link (counts one access
                                         per X-Request-ID)
  GET /share/<sid>/documents/<doc_id>  – open one document (?action=download)

The visitor's identity comes from X-User / X-User-Email headers; NDA-gated
sessions also accept ?email= for visitors without an account.
"""

from dataclasses import replace

from flask import Blueprint, jsonify, request

from dataroom.blueprints import get_dataroom, request_actor, request_id
from dataroom.services.visibility import filter_visible

share_link_bp = Blueprint("share_link", __name__, url_prefix="/api/v1")


def _visitor():
    actor = request_actor()
    email = request.args.get("email")
    if email and not actor.email:
        actor = replace(actor, email=email, is_anonymous=False)
    return actor


@share_link_bp.route("/share/<sid>", methods=["GET"])
def resolve_link(sid):
    room = get_dataroom()
    session = room.resolve_share_session(sid, actor=_visitor(), request_id=request_id())
    docs = [room.store.documents.get(d) for d in sorted(session.document_ids)]
    visible = filter_visible([d for d in docs if d is not None], session.viewer_tier)
    return jsonify({
        "session": {
            "id": session.id,
            "name": session.name,
            "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            "access_count": session.access_count,
            "access_level": session.access_level,
            "nda_required": session.nda_required,
            "nda_template": session.nda_template if session.nda_required else None,
        },
        "documents": [d.to_dict() for d in visible],
    })


@share_link_bp.route("/share/<sid>/documents/<doc_id>", methods=["GET"])
def open_document(sid, doc_id):
    action = request.args.get("action", "view")
    doc = get_dataroom().access_document(sid, doc_id, actor=_visitor(), action=action)
    return jsonify({"document": doc.to_dict(), "action": action})

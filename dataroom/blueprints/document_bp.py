"""
Document feed blueprint.

Routes:
  GET  /documents                    – list (filters: tier, category, q)
  POST /documents                    – register one record or {"documents": [...]}
  PUT  /documents/<doc_id>/visibility – change a document's visibility
"""

from flask import Blueprint, jsonify, request

from dataroom.blueprints import get_dataroom, json_object, paginate_list
from dataroom.models.document import Visibility
from dataroom.utils.errors import E, api_error

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1")


@document_bp.route("/documents", methods=["GET"])
def list_documents():
    tier = request.args.get("tier")
    docs = get_dataroom().list_documents(
        viewer_tier=tier or None,
        category=request.args.get("category"),
        search=request.args.get("q"),
    )
    items, total = paginate_list(docs)
    return jsonify({"items": [d.to_dict() for d in items], "total": total})


@document_bp.route("/documents", methods=["POST"])
def register_documents():
    """Body: a document object, a list of them, or {"documents": [...]}."""
    data = request.get_json(silent=True)
    if isinstance(data, dict) and "documents" in data:
        data = data["documents"]
    if isinstance(data, dict):
        doc = get_dataroom().register_document(data)
        return jsonify(doc.to_dict()), 201
    if isinstance(data, list) and data:
        docs = get_dataroom().register_documents(data)
        return jsonify({"items": [d.to_dict() for d in docs], "total": len(docs)}), 201
    return api_error(E.VALIDATION_REQUIRED, "A document object or a non-empty list is required")


@document_bp.route("/documents/<doc_id>/visibility", methods=["PUT"])
def update_visibility(doc_id):
    """Body: { visibility: public | investors | team | private }"""
    data = json_object()
    visibility = data.get("visibility")
    if visibility not in {v.value for v in Visibility}:
        return api_error(
            E.VALIDATION_INVALID,
            f"visibility must be one of {[v.value for v in Visibility]}",
        )
    doc = get_dataroom().update_document_visibility(doc_id, visibility)
    return jsonify(doc.to_dict())

"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — engine counters (sessions, NDA, access log)
"""

from flask import Blueprint, current_app, jsonify

from dataroom.blueprints import get_dataroom

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness with a snapshot of engine state."""
    room = get_dataroom()
    checks = {
        "documents": room.documents.counts_by_visibility(),
        "share_sessions": room.shares.session_statistics(),
        "nda_requests": room.ndas.statistics(),
        "access_log": {"entries": len(room.audit)},
        "app": {
            "name": "Data Room Governance Engine",
            "debug": current_app.debug,
            "testing": current_app.testing,
        },
    }
    return jsonify({"status": "ok", "checks": checks}), 200

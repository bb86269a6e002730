"""
Approval Workflow Blueprint.

Routes:
  GET    /approval-templates                     – available stage templates
  POST   /approval-workflows                     – create workflow (draft)
  GET    /approval-workflows?scenario_id=        – workflows for a scenario
  GET    /approval-workflows/<wid>               – workflow detail
  POST   /approval-workflows/<wid>/submit        – draft -> pending
  POST   /approval-workflows/<wid>/decide        – approve / reject / request revision
  GET    /approvals/pending                      – my pending approvals
"""

from flask import Blueprint, jsonify, request

from dataroom.blueprints import current_user, get_dataroom, json_object
from dataroom.services.approval_service import ApprovalWorkflowEngine
from dataroom.utils.errors import E, api_error

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")


@approval_bp.route("/approval-templates", methods=["GET"])
def list_templates():
    return jsonify(ApprovalWorkflowEngine.templates())


@approval_bp.route("/approval-workflows", methods=["POST"])
def create_workflow():
    """Create a workflow from a template.

    Body: { scenario_id, template: simple | standard | complex }
    """
    data = json_object()
    wf = get_dataroom().create_approval_workflow(
        data.get("scenario_id") or "",
        data.get("template") or "standard",
        created_by=current_user(),
    )
    return jsonify(wf.to_dict()), 201


@approval_bp.route("/approval-workflows", methods=["GET"])
def list_workflows():
    scenario_id = request.args.get("scenario_id")
    if not scenario_id:
        return api_error(E.VALIDATION_REQUIRED, "scenario_id query parameter is required")
    workflows = get_dataroom().approvals.workflows_for_scenario(scenario_id)
    return jsonify([w.to_dict() for w in workflows])


@approval_bp.route("/approval-workflows/<wid>", methods=["GET"])
def get_workflow(wid):
    return jsonify(get_dataroom().approvals.get_workflow(wid).to_dict())


@approval_bp.route("/approval-workflows/<wid>/submit", methods=["POST"])
def submit_workflow(wid):
    wf = get_dataroom().submit_for_approval(wid, submitted_by=current_user())
    return jsonify(wf.to_dict())


@approval_bp.route("/approval-workflows/<wid>/decide", methods=["POST"])
def decide(wid):
    """Record a decision for the acting approver.

    Body: { stage_id, action: approved | rejected | revision_requested,
            comment?, suggested_changes?: [..], approver_id? }
    The approver is X-User unless approver_id is given.
    """
    data = json_object()
    stage_id = data.get("stage_id")
    approver_id = data.get("approver_id") or current_user()
    if not stage_id:
        return api_error(E.VALIDATION_REQUIRED, "stage_id is required")
    if not approver_id:
        return api_error(E.VALIDATION_REQUIRED, "approver_id or X-User header is required")
    if not data.get("action"):
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    wf = get_dataroom().decide(
        wid,
        stage_id,
        approver_id,
        data["action"],
        data.get("comment"),
        suggested_changes=data.get("suggested_changes") or None,
    )
    return jsonify(wf.to_dict())


@approval_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    """Workflows whose active stage is waiting on the current user."""
    user = request.args.get("user") or current_user()
    if not user:
        return api_error(E.VALIDATION_REQUIRED, "user query parameter or X-User header is required")
    workflows = get_dataroom().approvals.pending_for_approver(user)
    return jsonify([
        {
            "workflow_id": w.id,
            "scenario_id": w.scenario_id,
            "stage": w.current_stage.to_dict() if w.current_stage else None,
            "submitted_by": w.submitted_by,
            "submitted_at": w.submitted_at.isoformat() if w.submitted_at else None,
        }
        for w in workflows
    ])

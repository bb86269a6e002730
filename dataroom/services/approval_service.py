"""
Approval Workflow Engine — staged sign-off before a bundle may be shared.

Flow:
    create_workflow  -> draft, stages built from a template and the
                        role -> approvers directory
    submit           -> pending, stage 0 active, its approvers notified,
                        due dates re-anchored to the submission time
    decide(approved) -> completes the current stage (first approval, or all
                        approvers when ``requires_all``); the last stage
                        approves the workflow, otherwise the next stage is
                        activated and notified
    decide(rejected | revision_requested)
                     -> closes the workflow immediately; later stages stay
                        untouched

Every decision is appended to ``history`` and notifies the submitter.
Decisions on one workflow are serialised by its key lock.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime

from dataroom.core.exceptions import (
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
    WorkflowClosedError,
)
from dataroom.models.approval import (
    WORKFLOW_TEMPLATES,
    ApprovalAction,
    ApprovalWorkflow,
    DecisionAction,
    Stage,
    StageStatus,
    WorkflowStatus,
)
from dataroom.models.audit import AccessAction, ActorIdentity
from dataroom.services.audit_log import AccessAuditLog
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.services.notification import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
)
from dataroom.utils.helpers import utc_now

logger = logging.getLogger(__name__)


def _coerce_decision(action) -> DecisionAction:
    try:
        return action if isinstance(action, DecisionAction) else DecisionAction(str(action).lower())
    except ValueError:
        raise InvalidInputError(
            f"action must be one of {[a.value for a in DecisionAction]}",
            details={"action": str(action)},
        ) from None


def _approval_request_events(wf: ApprovalWorkflow, stage: Stage) -> list[NotificationEvent]:
    return [
        NotificationEvent(
            user_id=approver,
            type=NotificationType.APPROVAL_REQUEST,
            payload={
                "workflow_id": wf.id,
                "scenario_id": wf.scenario_id,
                "stage_id": stage.id,
                "stage_name": stage.name,
                "due_date": stage.due_date.isoformat() if stage.due_date else None,
            },
        )
        for approver in sorted(stage.approvers)
    ]


class ApprovalWorkflowEngine:

    def __init__(
        self,
        store: DataRoomStore,
        audit: AccessAuditLog,
        *,
        directory: Mapping[str, Iterable[str]],
        clock: Callable[[], datetime] = utc_now,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._workflows = store.approval_workflows
        self._audit = audit
        self._directory = {role: frozenset(users) for role, users in (directory or {}).items()}
        self._clock = clock
        self._dispatcher = dispatcher or NotificationDispatcher(None)

    @staticmethod
    def templates() -> dict:
        return {
            name: [
                {
                    "name": t.name,
                    "description": t.description,
                    "approver_role": t.approver_role,
                    "due_in_days": t.due_in.days,
                    "requires_all": t.requires_all,
                }
                for t in stages
            ]
            for name, stages in WORKFLOW_TEMPLATES.items()
        }

    # ── Create / submit ──────────────────────────────────────────────────

    def create_workflow(self, scenario_id: str, template: str = "standard",
                        created_by: str | None = None) -> ApprovalWorkflow:
        scenario_id = (scenario_id or "").strip()
        if not scenario_id:
            raise InvalidInputError("scenario_id is required", details={"scenario_id": "required"})
        stage_templates = WORKFLOW_TEMPLATES.get(template)
        if stage_templates is None:
            raise InvalidInputError(
                f"template must be one of {sorted(WORKFLOW_TEMPLATES)}", details={"template": template}
            )

        now = self._clock()
        stages = []
        for order, tpl in enumerate(stage_templates):
            approvers = self._directory.get(tpl.approver_role, frozenset())
            if not approvers:
                raise InvalidInputError(
                    f"No approvers configured for role {tpl.approver_role!r}",
                    details={"role": tpl.approver_role},
                )
            stages.append(Stage(
                id=f"stage-{order + 1}",
                name=tpl.name,
                description=tpl.description,
                order=order,
                approvers=approvers,
                due_in=tpl.due_in,
                requires_all=tpl.requires_all,
                due_date=now + tpl.due_in,
            ))

        wf = ApprovalWorkflow(
            id=uuid.uuid4().hex,
            scenario_id=scenario_id,
            template=template,
            stages=stages,
            created_at=now,
            created_by=created_by,
        )
        with self._workflows.lock(wf.id):
            self._workflows.add(wf.id, wf)
            result = copy.deepcopy(wf)
        logger.info("Approval workflow created: %s for %s (template=%s)", wf.id, scenario_id, template)
        return result

    def submit(self, workflow_id: str, submitted_by: str | None = None) -> ApprovalWorkflow:
        with self._workflows.lock(workflow_id):
            wf = self._workflows.require(workflow_id)
            if wf.is_closed:
                raise WorkflowClosedError("ApprovalWorkflow", workflow_id, wf.status.value)
            if wf.status != WorkflowStatus.DRAFT:
                raise InvalidInputError(f"Workflow {workflow_id} has already been submitted")

            now = self._clock()
            wf.status = WorkflowStatus.PENDING
            wf.submitted_at = now
            wf.submitted_by = submitted_by or wf.created_by
            wf.current_stage_index = 0
            for stage in wf.stages:
                stage.due_date = now + stage.due_in
            events = _approval_request_events(wf, wf.stages[0])
            result = copy.deepcopy(wf)

        logger.info("Approval workflow submitted: %s by %s", workflow_id, result.submitted_by)
        self._dispatcher.dispatch(events)
        return result

    # ── Decide ───────────────────────────────────────────────────────────

    def decide(
        self,
        workflow_id: str,
        stage_id: str,
        approver_id: str,
        action,
        comment: str | None = None,
        suggested_changes: Iterable[str] | None = None,
    ) -> ApprovalWorkflow:
        """Record one approver's decision on a stage.

        Raises:
            NotFoundError: unknown workflow or stage.
            WorkflowClosedError: workflow already approved, rejected or sent
                back for revision.
            UnauthorizedError: ``approver_id`` is not an approver of the stage.
            InvalidInputError: workflow still a draft, unknown action, approval
                of a stage that is not current, or a repeated approval.
        """
        events: list[NotificationEvent] = []
        with self._workflows.lock(workflow_id):
            wf = self._workflows.require(workflow_id)
            if wf.is_closed:
                raise WorkflowClosedError("ApprovalWorkflow", workflow_id, wf.status.value)
            if wf.status == WorkflowStatus.DRAFT:
                raise InvalidInputError(f"Workflow {workflow_id} has not been submitted")
            stage = wf.stage_by_id(stage_id)
            if stage is None:
                raise NotFoundError("Stage", stage_id)
            if approver_id not in stage.approvers:
                raise UnauthorizedError(
                    f"{approver_id} is not an approver of stage {stage_id}", actor=approver_id
                )
            decision = _coerce_decision(action)
            now = self._clock()

            if decision == DecisionAction.APPROVED:
                if stage is not wf.current_stage:
                    raise InvalidInputError(
                        f"Stage {stage_id} is not the active stage",
                        details={"current_stage": wf.current_stage.id if wf.current_stage else None},
                    )
                if approver_id in stage.approved_by:
                    raise InvalidInputError(f"{approver_id} has already approved stage {stage_id}")
                stage.approved_by.add(approver_id)
            else:
                wf.status = WorkflowStatus(decision.value)
                wf.completed_at = now
                wf.final_decision = decision.value
                wf.rejection_reason = comment

            wf.history.append(ApprovalAction(
                id=uuid.uuid4().hex,
                stage_id=stage_id,
                approver_id=approver_id,
                action=decision,
                timestamp=now,
                comment=comment,
                suggested_changes=tuple(suggested_changes or ()),
            ))

            if decision == DecisionAction.APPROVED and stage.is_complete:
                stage.status = StageStatus.APPROVED
                if wf.current_stage_index == len(wf.stages) - 1:
                    wf.status = WorkflowStatus.APPROVED
                    wf.completed_at = now
                    wf.final_decision = WorkflowStatus.APPROVED.value
                else:
                    wf.current_stage_index += 1
                    events.extend(_approval_request_events(wf, wf.stages[wf.current_stage_index]))

            if wf.submitted_by:
                events.append(NotificationEvent(
                    user_id=wf.submitted_by,
                    type=NotificationType.APPROVAL_DECISION,
                    payload={
                        "workflow_id": wf.id,
                        "scenario_id": wf.scenario_id,
                        "stage_id": stage_id,
                        "approver_id": approver_id,
                        "action": decision.value,
                        "comment": comment,
                        "workflow_status": wf.status.value,
                    },
                ))
            result = copy.deepcopy(wf)

        self._audit.log(
            AccessAction.SHARE,
            actor=ActorIdentity(user_id=approver_id),
            success=decision == DecisionAction.APPROVED,
            error_message=None if decision == DecisionAction.APPROVED else f"Approval {decision.value}",
            details={
                "event": "approval_decision",
                "workflow_id": workflow_id,
                "scenario_id": result.scenario_id,
                "stage_id": stage_id,
            },
        )
        logger.info("Approval decision: %s %s on %s/%s -> workflow %s",
                    approver_id, decision.value, workflow_id, stage_id, result.status.value)
        self._dispatcher.dispatch(events)
        return result

    # ── Query ────────────────────────────────────────────────────────────

    def get_workflow(self, workflow_id: str) -> ApprovalWorkflow:
        with self._workflows.lock(workflow_id):
            return copy.deepcopy(self._workflows.require(workflow_id))

    def is_approved(self, workflow_id: str) -> bool:
        return self.get_workflow(workflow_id).status == WorkflowStatus.APPROVED

    def workflows_for_scenario(self, scenario_id: str) -> list[ApprovalWorkflow]:
        items = [copy.deepcopy(w) for w in self._workflows.values() if w.scenario_id == scenario_id]
        return sorted(items, key=lambda w: w.created_at, reverse=True)

    def pending_for_approver(self, user_id: str) -> list[ApprovalWorkflow]:
        """Pending workflows whose active stage still waits on ``user_id``."""
        result = []
        for wf in self._workflows.values():
            with self._workflows.lock(wf.id):
                stage = wf.current_stage
                if (
                    wf.status == WorkflowStatus.PENDING
                    and stage is not None
                    and user_id in stage.approvers
                    and user_id not in stage.approved_by
                ):
                    result.append(copy.deepcopy(wf))
        return sorted(result, key=lambda w: w.submitted_at or w.created_at)

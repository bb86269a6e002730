"""
Approval workflow model.

A workflow walks an ordered list of stages. Each stage is owned by a set of
approvers; ``requires_all`` stages complete only when every approver has
approved. A rejection or revision request at any stage closes the workflow
immediately and the remaining stages are left untouched.

Templates:
    simple    1 stage   (admin)
    standard  2 stages  (manager -> admin)
    complex   3 stages  (analyst -> manager -> admin, last requires all)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from dataroom.utils.helpers import isoformat_or_none


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class StageStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class DecisionAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


# No decision is accepted once a workflow reaches one of these.
CLOSED_STATUSES = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.REVISION_REQUESTED,
})


@dataclass(frozen=True)
class StageTemplate:
    name: str
    description: str
    approver_role: str
    due_in: timedelta
    requires_all: bool = False


WORKFLOW_TEMPLATES: dict[str, tuple[StageTemplate, ...]] = {
    "simple": (
        StageTemplate("Admin approval", "Final approval by an administrator",
                      "admin", timedelta(days=2)),
    ),
    "standard": (
        StageTemplate("Manager review", "First review by a department manager",
                      "manager", timedelta(days=1)),
        StageTemplate("Executive approval", "Final executive approval",
                      "admin", timedelta(days=3)),
    ),
    "complex": (
        StageTemplate("Peer review", "Review by fellow analysts",
                      "analyst", timedelta(days=1)),
        StageTemplate("Manager review", "Second review by a department manager",
                      "manager", timedelta(days=2)),
        StageTemplate("Executive approval", "Every executive must approve",
                      "admin", timedelta(days=5), requires_all=True),
    ),
}


@dataclass
class Stage:
    id: str
    name: str
    order: int
    approvers: frozenset[str]
    due_in: timedelta
    requires_all: bool = False
    status: StageStatus = StageStatus.PENDING
    due_date: datetime | None = None
    description: str = ""
    # approvers who have approved so far; kept even when the stage is incomplete
    approved_by: set[str] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        if self.requires_all:
            return bool(self.approvers) and self.approvers <= self.approved_by
        return bool(self.approved_by)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "approvers": sorted(self.approvers),
            "requires_all": self.requires_all,
            "status": self.status.value,
            "due_date": isoformat_or_none(self.due_date),
            "approved_by": sorted(self.approved_by),
        }


@dataclass(frozen=True)
class ApprovalAction:
    """One immutable row of a workflow's decision history."""
    id: str
    stage_id: str
    approver_id: str
    action: DecisionAction
    timestamp: datetime
    comment: str | None = None
    suggested_changes: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "approver_id": self.approver_id,
            "action": self.action.value,
            "comment": self.comment,
            "suggested_changes": list(self.suggested_changes),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ApprovalWorkflow:
    id: str
    scenario_id: str
    template: str
    stages: list[Stage]
    created_at: datetime
    status: WorkflowStatus = WorkflowStatus.DRAFT
    current_stage_index: int = 0
    history: list[ApprovalAction] = field(default_factory=list)
    created_by: str | None = None
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    final_decision: str | None = None
    rejection_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    @property
    def current_stage(self) -> Stage | None:
        if 0 <= self.current_stage_index < len(self.stages):
            return self.stages[self.current_stage_index]
        return None

    def stage_by_id(self, stage_id: str) -> Stage | None:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "template": self.template,
            "status": self.status.value,
            "current_stage_index": self.current_stage_index,
            "stages": [s.to_dict() for s in self.stages],
            "history": [a.to_dict() for a in self.history],
            "created_by": self.created_by,
            "submitted_by": self.submitted_by,
            "created_at": self.created_at.isoformat(),
            "submitted_at": isoformat_or_none(self.submitted_at),
            "completed_at": isoformat_or_none(self.completed_at),
            "final_decision": self.final_decision,
            "rejection_reason": self.rejection_reason,
        }

    def __repr__(self):
        return f"<ApprovalWorkflow {self.id}: {self.scenario_id} ({self.status.value})>"

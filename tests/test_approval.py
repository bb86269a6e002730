"""
Approval workflow engine tests.

Tests cover:
  - Templates (simple / standard / complex) and stage construction
  - submit(): due dates, notifications, draft-only
  - decide(): single-approver and requires_all stages, advancement,
    rejection short-circuit, revision requests, closed workflows
  - Authorization and validation errors
  - Notification failures never block a transition
  - Concurrent approvals on a requires_all stage
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta

import pytest

from dataroom.core.exceptions import (
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
    WorkflowClosedError,
)
from dataroom.models.approval import StageStatus, WorkflowStatus
from dataroom.services.notification import NotificationType

from conftest import APPROVERS, FailingNotifier, build_dataroom


def _submitted(dataroom, template="standard"):
    wf = dataroom.create_approval_workflow("scenario-42", template, created_by="founder")
    return dataroom.submit_for_approval(wf.id)


def _types_for(notifier, user):
    items, _ = notifier.list_for_recipient(user)
    return [n.type for n in reversed(items)]


# ═════════════════════════════════════════════════════════════════════════
# CREATE & SUBMIT
# ═════════════════════════════════════════════════════════════════════════

class TestCreateWorkflow:
    @pytest.mark.parametrize("template, roles", [
        ("simple", ["admin"]),
        ("standard", ["manager", "admin"]),
        ("complex", ["analyst", "manager", "admin"]),
    ])
    def test_stages_from_template(self, dataroom, template, roles):
        wf = dataroom.create_approval_workflow("scenario-1", template)
        assert wf.status == WorkflowStatus.DRAFT
        assert [s.id for s in wf.stages] == [f"stage-{i + 1}" for i in range(len(roles))]
        assert [s.approvers for s in wf.stages] == [frozenset(APPROVERS[r]) for r in roles]

    def test_complex_final_stage_requires_all(self, dataroom):
        wf = dataroom.create_approval_workflow("scenario-1", "complex")
        assert [s.requires_all for s in wf.stages] == [False, False, True]

    def test_unknown_template(self, dataroom):
        with pytest.raises(InvalidInputError):
            dataroom.create_approval_workflow("scenario-1", "baroque")

    def test_blank_scenario(self, dataroom):
        with pytest.raises(InvalidInputError):
            dataroom.create_approval_workflow(" ", "simple")

    def test_role_without_approvers(self, clock, notifier):
        room = build_dataroom(clock, notifier, approver_directory={"admin": ["admin-1"]})
        with pytest.raises(InvalidInputError):
            room.create_approval_workflow("scenario-1", "standard")

    def test_templates_listing(self, dataroom):
        templates = dataroom.approvals.templates()
        assert set(templates) == {"simple", "standard", "complex"}
        assert [s["due_in_days"] for s in templates["complex"]] == [1, 2, 5]


class TestSubmit:
    def test_submit_sets_pending_and_due_dates(self, dataroom, clock):
        wf = dataroom.create_approval_workflow("scenario-1", "standard", created_by="founder")
        clock.advance(hours=3)
        wf = dataroom.submit_for_approval(wf.id)
        assert wf.status == WorkflowStatus.PENDING
        assert wf.submitted_at == clock.now
        assert wf.submitted_by == "founder"
        assert [s.due_date for s in wf.stages] == [clock.now + timedelta(days=1),
                                                   clock.now + timedelta(days=3)]

    def test_first_stage_approvers_notified(self, dataroom, notifier):
        _submitted(dataroom)
        assert _types_for(notifier, "manager-1") == [NotificationType.APPROVAL_REQUEST.value]
        assert _types_for(notifier, "admin-1") == []

    def test_submit_twice(self, dataroom):
        wf = _submitted(dataroom)
        with pytest.raises(InvalidInputError):
            dataroom.submit_for_approval(wf.id)

    def test_decide_before_submit(self, dataroom):
        wf = dataroom.create_approval_workflow("scenario-1", "simple")
        with pytest.raises(InvalidInputError):
            dataroom.decide(wf.id, "stage-1", "admin-1", "approved")

    def test_unknown_workflow(self, dataroom):
        with pytest.raises(NotFoundError):
            dataroom.submit_for_approval("missing")


# ═════════════════════════════════════════════════════════════════════════
# DECIDE
# ═════════════════════════════════════════════════════════════════════════

class TestDecide:
    def test_simple_single_approval(self, dataroom, clock):
        wf = _submitted(dataroom, "simple")
        wf = dataroom.decide(wf.id, "stage-1", "admin-2", "approved", "Looks good")
        assert wf.status == WorkflowStatus.APPROVED
        assert wf.completed_at == clock.now
        assert wf.stages[0].status == StageStatus.APPROVED
        assert dataroom.approvals.is_approved(wf.id)

    def test_standard_advances_through_stages(self, dataroom, notifier):
        wf = _submitted(dataroom)
        wf = dataroom.decide(wf.id, "stage-1", "manager-1", "approved")
        assert wf.status == WorkflowStatus.PENDING
        assert wf.current_stage.id == "stage-2"
        assert _types_for(notifier, "admin-3") == [NotificationType.APPROVAL_REQUEST.value]

        wf = dataroom.decide(wf.id, "stage-2", "admin-3", "approved")
        assert wf.status == WorkflowStatus.APPROVED
        assert len(wf.history) == 2

    def test_requires_all_waits_for_every_approver(self, dataroom):
        wf = _submitted(dataroom, "complex")
        dataroom.decide(wf.id, "stage-1", "analyst-2", "approved")
        dataroom.decide(wf.id, "stage-2", "manager-1", "approved")
        dataroom.decide(wf.id, "stage-3", "admin-1", "approved")
        wf = dataroom.decide(wf.id, "stage-3", "admin-2", "approved")

        assert wf.status == WorkflowStatus.PENDING
        assert wf.stages[2].status == StageStatus.PENDING
        assert wf.stages[2].approved_by == {"admin-1", "admin-2"}

        wf = dataroom.decide(wf.id, "stage-3", "admin-3", "approved")
        assert wf.status == WorkflowStatus.APPROVED

    def test_reject_short_circuits(self, dataroom, notifier):
        wf = _submitted(dataroom, "complex")
        wf = dataroom.decide(wf.id, "stage-1", "analyst-1", "rejected", "Numbers do not add up")
        assert wf.status == WorkflowStatus.REJECTED
        assert wf.rejection_reason == "Numbers do not add up"
        assert wf.final_decision == "rejected"
        assert [s.status for s in wf.stages] == [StageStatus.PENDING] * 3
        assert _types_for(notifier, "manager-1") == []

    def test_reject_later_stage(self, dataroom):
        wf = _submitted(dataroom, "complex")
        dataroom.decide(wf.id, "stage-1", "analyst-1", "approved")
        wf = dataroom.decide(wf.id, "stage-2", "manager-1", "rejected")
        assert wf.status == WorkflowStatus.REJECTED
        assert wf.stages[2].approved_by == set()

    def test_revision_requested(self, dataroom):
        wf = _submitted(dataroom)
        wf = dataroom.decide(wf.id, "stage-1", "manager-1", "revision_requested", "Update Q3",
                             suggested_changes=["Restate churn", "Add cohort table"])
        assert wf.status == WorkflowStatus.REVISION_REQUESTED
        assert wf.history[-1].suggested_changes == ("Restate churn", "Add cohort table")

    def test_closed_workflow_rejects_decisions(self, dataroom):
        wf = _submitted(dataroom, "simple")
        dataroom.decide(wf.id, "stage-1", "admin-1", "rejected")
        with pytest.raises(WorkflowClosedError):
            dataroom.decide(wf.id, "stage-1", "admin-2", "approved")
        with pytest.raises(WorkflowClosedError):
            dataroom.submit_for_approval(wf.id)

    def test_approved_workflow_is_closed(self, dataroom):
        wf = _submitted(dataroom, "simple")
        dataroom.decide(wf.id, "stage-1", "admin-1", "approved")
        with pytest.raises(WorkflowClosedError):
            dataroom.decide(wf.id, "stage-1", "admin-2", "rejected")

    def test_non_approver(self, dataroom):
        wf = _submitted(dataroom)
        with pytest.raises(UnauthorizedError):
            dataroom.decide(wf.id, "stage-1", "admin-1", "approved")
        assert dataroom.approvals.get_workflow(wf.id).history == []

    def test_unknown_stage(self, dataroom):
        wf = _submitted(dataroom)
        with pytest.raises(NotFoundError):
            dataroom.decide(wf.id, "stage-9", "manager-1", "approved")

    def test_approving_future_stage(self, dataroom):
        wf = _submitted(dataroom)
        with pytest.raises(InvalidInputError):
            dataroom.decide(wf.id, "stage-2", "admin-1", "approved")

    def test_duplicate_approval(self, dataroom):
        wf = _submitted(dataroom, "complex")
        dataroom.decide(wf.id, "stage-1", "analyst-1", "approved")
        dataroom.decide(wf.id, "stage-2", "manager-1", "approved")
        dataroom.decide(wf.id, "stage-3", "admin-1", "approved")
        with pytest.raises(InvalidInputError):
            dataroom.decide(wf.id, "stage-3", "admin-1", "approved")

    def test_unknown_action(self, dataroom):
        wf = _submitted(dataroom)
        with pytest.raises(InvalidInputError):
            dataroom.decide(wf.id, "stage-1", "manager-1", "maybe")

    def test_submitter_notified_of_each_decision(self, dataroom, notifier):
        wf = _submitted(dataroom)
        dataroom.decide(wf.id, "stage-1", "manager-1", "approved")
        dataroom.decide(wf.id, "stage-2", "admin-1", "rejected")
        items, total = notifier.list_for_recipient("founder")
        assert total == 2
        assert [n.payload["action"] for n in items] == ["rejected", "approved"]
        assert items[0].payload["workflow_status"] == "rejected"

    def test_decisions_logged(self, dataroom):
        wf = _submitted(dataroom)
        dataroom.decide(wf.id, "stage-1", "manager-1", "rejected")
        [entry] = dataroom.query_access_log(actor_id="manager-1")
        assert entry.details["event"] == "approval_decision"
        assert entry.details["workflow_id"] == wf.id
        assert entry.details["scenario_id"] == "scenario-42"
        assert entry.document_id is None
        assert entry.success is False
        assert entry.actor.user_id == "manager-1"

    def test_decisions_stay_out_of_document_ranking(self, dataroom):
        wf = dataroom.submit_for_approval(dataroom.create_approval_workflow("scenario-42", "simple").id)
        dataroom.decide(wf.id, "stage-1", "admin-1", "approved")
        stats = dataroom.access_statistics()
        assert stats["top_documents"] == []
        assert stats["action_breakdown"]["share"] == 1

    def test_returned_workflow_is_a_copy(self, dataroom):
        wf = _submitted(dataroom)
        wf.stages[0].approved_by.add("manager-1")
        assert dataroom.approvals.get_workflow(wf.id).stages[0].approved_by == set()


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_pending_for_approver(self, dataroom):
        wf = _submitted(dataroom, "complex")
        assert [w.id for w in dataroom.approvals.pending_for_approver("analyst-1")] == [wf.id]
        assert dataroom.approvals.pending_for_approver("manager-1") == []
        dataroom.decide(wf.id, "stage-1", "analyst-1", "approved")
        assert dataroom.approvals.pending_for_approver("analyst-2") == []
        assert [w.id for w in dataroom.approvals.pending_for_approver("manager-1")] == [wf.id]

    def test_workflows_for_scenario(self, dataroom, clock):
        first = dataroom.create_approval_workflow("scenario-42", "simple")
        clock.advance(minutes=5)
        second = dataroom.create_approval_workflow("scenario-42", "simple")
        dataroom.create_approval_workflow("scenario-99", "simple")
        assert [w.id for w in dataroom.approvals.workflows_for_scenario("scenario-42")] == \
            [second.id, first.id]


# ═════════════════════════════════════════════════════════════════════════
# NOTIFIER FAILURES & CONCURRENCY
# ═════════════════════════════════════════════════════════════════════════

class TestNotifierFailure:
    def test_failing_notifier_does_not_block(self, clock):
        failing = FailingNotifier()
        room = build_dataroom(clock, failing)
        wf = room.create_approval_workflow("scenario-1", "standard", created_by="founder")
        room.submit_for_approval(wf.id)
        room.decide(wf.id, "stage-1", "manager-1", "approved")
        wf = room.decide(wf.id, "stage-2", "admin-1", "approved")
        assert wf.status == WorkflowStatus.APPROVED
        assert failing.attempts > 0

    def test_failure_is_logged(self, clock, caplog):
        room = build_dataroom(clock, FailingNotifier())
        wf = room.create_approval_workflow("scenario-1", "simple")
        with caplog.at_level("ERROR", logger="dataroom.services.notification"):
            room.submit_for_approval(wf.id)
        assert "Notification delivery failed" in caplog.text


class TestConcurrentDecisions:
    def test_parallel_approvals_on_requires_all_stage(self, dataroom):
        wf = _submitted(dataroom, "complex")
        dataroom.decide(wf.id, "stage-1", "analyst-1", "approved")
        dataroom.decide(wf.id, "stage-2", "manager-1", "approved")

        with ThreadPoolExecutor(max_workers=3) as executor:
            futures = [
                executor.submit(dataroom.decide, wf.id, "stage-3", admin, "approved")
                for admin in APPROVERS["admin"]
            ]
            for future in as_completed(futures):
                future.result()

        wf = dataroom.approvals.get_workflow(wf.id)
        assert wf.status == WorkflowStatus.APPROVED
        assert wf.stages[2].approved_by == set(APPROVERS["admin"])
        assert len(wf.history) == 5

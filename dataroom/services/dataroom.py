"""
DataRoom — single entry point over the governance engine.

Wires the keyed store, access log, share manager, NDA workflow and approval
engine around one clock and one notifier, and adds the cross-component
flows no single service owns:

    create_share_session  approval gate before the share manager runs
    access_document       session + visibility + download + NDA gate,
                          recorded exactly once per attempt

Usage:
    room = DataRoom.from_config(app.config)
    room.init_app(app)            # app.extensions["dataroom"]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime

from dataroom.core.exceptions import (
    AccessDeniedError,
    ExpiredError,
    NotFoundError,
    RevokedError,
)
from dataroom.models.approval import WorkflowStatus
from dataroom.models.audit import AccessAction, AccessLogEntry, ActorIdentity
from dataroom.models.document import Document, Visibility
from dataroom.services.approval_service import ApprovalWorkflowEngine
from dataroom.services.audit_log import AccessAuditLog
from dataroom.services.document_registry import DocumentRegistry
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.services.nda_service import NDAWorkflow
from dataroom.services.notification import InMemoryNotifier, NotificationDispatcher, Notifier
from dataroom.services.share_service import ShareSessionManager
from dataroom.utils.helpers import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000"


def _split_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


class DataRoom:

    def __init__(
        self,
        store: DataRoomStore | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        notifier: Notifier | None = None,
        base_url: str = DEFAULT_BASE_URL,
        default_share_expiry=None,
        default_nda_deadline: str | None = "7days",
        default_viewer_tier=Visibility.INVESTORS,
        audit_admins: Iterable[str] | None = None,
        approver_directory: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self.store = store or DataRoomStore()
        self.clock = clock
        self.notifier = notifier if notifier is not None else InMemoryNotifier(clock)
        dispatcher = NotificationDispatcher(self.notifier)

        self.audit = AccessAuditLog(self.store, clock=clock, admins=audit_admins)
        self.documents = DocumentRegistry(self.store)
        self.shares = ShareSessionManager(
            self.store, self.audit,
            base_url=base_url,
            clock=clock,
            default_expiry=default_share_expiry,
            default_viewer_tier=default_viewer_tier,
            dispatcher=dispatcher,
        )
        self.ndas = NDAWorkflow(
            self.store, self.audit,
            clock=clock,
            default_deadline=default_nda_deadline,
            dispatcher=dispatcher,
        )
        self.approvals = ApprovalWorkflowEngine(
            self.store, self.audit,
            directory=approver_directory or {},
            clock=clock,
            dispatcher=dispatcher,
        )

    @classmethod
    def from_config(cls, config: Mapping, *, clock: Callable[[], datetime] = utc_now,
                    notifier: Notifier | None = None, store: DataRoomStore | None = None) -> "DataRoom":
        return cls(
            store,
            clock=clock,
            notifier=notifier,
            base_url=config.get("SHARE_BASE_URL") or DEFAULT_BASE_URL,
            default_share_expiry=config.get("DEFAULT_SHARE_EXPIRY"),
            default_nda_deadline=config.get("DEFAULT_NDA_DEADLINE", "7days"),
            default_viewer_tier=config.get("DEFAULT_VIEWER_TIER", Visibility.INVESTORS),
            audit_admins=_split_list(config.get("AUDIT_ADMINS")),
            approver_directory=config.get("APPROVER_DIRECTORY") or {},
        )

    def init_app(self, app) -> "DataRoom":
        app.extensions["dataroom"] = self
        logger.info("Data room ready: base_url=%s", self.shares.base_url)
        return self

    # ── Documents ────────────────────────────────────────────────────────

    def register_document(self, data: Document | dict) -> Document:
        return self.documents.register(data)

    def register_documents(self, records: Iterable[Document | dict]) -> list[Document]:
        return self.documents.register_many(records)

    def update_document_visibility(self, document_id: str, visibility) -> Document:
        return self.documents.update_visibility(document_id, visibility)

    def list_documents(self, **filters) -> list[Document]:
        return self.documents.list_documents(**filters)

    # ── Share sessions ───────────────────────────────────────────────────

    def create_share_session(self, name, document_ids, expires_at=None, *,
                             actor: ActorIdentity | None = None,
                             approval_workflow_id: str | None = None, **options):
        """Create a share session, optionally gated on an approved workflow.

        Raises:
            AccessDeniedError: the referenced workflow is not approved
                (the refusal is recorded in the access log).
        """
        doc_ids = list(document_ids or ())
        if approval_workflow_id and doc_ids:
            workflow = self.approvals.get_workflow(approval_workflow_id)
            if workflow.status != WorkflowStatus.APPROVED:
                exc = AccessDeniedError(
                    f"Approval workflow {approval_workflow_id} is {workflow.status.value}, not approved",
                    reason="approval",
                )
                self.shares.log_denied_share(
                    doc_ids, exc, actor=actor,
                    details={"event": "approval_required", "workflow_id": approval_workflow_id},
                )
                raise exc
        return self.shares.create_session(
            name, doc_ids, expires_at,
            actor=actor, approval_workflow_id=approval_workflow_id, **options,
        )

    def resolve_share_session(self, session_id: str, *, actor: ActorIdentity | None = None,
                              request_id: str | None = None):
        return self.shares.resolve_session(session_id, actor=actor, request_id=request_id)

    def revoke_share_session(self, session_id: str, *, actor: ActorIdentity | None = None):
        return self.shares.revoke(session_id, actor=actor)

    def get_share_session(self, session_id: str):
        return self.shares.get_session(session_id)

    def list_share_sessions(self, *, active_only: bool = False):
        return self.shares.list_sessions(active_only=active_only)

    def access_document(self, session_id: str, document_id: str, *,
                        actor: ActorIdentity | None = None, action=AccessAction.VIEW,
                        duration_seconds: float | None = None) -> Document:
        """Open one document through a share link.

        Checks, in order: session usable, document in session, visibility
        tier, download permission, signed NDA (when the session requires
        one). Exactly one access log entry is written per call.
        """
        actor = actor or ActorIdentity(is_anonymous=True)
        try:
            session, doc = self.shares.authorize_document(session_id, document_id, action)
            if session.nda_required:
                self.ndas.check_access(session_id, actor.email)
        except (NotFoundError, ExpiredError, RevokedError, AccessDeniedError) as exc:
            self.audit.log(
                action, actor=actor, session_id=session_id, document_id=document_id,
                success=False, error_message=str(exc),
            )
            raise
        self.audit.log(
            action, actor=actor, session_id=session_id, document_id=document_id,
            document_name=doc.name, duration_seconds=duration_seconds,
        )
        return doc

    # ── NDA ──────────────────────────────────────────────────────────────

    def request_nda(self, session_id: str, signer, deadline_policy=None, **options):
        return self.ndas.request_nda(session_id, signer, deadline_policy, **options)

    def sign_nda(self, nda_id: str, signer_email: str | None = None):
        return self.ndas.sign(nda_id, signer_email)

    def decline_nda(self, nda_id: str, signer_email: str | None = None, reason: str | None = None):
        return self.ndas.decline(nda_id, signer_email, reason)

    def get_nda(self, nda_id: str):
        return self.ndas.get_request(nda_id)

    # ── Approvals ────────────────────────────────────────────────────────

    def create_approval_workflow(self, scenario_id: str, template: str = "standard",
                                 created_by: str | None = None):
        return self.approvals.create_workflow(scenario_id, template, created_by)

    def submit_for_approval(self, workflow_id: str, submitted_by: str | None = None):
        return self.approvals.submit(workflow_id, submitted_by)

    def decide(self, workflow_id: str, stage_id: str, approver_id: str, action,
               comment: str | None = None, **options):
        return self.approvals.decide(workflow_id, stage_id, approver_id, action, comment, **options)

    # ── Access log ───────────────────────────────────────────────────────

    def record_access(self, entry: AccessLogEntry | dict) -> AccessLogEntry:
        return self.audit.record(entry)

    def query_access_log(self, **criteria) -> list[AccessLogEntry]:
        return self.audit.filter(**criteria)

    def access_statistics(self) -> dict:
        return self.audit.statistics()

    def clear_access_log(self, authorized_by: str | None) -> int:
        return self.audit.clear(authorized_by)

    def export_access_log(self, fmt: str = "csv", **criteria) -> str:
        return self.audit.export(fmt, **criteria)

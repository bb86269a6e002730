"""
Share Session Manager — time-boxed, link-addressable document bundles.

Lifecycle:
    create_session  -> active session + link, one ``share`` entry per document
    resolve_session -> counts one access per distinct request, ``view`` entry
    revoke          -> active=False (idempotent); sessions are never deleted

Resolution checks, in order:
    unknown id                     -> NotFoundError
    now > expires_at               -> ExpiredError   (regardless of ``active``)
    active is False                -> RevokedError

Every failed resolution is still written to the access log with
``success=False``. Counting runs under the session's key lock so concurrent
resolutions never lose an increment.
"""

from __future__ import annotations

import logging
import secrets
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

from email_validator import EmailNotValidError, validate_email

from dataroom.core.exceptions import (
    AccessDeniedError,
    DataRoomError,
    ExpiredError,
    InvalidInputError,
    NotFoundError,
    RevokedError,
)
from dataroom.models.audit import ANONYMOUS, AccessAction, ActorIdentity
from dataroom.models.document import Document, Visibility, coerce_visibility
from dataroom.models.share import ACCESS_LEVELS, NDA_TEMPLATES, ShareSession
from dataroom.services.audit_log import AccessAuditLog
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.services.notification import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
)
from dataroom.services.visibility import is_visible
from dataroom.utils.helpers import isoformat_or_none, resolve_deadline, utc_now

logger = logging.getLogger(__name__)

# 24 random bytes -> 192 bits, 32 url-safe characters
SESSION_TOKEN_BYTES = 24


def build_link(base_url: str, session_id: str) -> str:
    return f"{base_url.rstrip('/')}/share/{session_id}"


def _snapshot(session: ShareSession) -> ShareSession:
    return replace(session, seen_requests=OrderedDict())


def _normalize_recipients(recipients: Iterable[str] | None) -> tuple[str, ...]:
    result = []
    for raw in recipients or ():
        try:
            email = validate_email(str(raw).strip(), check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise InvalidInputError(
                f"Invalid recipient email {raw!r}: {exc}", details={"recipients": str(raw)}
            ) from None
        if email not in result:
            result.append(email)
    return tuple(result)


class ShareSessionManager:

    def __init__(
        self,
        store: DataRoomStore,
        audit: AccessAuditLog,
        *,
        base_url: str,
        clock: Callable[[], datetime] = utc_now,
        default_expiry=None,
        default_viewer_tier=Visibility.INVESTORS,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._store = store
        self._sessions = store.share_sessions
        self._audit = audit
        self.base_url = base_url
        self._clock = clock
        self._default_expiry = default_expiry
        self._default_viewer_tier = coerce_visibility(default_viewer_tier)
        self._dispatcher = dispatcher or NotificationDispatcher(None)

    def _new_id(self) -> str:
        while True:
            token = secrets.token_urlsafe(SESSION_TOKEN_BYTES)
            if token not in self._sessions:
                return token

    # ── Create ───────────────────────────────────────────────────────────

    def create_session(
        self,
        name: str,
        document_ids: Iterable[str],
        expires_at=None,
        *,
        actor: ActorIdentity | None = None,
        viewer_tier=None,
        access_level: str = "view",
        nda_required: bool = False,
        nda_template: str = "standard",
        nda_deadline_policy: str | None = "7days",
        recipients: Iterable[str] | None = None,
        approval_workflow_id: str | None = None,
    ) -> ShareSession:
        """Create a share session over existing documents.

        ``expires_at`` may be a datetime, an ISO string or a policy name
        ("7days", "30days", "never"). None falls back to the configured default.

        Raises:
            InvalidInputError: blank name, empty or unknown document ids,
                bad expiry/NDA options or recipient emails.
        """
        now = self._clock()
        name = (name or "").strip()
        doc_ids = frozenset(str(d) for d in (document_ids or ()) if str(d).strip())
        if not name:
            raise InvalidInputError("Session name is required", details={"name": "required"})
        if not doc_ids:
            raise InvalidInputError("At least one document is required", details={"document_ids": "required"})
        missing = sorted(d for d in doc_ids if d not in self._store.documents)
        if missing:
            raise InvalidInputError(
                f"Unknown document ids: {', '.join(missing)}", details={"document_ids": missing}
            )
        if access_level not in ACCESS_LEVELS:
            raise InvalidInputError(
                f"access_level must be one of {sorted(ACCESS_LEVELS)}", details={"access_level": access_level}
            )
        if nda_required and nda_template not in NDA_TEMPLATES:
            raise InvalidInputError(
                f"nda_template must be one of {sorted(NDA_TEMPLATES)}", details={"nda_template": nda_template}
            )
        try:
            expiry = resolve_deadline(self._default_expiry if expires_at is None else expires_at, now)
            if nda_required:
                resolve_deadline(nda_deadline_policy, now)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from None

        actor = actor or ANONYMOUS
        session_id = self._new_id()
        session = ShareSession(
            id=session_id,
            name=name,
            document_ids=doc_ids,
            created_at=now,
            link=build_link(self.base_url, session_id),
            expires_at=expiry,
            created_by=actor.user_id or actor.email,
            viewer_tier=coerce_visibility(viewer_tier) if viewer_tier is not None else self._default_viewer_tier,
            access_level=access_level,
            nda_required=bool(nda_required),
            nda_template=nda_template,
            nda_deadline_policy=nda_deadline_policy,
            recipients=_normalize_recipients(recipients),
            approval_workflow_id=approval_workflow_id,
        )
        with self._sessions.lock(session_id):
            self._sessions.add(session_id, session)
            result = _snapshot(session)

        for doc_id in sorted(doc_ids):
            doc = self._store.documents.get(doc_id)
            self._audit.log(
                AccessAction.SHARE,
                actor=actor,
                document_id=doc_id,
                document_name=doc.name if doc else None,
                session_id=session_id,
                details={"event": "created", "session_name": name},
            )
        logger.info(
            "Share session created: %s (%d docs, expires=%s, nda=%s)",
            session_id, len(doc_ids), isoformat_or_none(expiry), nda_required,
        )

        self._dispatcher.dispatch(
            NotificationEvent(
                user_id=email,
                type=NotificationType.SHARE_INVITE,
                payload={
                    "session_id": session_id,
                    "name": name,
                    "link": session.link,
                    "expires_at": isoformat_or_none(expiry),
                    "nda_required": session.nda_required,
                },
            )
            for email in session.recipients
        )
        return result

    def log_denied_share(self, document_ids: Iterable[str], error: DataRoomError, *,
                         actor: ActorIdentity | None = None, details: dict | None = None) -> None:
        """Record a refused share attempt (e.g. approval gate) once."""
        ids = sorted(str(d) for d in document_ids or ())
        self._audit.log(
            AccessAction.SHARE,
            actor=actor,
            document_id=ids[0] if ids else None,
            success=False,
            error_message=str(error),
            details={**(details or {}), "document_ids": ids},
        )

    # ── Resolve ──────────────────────────────────────────────────────────

    def _check_usable(self, session: ShareSession | None, session_id: str, now: datetime) -> ShareSession:
        if session is None:
            raise NotFoundError("ShareSession", session_id)
        if session.is_expired(now):
            raise ExpiredError("ShareSession", session_id, expired_at=session.expires_at)
        if not session.active:
            raise RevokedError(session_id)
        return session

    def resolve_session(
        self,
        session_id: str,
        *,
        actor: ActorIdentity | None = None,
        request_id: str | None = None,
    ) -> ShareSession:
        """Open a share link. Counts one access per distinct ``request_id``."""
        now = self._clock()
        counted = False
        try:
            with self._sessions.lock(session_id):
                session = self._check_usable(self._sessions.get(session_id), session_id, now)
                if request_id is None or session.remember_request(request_id):
                    session.access_count += 1
                    counted = True
                result = _snapshot(session)
        except (NotFoundError, ExpiredError, RevokedError) as exc:
            self._audit.log(
                AccessAction.VIEW, actor=actor, session_id=session_id,
                success=False, error_message=str(exc),
            )
            raise

        if counted:
            self._audit.log(
                AccessAction.VIEW, actor=actor, session_id=session_id,
                details={"request_id": request_id} if request_id else None,
            )
        return result

    def revoke(self, session_id: str, *, actor: ActorIdentity | None = None) -> ShareSession:
        """Deactivate a session. Revoking twice is a no-op."""
        with self._sessions.lock(session_id):
            session = self._sessions.require(session_id)
            first = session.active
            if first:
                session.active = False
                session.revoked_at = self._clock()
            result = _snapshot(session)
        if first:
            self._audit.log(
                AccessAction.SHARE, actor=actor, session_id=session_id,
                details={"event": "revoked"},
            )
            logger.info("Share session revoked: %s", session_id)
        return result

    def is_expired(self, session: ShareSession, now: datetime | None = None) -> bool:
        return session.is_expired(now or self._clock())

    # ── Document gate ────────────────────────────────────────────────────

    def authorize_document(self, session_id: str, document_id: str, action=AccessAction.VIEW):
        """Check that ``document_id`` may be reached through the session.

        Does not count or log; the caller records the outcome.

        Returns:
            (ShareSession snapshot, Document)
        Raises:
            NotFoundError, ExpiredError, RevokedError, AccessDeniedError
        """
        try:
            action = AccessAction(action)
        except ValueError:
            raise InvalidInputError(f"Unknown action {action!r}", details={"action": str(action)}) from None
        now = self._clock()
        with self._sessions.lock(session_id):
            session = _snapshot(self._check_usable(self._sessions.get(session_id), session_id, now))
        if document_id not in session.document_ids:
            raise NotFoundError("Document", document_id)
        doc: Document = self._store.documents.require(document_id)
        if not is_visible(doc, session.viewer_tier):
            raise AccessDeniedError(
                f"Document {document_id} is not visible to {session.viewer_tier.value} viewers",
                reason="visibility",
            )
        if action == AccessAction.DOWNLOAD and session.access_level != "download":
            raise AccessDeniedError("This share link does not allow downloads", reason="download")
        return session, doc

    # ── Query ────────────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> ShareSession:
        """Session detail without counting an access."""
        with self._sessions.lock(session_id):
            return _snapshot(self._sessions.require(session_id))

    def list_sessions(self, *, active_only: bool = False) -> list[ShareSession]:
        now = self._clock()
        sessions = [_snapshot(s) for s in self._sessions.values()]
        if active_only:
            sessions = [s for s in sessions if s.status(now) == "active"]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def session_statistics(self) -> dict:
        now = self._clock()
        stats = {"total": 0, "active": 0, "expired": 0, "revoked": 0, "total_access": 0}
        for s in self._sessions.values():
            stats["total"] += 1
            stats[s.status(now)] += 1
            stats["total_access"] += s.access_count
        return stats

"""
NDA Workflow — per-visitor confidentiality gate on a share session.

State machine per (session, signer email):

    pending --sign-->    signed
    pending --decline--> declined
    pending --(read after deadline)--> expired

Expiry is detected lazily whenever a request is read; there is no
background job. ``check_access`` reports declined, expired and
pending requests the same way so callers cannot tell them apart.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from email_validator import EmailNotValidError, validate_email

from dataroom.core.exceptions import (
    AccessDeniedError,
    ExpiredError,
    InvalidInputError,
    UnauthorizedError,
    WorkflowClosedError,
)
from dataroom.models.audit import AccessAction, ActorIdentity
from dataroom.models.nda import NDARequest, NDAStatus, SignerIdentity
from dataroom.models.share import NDA_TEMPLATES
from dataroom.services.audit_log import AccessAuditLog
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.services.notification import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
)
from dataroom.utils.helpers import isoformat_or_none, resolve_deadline, utc_now

logger = logging.getLogger(__name__)

NDA_SORT_KEYS = ("requested_at", "name", "deadline", "status")

ACCESS_DENIED_MESSAGE = "A signed NDA is required to access this session"


def normalize_email(email: str) -> str:
    try:
        return validate_email(str(email or "").strip(), check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise InvalidInputError(f"Invalid email: {exc}", details={"email": str(email)}) from None


def _signer_from(value: SignerIdentity | dict) -> SignerIdentity:
    if isinstance(value, dict):
        value = SignerIdentity(
            name=str(value.get("name") or "").strip(),
            email=str(value.get("email") or ""),
            company=str(value.get("company") or "").strip(),
            title=value.get("title"),
        )
    if not value.name:
        raise InvalidInputError("Signer name is required", details={"name": "required"})
    return replace(value, email=normalize_email(value.email))


class NDAWorkflow:

    def __init__(
        self,
        store: DataRoomStore,
        audit: AccessAuditLog,
        *,
        clock: Callable[[], datetime] = utc_now,
        default_deadline: str | None = "7days",
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._store = store
        self._ndas = store.nda_requests
        self._audit = audit
        self._clock = clock
        self._default_deadline = default_deadline
        self._dispatcher = dispatcher or NotificationDispatcher(None)

    # ── Lazy expiry ──────────────────────────────────────────────────────

    def _refresh(self, nda: NDARequest, now: datetime) -> NDARequest:
        """Move a stale pending request to expired. Caller holds the key lock."""
        if nda.status == NDAStatus.PENDING and nda.is_past_deadline(now):
            nda.status = NDAStatus.EXPIRED
            logger.info("NDA request expired: %s (%s)", nda.id, nda.signer.email)
        return nda

    def _read(self, nda_id: str) -> NDARequest:
        with self._ndas.lock(nda_id):
            return replace(self._refresh(self._ndas.require(nda_id), self._clock()))

    # ── Create ───────────────────────────────────────────────────────────

    def request_nda(
        self,
        session_id: str,
        signer: SignerIdentity | dict,
        deadline_policy=None,
        *,
        template: str | None = None,
        custom_message: str | None = None,
    ) -> NDARequest:
        """Open an NDA request for one signer on a session.

        A signer who already has a request on the session gets that request
        back unchanged, whatever its status.

        Raises:
            NotFoundError: unknown session.
            InvalidInputError: bad signer, template or deadline policy.
        """
        now = self._clock()
        session = self._store.share_sessions.require(session_id)
        signer = _signer_from(signer)
        template = template or session.nda_template
        if template not in NDA_TEMPLATES:
            raise InvalidInputError(
                f"template must be one of {sorted(NDA_TEMPLATES)}", details={"template": template}
            )
        policy = deadline_policy if deadline_policy is not None else (
            session.nda_deadline_policy if session.nda_required else self._default_deadline
        )
        try:
            deadline = resolve_deadline(policy, now)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from None

        key = (session_id, signer.email.lower())
        with self._store.share_sessions.lock(session_id):
            existing = self._store.nda_index.get(key)
            if existing is not None:
                return self._read(existing)
            nda = NDARequest(
                id=uuid.uuid4().hex,
                session_id=session_id,
                signer=signer,
                requested_at=now,
                deadline=deadline,
                template=template,
                custom_message=custom_message,
            )
            self._ndas.add(nda.id, nda)
            self._store.nda_index[key] = nda.id
            result = replace(nda)

        self._audit.log(
            AccessAction.SHARE,
            actor=ActorIdentity(user_name=signer.name, email=signer.email),
            session_id=session_id,
            details={"event": "nda_requested", "nda_id": nda.id},
        )
        logger.info("NDA requested: %s for %s on %s (deadline=%s)",
                    nda.id, signer.email, session_id, isoformat_or_none(deadline))
        self._dispatcher.dispatch([NotificationEvent(
            user_id=signer.email,
            type=NotificationType.NDA_REQUESTED,
            payload={
                "nda_id": nda.id,
                "session_id": session_id,
                "session_name": session.name,
                "template": template,
                "deadline": isoformat_or_none(deadline),
                "message": custom_message,
            },
        )])
        return result

    # ── Transitions ──────────────────────────────────────────────────────

    @staticmethod
    def _check_signer(nda: NDARequest, signer_email: str | None) -> None:
        if signer_email is not None and signer_email.strip().lower() != nda.signer.email.lower():
            raise UnauthorizedError(
                f"{signer_email} is not the intended signer of NDA request {nda.id}",
                actor=signer_email,
            )

    def sign(self, nda_id: str, signer_email: str | None = None) -> NDARequest:
        """Accept the NDA. Signing an already signed request returns it unchanged."""
        now = self._clock()
        with self._ndas.lock(nda_id):
            nda = self._ndas.require(nda_id)
            self._check_signer(nda, signer_email)
            self._refresh(nda, now)
            if nda.status == NDAStatus.SIGNED:
                return replace(nda)
            if nda.status == NDAStatus.EXPIRED:
                raise ExpiredError("NDARequest", nda_id, expired_at=nda.deadline)
            if nda.status == NDAStatus.DECLINED:
                raise WorkflowClosedError("NDARequest", nda_id, nda.status.value)
            nda.status = NDAStatus.SIGNED
            nda.signed_at = now
            result = replace(nda)

        self._after_transition(result, NotificationType.NDA_SIGNED, success=True)
        return result

    def decline(self, nda_id: str, signer_email: str | None = None,
                reason: str | None = None) -> NDARequest:
        """Refuse the NDA. Declining twice returns the declined request unchanged."""
        now = self._clock()
        with self._ndas.lock(nda_id):
            nda = self._ndas.require(nda_id)
            self._check_signer(nda, signer_email)
            self._refresh(nda, now)
            if nda.status == NDAStatus.DECLINED:
                return replace(nda)
            if nda.status == NDAStatus.EXPIRED:
                raise ExpiredError("NDARequest", nda_id, expired_at=nda.deadline)
            if nda.status == NDAStatus.SIGNED:
                raise WorkflowClosedError("NDARequest", nda_id, nda.status.value)
            nda.status = NDAStatus.DECLINED
            nda.declined_at = now
            nda.decline_reason = reason
            result = replace(nda)

        self._after_transition(result, NotificationType.NDA_DECLINED, success=False)
        return result

    def _after_transition(self, nda: NDARequest, kind: NotificationType, *, success: bool) -> None:
        self._audit.log(
            AccessAction.SHARE,
            actor=ActorIdentity(user_name=nda.signer.name, email=nda.signer.email),
            session_id=nda.session_id,
            success=success,
            error_message=None if success else "NDA declined",
            details={"event": kind.value, "nda_id": nda.id},
        )
        logger.info("NDA %s: %s (%s)", nda.status.value, nda.id, nda.signer.email)
        session = self._store.share_sessions.get(nda.session_id)
        owner = session.created_by if session else None
        if owner:
            self._dispatcher.dispatch([NotificationEvent(
                user_id=owner,
                type=kind,
                payload={
                    "nda_id": nda.id,
                    "session_id": nda.session_id,
                    "signer": nda.signer.to_dict(),
                    "reason": nda.decline_reason,
                },
            )])

    # ── Gate ─────────────────────────────────────────────────────────────

    def find_request(self, session_id: str, email: str) -> NDARequest | None:
        nda_id = self._store.nda_index.get((session_id, (email or "").strip().lower()))
        return self._read(nda_id) if nda_id else None

    def check_access(self, session_id: str, email: str | None) -> NDARequest:
        """Return the signed request for ``email`` or raise AccessDeniedError.

        Does not log; callers record the attempt.
        """
        nda = self.find_request(session_id, email) if email else None
        if nda is None or nda.status != NDAStatus.SIGNED:
            raise AccessDeniedError(ACCESS_DENIED_MESSAGE, reason="nda")
        return nda

    # ── Query ────────────────────────────────────────────────────────────

    def get_request(self, nda_id: str) -> NDARequest:
        return self._read(nda_id)

    def list_requests(
        self,
        session_id: str | None = None,
        *,
        status: str | None = None,
        search: str | None = None,
        sort_by: str = "requested_at",
    ) -> list[NDARequest]:
        if sort_by not in NDA_SORT_KEYS:
            raise InvalidInputError(f"sort_by must be one of {list(NDA_SORT_KEYS)}", details={"sort_by": sort_by})
        items = [
            self._read(n.id) for n in self._ndas.values()
            if session_id is None or n.session_id == session_id
        ]
        if status:
            items = [n for n in items if n.status.value == status]
        if search:
            q = search.lower()
            items = [
                n for n in items
                if q in n.signer.name.lower() or q in n.signer.email.lower() or q in n.signer.company.lower()
            ]
        if sort_by == "name":
            items.sort(key=lambda n: n.signer.name.lower())
        elif sort_by == "deadline":
            items.sort(key=lambda n: (n.deadline is None, n.deadline or n.requested_at))
        elif sort_by == "status":
            items.sort(key=lambda n: n.status.value)
        else:
            items.sort(key=lambda n: n.requested_at, reverse=True)
        return items

    def statistics(self, session_id: str | None = None) -> dict:
        items = self.list_requests(session_id)
        counts = {s.value: 0 for s in NDAStatus}
        for n in items:
            counts[n.status.value] += 1
        total = len(items)
        return {
            "total": total,
            **counts,
            "signed_percentage": round(counts["signed"] / total * 100, 1) if total else 0.0,
        }

"""
NDA request model.

One NDARequest per (share session, signer email). Status transitions:

    pending -> signed     signer accepts before the deadline
    pending -> expired    detected lazily on read once the deadline passed
    pending -> declined   explicit refusal

signed, expired and declined are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from dataroom.utils.helpers import isoformat_or_none


class NDAStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    EXPIRED = "expired"
    DECLINED = "declined"


NDA_TERMINAL_STATUSES = frozenset({NDAStatus.SIGNED, NDAStatus.EXPIRED, NDAStatus.DECLINED})


@dataclass(frozen=True)
class SignerIdentity:
    """Who is asked to sign. ``email`` is the identity key."""
    name: str
    email: str
    company: str = ""
    title: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "title": self.title,
        }


@dataclass
class NDARequest:
    id: str
    session_id: str
    signer: SignerIdentity
    requested_at: datetime
    status: NDAStatus = NDAStatus.PENDING
    deadline: datetime | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    template: str = "standard"
    custom_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in NDA_TERMINAL_STATUSES

    def is_past_deadline(self, now: datetime) -> bool:
        return self.deadline is not None and now > self.deadline

    def days_until_deadline(self, now: datetime) -> int | None:
        if self.deadline is None:
            return None
        return (self.deadline - now).days

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "signer": self.signer.to_dict(),
            "status": self.status.value,
            "requested_at": self.requested_at.isoformat(),
            "deadline": isoformat_or_none(self.deadline),
            "signed_at": isoformat_or_none(self.signed_at),
            "declined_at": isoformat_or_none(self.declined_at),
            "decline_reason": self.decline_reason,
            "template": self.template,
            "custom_message": self.custom_message,
        }

    def __repr__(self):
        return f"<NDARequest {self.id}: {self.signer.email} on {self.session_id} ({self.status.value})>"

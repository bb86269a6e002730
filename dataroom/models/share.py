"""
Share session model.

A share session is a time-boxed, link-addressable bundle of documents.
Sessions are never deleted; revocation only flips ``active`` so the audit
trail keeps resolving their ids.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime

from dataroom.models.document import Visibility
from dataroom.utils.helpers import isoformat_or_none

ACCESS_LEVELS = {"view", "download"}

NDA_TEMPLATES = {"standard", "standard-en", "mutual"}

# request ids remembered per session for resolve de-duplication
SEEN_REQUESTS_LIMIT = 256


@dataclass
class ShareSession:
    id: str
    name: str
    document_ids: frozenset[str]
    created_at: datetime
    link: str
    expires_at: datetime | None = None
    access_count: int = 0
    active: bool = True
    created_by: str | None = None
    viewer_tier: Visibility = Visibility.INVESTORS
    access_level: str = "view"
    nda_required: bool = False
    nda_template: str = "standard"
    nda_deadline_policy: str | None = "7days"
    recipients: tuple[str, ...] = ()
    approval_workflow_id: str | None = None
    revoked_at: datetime | None = None
    # most recent request ids counted by resolve_session, oldest first
    seen_requests: OrderedDict = field(default_factory=OrderedDict, repr=False)

    def remember_request(self, request_id: str) -> bool:
        """Record ``request_id``; False when it is already in the window."""
        if request_id in self.seen_requests:
            return False
        self.seen_requests[request_id] = None
        while len(self.seen_requests) > SEEN_REQUESTS_LIMIT:
            self.seen_requests.popitem(last=False)
        return True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def status(self, now: datetime) -> str:
        if self.is_expired(now):
            return "expired"
        if not self.active:
            return "revoked"
        return "active"

    def to_dict(self, now: datetime | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "document_ids": sorted(self.document_ids),
            "created_at": self.created_at.isoformat(),
            "expires_at": isoformat_or_none(self.expires_at),
            "access_count": self.access_count,
            "link": self.link,
            "active": self.active,
            "created_by": self.created_by,
            "viewer_tier": self.viewer_tier.value,
            "access_level": self.access_level,
            "nda_required": self.nda_required,
            "nda_template": self.nda_template if self.nda_required else None,
            "recipients": list(self.recipients),
            "approval_workflow_id": self.approval_workflow_id,
            "revoked_at": isoformat_or_none(self.revoked_at),
        }
        if now is not None:
            data["status"] = self.status(now)
        return data

    def __repr__(self):
        return f"<ShareSession {self.id}: {self.name!r} docs={len(self.document_ids)}>"

"""
Access audit domain model.

Models:
    - AccessLogEntry: immutable, append-only record of one access attempt.
    - ActorIdentity:  who attempted it (possibly anonymous).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType

from dataroom.utils.helpers import isoformat_or_none


# ── Constants ────────────────────────────────────────────────────────────────

class AccessAction(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    SHARE = "share"
    DELETE = "delete"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


_MOBILE_MARKERS = ("iphone", "android", "mobile")
_TABLET_MARKERS = ("ipad", "tablet")


def device_from_user_agent(user_agent: str | None) -> DeviceType | None:
    """Rough device classification from a User-Agent string."""
    if not user_agent:
        return None
    ua = user_agent.lower()
    if any(m in ua for m in _TABLET_MARKERS):
        return DeviceType.TABLET
    if any(m in ua for m in _MOBILE_MARKERS):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


@dataclass(frozen=True)
class ActorIdentity:
    user_id: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    is_anonymous: bool = False

    @classmethod
    def anonymous(cls, ip_address=None, user_agent=None) -> "ActorIdentity":
        return cls(ip_address=ip_address, user_agent=user_agent, is_anonymous=True)

    @classmethod
    def from_dict(cls, data: dict | None) -> "ActorIdentity":
        data = data or {}
        user_id = data.get("user_id")
        email = data.get("email")
        return cls(
            user_id=user_id,
            user_name=data.get("user_name"),
            user_role=data.get("user_role"),
            email=email,
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            is_anonymous=bool(data.get("is_anonymous", not (user_id or email))),
        )

    @property
    def key(self) -> str | None:
        """Identity used when counting unique actors."""
        return self.user_id or self.email or self.ip_address

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_role": self.user_role,
            "email": self.email,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_anonymous": self.is_anonymous,
        }


ANONYMOUS = ActorIdentity(is_anonymous=True)


@dataclass(frozen=True)
class AccessLogEntry:
    """
    One row per access attempt, successful or not.

    ``id`` is assigned by the log on append; entries built by callers
    carry ``id=0`` until recorded.
    """

    timestamp: datetime
    action: AccessAction
    actor: ActorIdentity = ANONYMOUS
    document_id: str | None = None
    session_id: str | None = None
    success: bool = True
    document_name: str | None = None
    duration_seconds: float | None = None
    device_type: DeviceType | None = None
    error_message: str | None = None
    details: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    id: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": isoformat_or_none(self.timestamp),
            "action": self.action.value,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "session_id": self.session_id,
            "actor": self.actor.to_dict(),
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "device_type": self.device_type.value if self.device_type else None,
            "error_message": self.error_message,
            "details": dict(self.details),
        }

    def __repr__(self):
        target = self.document_id or self.session_id
        return f"<AccessLogEntry {self.id}: {self.action.value} on {target} ok={self.success}>"

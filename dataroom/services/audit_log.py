"""
Access Audit Log — append-only trail of every access attempt.

Writers serialise on a single lock while appending; readers work on a
snapshot copy of the entry list and never block on writers.

Usage:
    from dataroom.services.audit_log import AccessAuditLog

    log = AccessAuditLog(clock=utc_now)
    log.log(AccessAction.VIEW, session_id=sid, actor=actor)
    log.filter(action="view", session_id=sid)   # newest first
    log.statistics()                             # cached until next write
"""

from __future__ import annotations

import copy
import csv
import io
import json
import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType

from dataroom.core.exceptions import InvalidEntryError, InvalidInputError, UnauthorizedError
from dataroom.models.audit import (
    ANONYMOUS,
    AccessAction,
    AccessLogEntry,
    ActorIdentity,
    DeviceType,
    device_from_user_agent,
)
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.utils.helpers import ensure_aware, parse_datetime, utc_now

logger = logging.getLogger(__name__)

TOP_DOCUMENTS_LIMIT = 10

EXPORT_FORMATS = ("csv", "json")

_CSV_COLUMNS = (
    "id", "timestamp", "action", "document_id", "document_name", "session_id",
    "user_id", "user_name", "email", "ip_address", "device_type",
    "success", "duration_seconds", "error_message",
)

_TEXT_FIELDS = ("document_id", "session_id", "document_name", "error_message")
_ACTOR_TEXT_FIELDS = ("user_id", "user_name", "user_role", "email", "ip_address", "user_agent")


# ── Coercion ─────────────────────────────────────────────────────────────────

def _coerce_action(value) -> AccessAction:
    try:
        return value if isinstance(value, AccessAction) else AccessAction(str(value).lower())
    except ValueError:
        raise InvalidEntryError(
            f"Unknown action {value!r}",
            details={"action": [a.value for a in AccessAction]},
        ) from None


def _coerce_device(value) -> DeviceType | None:
    if value is None or value == "":
        return None
    try:
        return value if isinstance(value, DeviceType) else DeviceType(str(value).lower())
    except ValueError:
        raise InvalidEntryError(
            f"Unknown device type {value!r}",
            details={"device_type": [d.value for d in DeviceType]},
        ) from None


def _entry_from_dict(data: Mapping, now: datetime) -> AccessLogEntry:
    raw_ts = data.get("timestamp")
    timestamp = parse_datetime(raw_ts) if raw_ts else now
    if timestamp is None:
        raise InvalidEntryError(f"Invalid timestamp {raw_ts!r}", details={"timestamp": "invalid"})

    actor = data.get("actor")
    if isinstance(actor, Mapping):
        actor = ActorIdentity.from_dict(actor)
    elif actor is None:
        actor = ANONYMOUS
    elif not isinstance(actor, ActorIdentity):
        raise InvalidEntryError("actor must be an object", details={"actor": "invalid"})
    _check_actor(actor)

    device = data.get("device_type")
    if device is None:
        device = device_from_user_agent(actor.user_agent)

    duration = data.get("duration_seconds")
    if duration is not None:
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            raise InvalidEntryError(
                "duration_seconds must be a number", details={"duration_seconds": "invalid"}
            ) from None

    details = data.get("details")
    if details is None:
        details = {}
    elif not isinstance(details, Mapping):
        raise InvalidEntryError("details must be an object", details={"details": "invalid"})

    return AccessLogEntry(
        timestamp=timestamp,
        action=_coerce_action(data.get("action")),
        actor=actor,
        document_id=data.get("document_id"),
        session_id=data.get("session_id"),
        success=data.get("success", True),
        document_name=data.get("document_name"),
        duration_seconds=duration,
        device_type=_coerce_device(device),
        error_message=data.get("error_message"),
        details=MappingProxyType(dict(details)),
    )


def _check_actor(actor: ActorIdentity) -> None:
    bad = {
        f"actor.{name}": "must be a string"
        for name in _ACTOR_TEXT_FIELDS
        if getattr(actor, name) is not None and not isinstance(getattr(actor, name), str)
    }
    if bad:
        raise InvalidEntryError("Malformed actor", details=bad)


def _validate(entry: AccessLogEntry) -> AccessLogEntry:
    """Normalise enums and reject malformed entries."""
    errors = {}
    if not isinstance(entry.timestamp, datetime):
        errors["timestamp"] = "must be a datetime"
    for name in _TEXT_FIELDS:
        value = getattr(entry, name)
        if value is not None and not isinstance(value, str):
            errors[name] = "must be a string"
    if not isinstance(entry.details, Mapping):
        errors["details"] = "must be a mapping"
    elif not (entry.document_id or entry.session_id or entry.details.get("workflow_id")):
        errors["document_id"] = "document_id, session_id or details.workflow_id is required"
    if not isinstance(entry.success, bool):
        errors["success"] = "must be a boolean"
    duration = entry.duration_seconds
    if duration is not None:
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            errors["duration_seconds"] = "must be a number"
        elif duration < 0:
            errors["duration_seconds"] = "must be >= 0"
    if not isinstance(entry.actor, ActorIdentity):
        errors["actor"] = "must be an ActorIdentity"
    if errors:
        raise InvalidEntryError("Malformed access log entry", details=errors)
    _check_actor(entry.actor)

    return replace(
        entry,
        timestamp=ensure_aware(entry.timestamp),
        action=_coerce_action(entry.action),
        device_type=_coerce_device(entry.device_type),
        details=MappingProxyType(dict(entry.details)),
    )


# ═════════════════════════════════════════════════════════════════════════════
# AccessAuditLog
# ═════════════════════════════════════════════════════════════════════════════

class AccessAuditLog:
    """Append-only access log with filtering, statistics and export."""

    def __init__(
        self,
        store: DataRoomStore | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        admins: Iterable[str] | None = None,
    ) -> None:
        self._store = store or DataRoomStore()
        self._clock = clock
        self._admins = frozenset(admins or ())
        self._write_lock = threading.Lock()
        self._next_id = len(self._store.access_log) + 1
        self._stats_cache: dict | None = None
        self._version = 0

    # ── Write ────────────────────────────────────────────────────────────

    def record(self, entry: AccessLogEntry | dict) -> AccessLogEntry:
        """Append one entry. Raises InvalidEntryError only on malformed input."""
        if isinstance(entry, Mapping):
            entry = _entry_from_dict(entry, self._clock())
        elif not isinstance(entry, AccessLogEntry):
            raise InvalidEntryError(f"Cannot record {type(entry).__name__}")
        entry = _validate(entry)

        with self._write_lock:
            entry = replace(entry, id=self._next_id)
            self._next_id += 1
            self._store.access_log.append(entry)
            self._version += 1
            self._stats_cache = None

        if not entry.success:
            logger.warning(
                "Access denied: %s doc=%s session=%s actor=%s (%s)",
                entry.action.value, entry.document_id, entry.session_id,
                entry.actor.key, entry.error_message,
            )
        return entry

    def log(
        self,
        action: AccessAction | str,
        *,
        actor: ActorIdentity | None = None,
        document_id: str | None = None,
        session_id: str | None = None,
        success: bool = True,
        document_name: str | None = None,
        error_message: str | None = None,
        duration_seconds: float | None = None,
        details: dict | None = None,
    ) -> AccessLogEntry:
        """Build and record an entry stamped with the injected clock."""
        actor = actor or ANONYMOUS
        _check_actor(actor)
        return self.record(AccessLogEntry(
            timestamp=self._clock(),
            action=_coerce_action(action),
            actor=actor,
            document_id=document_id,
            session_id=session_id,
            success=success,
            document_name=document_name,
            duration_seconds=duration_seconds,
            device_type=device_from_user_agent(actor.user_agent),
            error_message=error_message,
            details=MappingProxyType(dict(details or {})),
        ))

    def clear(self, authorized_by: str | None) -> int:
        """Irreversibly drop every entry. Returns the number removed.

        Only members of the configured admin list may clear; with no admins
        configured the log cannot be cleared at all.
        """
        if not authorized_by:
            raise UnauthorizedError("Clearing the access log requires an authorized actor")
        if authorized_by not in self._admins:
            raise UnauthorizedError(
                f"{authorized_by} is not allowed to clear the access log", actor=authorized_by
            )
        with self._write_lock:
            removed = len(self._store.access_log)
            self._store.access_log.clear()
            self._version += 1
            self._stats_cache = None
        logger.warning("Access log cleared by %s (%d entries removed)", authorized_by, removed)
        return removed

    # ── Read ─────────────────────────────────────────────────────────────

    def _snapshot(self) -> list[AccessLogEntry]:
        return self._store.access_log[:]

    def __len__(self) -> int:
        return len(self._store.access_log)

    def filter(
        self,
        *,
        action=None,
        document_id: str | None = None,
        session_id: str | None = None,
        date_range: tuple | None = None,
        actor_id: str | None = None,
        success: bool | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[AccessLogEntry]:
        """Entries matching every given criterion, newest insertion first.

        ``date_range`` is an inclusive ``(start, end)`` pair; either bound may
        be None. ``actor_id`` matches user id or email.
        """
        if action is not None:
            try:
                action = _coerce_action(action)
            except InvalidEntryError as exc:
                raise InvalidInputError(str(exc), details=exc.details) from None
        start = end = None
        if date_range:
            start, end = (parse_datetime(b) for b in date_range)
        needle = search.lower() if search else None

        result = []
        for entry in reversed(self._snapshot()):
            if action is not None and entry.action != action:
                continue
            if document_id is not None and entry.document_id != document_id:
                continue
            if session_id is not None and entry.session_id != session_id:
                continue
            if start is not None and entry.timestamp < start:
                continue
            if end is not None and entry.timestamp > end:
                continue
            if actor_id is not None and actor_id not in (entry.actor.user_id, entry.actor.email):
                continue
            if success is not None and entry.success != success:
                continue
            if needle and not _matches(entry, needle):
                continue
            result.append(entry)
            if limit is not None and len(result) >= limit:
                break
        return result

    def statistics(self) -> dict:
        """Aggregates over the full log. Cached until the next record/clear."""
        with self._write_lock:
            cached, version = self._stats_cache, self._version
        if cached is not None:
            return copy.deepcopy(cached)

        stats = _compute_statistics(self._snapshot())
        with self._write_lock:
            if self._version == version:
                self._stats_cache = stats
        return copy.deepcopy(stats)

    # ── Export ───────────────────────────────────────────────────────────

    def export(self, fmt: str = "csv", **criteria) -> str:
        """Serialise the (filtered) log as CSV or JSON text."""
        fmt = (fmt or "csv").lower()
        if fmt not in EXPORT_FORMATS:
            raise InvalidInputError(f"Unsupported export format {fmt!r}", details={"format": list(EXPORT_FORMATS)})
        entries = self.filter(**criteria)
        if fmt == "json":
            return json.dumps([e.to_dict() for e in entries], ensure_ascii=False, indent=2)

        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=_CSV_COLUMNS)
        writer.writeheader()
        for e in entries:
            writer.writerow({
                "id": e.id,
                "timestamp": e.timestamp.isoformat(),
                "action": e.action.value,
                "document_id": e.document_id or "",
                "document_name": e.document_name or "",
                "session_id": e.session_id or "",
                "user_id": e.actor.user_id or "",
                "user_name": e.actor.user_name or "",
                "email": e.actor.email or "",
                "ip_address": e.actor.ip_address or "",
                "device_type": e.device_type.value if e.device_type else "",
                "success": "true" if e.success else "false",
                "duration_seconds": "" if e.duration_seconds is None else e.duration_seconds,
                "error_message": e.error_message or "",
            })
        return buf.getvalue()


# ── Helpers ──────────────────────────────────────────────────────────────────

def _matches(entry: AccessLogEntry, needle: str) -> bool:
    haystack = (
        entry.document_name, entry.document_id, entry.session_id,
        entry.actor.user_name, entry.actor.email, entry.error_message,
    )
    return any(needle in v.lower() for v in haystack if v)


def _compute_statistics(entries: list[AccessLogEntry]) -> dict:
    actors = {e.actor.key for e in entries if e.actor.key}
    actions = Counter(e.action.value for e in entries)
    devices = Counter(e.device_type.value if e.device_type else "unknown" for e in entries)

    # document_id -> [count, last position, name]
    docs: dict[str, list] = {}
    for pos, e in enumerate(entries):
        if not e.document_id:
            continue
        row = docs.setdefault(e.document_id, [0, pos, e.document_name])
        row[0] += 1
        row[1] = pos
        row[2] = e.document_name or row[2]
    ranked = sorted(docs.items(), key=lambda kv: (-kv[1][0], -kv[1][1]))[:TOP_DOCUMENTS_LIMIT]

    daily = Counter(e.timestamp.date().isoformat() for e in entries)

    return {
        "total_access": len(entries),
        "successful": sum(1 for e in entries if e.success),
        "failed": sum(1 for e in entries if not e.success),
        "unique_actors": len(actors),
        "action_breakdown": {a.value: actions.get(a.value, 0) for a in AccessAction},
        "device_breakdown": dict(devices),
        "top_documents": [
            {
                "document_id": doc_id,
                "document_name": name,
                "access_count": count,
                "last_accessed": entries[last].timestamp.isoformat(),
            }
            for doc_id, (count, last, name) in ranked
        ],
        "daily_access_counts": [{"date": d, "count": daily[d]} for d in sorted(daily)],
    }

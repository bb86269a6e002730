"""
In-memory keyed store for the governance engine.

Four independent collections keyed by id plus an append-only access log:

    documents            id -> Document
    share_sessions       id -> ShareSession
    nda_requests         id -> NDARequest
    approval_workflows   id -> ApprovalWorkflow
    access_log           list[AccessLogEntry]

Every stored id owns a re-entrant lock. Services mutate an
entity only while holding its key lock, so operations on the same session
or workflow are serialised while unrelated ids never contend.

No foreign keys are enforced here; referential checks belong to services.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generic, TypeVar

from dataroom.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from dataroom.models.approval import ApprovalWorkflow
    from dataroom.models.audit import AccessLogEntry
    from dataroom.models.document import Document
    from dataroom.models.nda import NDARequest
    from dataroom.models.share import ShareSession

T = TypeVar("T")


class KeyedCollection(Generic[T]):
    """Map from id to entity with one RLock per id."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        self._items: dict[str, T] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    # ── Locking ──────────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> threading.RLock:
        # only stored ids keep a lock; unknown ids get a throwaway one
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                if key in self._items:
                    self._locks[key] = lock
            return lock

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._lock_for(key)
        with lock:
            yield

    # ── Access ───────────────────────────────────────────────────────────

    def get(self, key: str) -> T | None:
        return self._items.get(key)

    def require(self, key: str) -> T:
        item = self._items.get(key)
        if item is None:
            raise NotFoundError(self.resource, key)
        return item

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def values(self) -> list[T]:
        with self._guard:
            return list(self._items.values())

    # ── Mutation ─────────────────────────────────────────────────────────

    def add(self, key: str, item: T) -> T:
        """Insert a new entity; an existing id is a programming error."""
        with self._guard:
            if key in self._items:
                raise KeyError(f"{self.resource} id={key} already exists")
            self._items[key] = item
            self._locks.setdefault(key, threading.RLock())
        return item

    def put(self, key: str, item: T) -> T:
        with self._guard:
            self._items[key] = item
            self._locks.setdefault(key, threading.RLock())
        return item


class DataRoomStore:
    """Container for every collection the engine persists."""

    def __init__(self) -> None:
        self.documents: KeyedCollection[Document] = KeyedCollection("Document")
        self.share_sessions: KeyedCollection[ShareSession] = KeyedCollection("ShareSession")
        self.nda_requests: KeyedCollection[NDARequest] = KeyedCollection("NDARequest")
        self.approval_workflows: KeyedCollection[ApprovalWorkflow] = KeyedCollection("ApprovalWorkflow")
        self.access_log: list[AccessLogEntry] = []
        # (session_id, lower-cased email) -> nda id
        self.nda_index: dict[tuple[str, str], str] = {}

    def __repr__(self):
        return (
            f"<DataRoomStore docs={len(self.documents)} "
            f"sessions={len(self.share_sessions)} ndas={len(self.nda_requests)} "
            f"workflows={len(self.approval_workflows)} log={len(self.access_log)}>"
        )

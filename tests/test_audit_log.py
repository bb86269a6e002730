"""
Access audit log unit tests.

Tests cover:
  - record(): validation, id assignment, immutability
  - filter(): criteria, reverse insertion order
  - statistics(): breakdowns, top documents tie-break, cache invalidation
  - clear(): authorization
  - export(): CSV / JSON
  - concurrent appends
"""
import csv
import dataclasses
import io
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from dataroom.core.exceptions import InvalidEntryError, InvalidInputError, UnauthorizedError
from dataroom.models.audit import AccessAction, AccessLogEntry, ActorIdentity, DeviceType
from dataroom.services.audit_log import AccessAuditLog

ALICE = ActorIdentity(user_id="alice", email="alice@fund.example")
BOB = ActorIdentity(email="bob@fund.example")
GUEST = ActorIdentity.anonymous(ip_address="10.0.0.7")


@pytest.fixture()
def log(clock):
    return AccessAuditLog(clock=clock, admins=["auditor"])


# ═════════════════════════════════════════════════════════════════════════
# RECORD
# ═════════════════════════════════════════════════════════════════════════

class TestRecord:
    def test_record_assigns_sequential_ids(self, log):
        a = log.log(AccessAction.VIEW, document_id="d1", actor=ALICE)
        b = log.log("download", document_id="d1", actor=BOB)
        assert (a.id, b.id) == (1, 2)
        assert b.action == AccessAction.DOWNLOAD
        assert len(log) == 2

    def test_record_dict(self, log, clock):
        entry = log.record({
            "action": "view",
            "document_id": "d1",
            "actor": {"user_id": "alice"},
            "device_type": "mobile",
            "duration_seconds": "12.5",
        })
        assert entry.timestamp == clock.now
        assert entry.device_type == DeviceType.MOBILE
        assert entry.duration_seconds == 12.5
        assert entry.actor.is_anonymous is False

    def test_session_only_entry_is_valid(self, log):
        entry = log.log(AccessAction.VIEW, session_id="s1")
        assert entry.document_id is None

    @pytest.mark.parametrize("payload", [
        {"action": "print", "document_id": "d1"},
        {"action": "view"},
        {"action": "view", "document_id": "d1", "device_type": "watch"},
        {"action": "view", "document_id": "d1", "duration_seconds": -1},
        {"action": "view", "document_id": "d1", "duration_seconds": "soon"},
        {"action": "view", "document_id": "d1", "timestamp": "not-a-date"},
        {"action": "view", "document_id": "d1", "success": "yes"},
        {"action": "view", "document_id": {"x": 1}},
        {"action": "view", "session_id": ["s1"]},
        {"action": "view", "document_id": "d1", "document_name": 42},
        {"action": "view", "document_id": "d1", "error_message": {"why": "?"}},
        {"action": "view", "document_id": "d1", "actor": {"email": ["a@b.example"]}},
        {"action": "view", "document_id": "d1", "actor": {"user_agent": 7}},
        {"action": "view", "document_id": "d1", "actor": "alice"},
        {"action": "view", "document_id": "d1", "details": "abc"},
        {"action": "view", "document_id": "d1", "details": ["k", "v"]},
    ])
    def test_malformed_entries_rejected(self, log, payload):
        with pytest.raises(InvalidEntryError):
            log.record(payload)
        assert len(log) == 0

    def test_record_rejects_other_types(self, log):
        with pytest.raises(InvalidEntryError):
            log.record(["view", "d1"])

    def test_prebuilt_entry_with_non_string_ids_rejected(self, log, clock):
        with pytest.raises(InvalidEntryError):
            log.record(AccessLogEntry(timestamp=clock.now, action=AccessAction.VIEW, document_id=7))
        with pytest.raises(InvalidEntryError):
            log.record(AccessLogEntry(
                timestamp=clock.now, action=AccessAction.VIEW, document_id="d1",
                actor=ActorIdentity(user_id={"id": 1}),
            ))
        assert len(log) == 0

    def test_rejected_entries_leave_reads_working(self, log):
        log.log(AccessAction.VIEW, document_id="d1", actor=ALICE)
        with pytest.raises(InvalidEntryError):
            log.record({"action": "view", "document_id": {"x": 1}})
        assert log.statistics()["top_documents"][0]["document_id"] == "d1"
        assert len(log.filter(search="alice")) == 1

    def test_workflow_entry_without_document_is_valid(self, log):
        entry = log.log(AccessAction.SHARE, details={"workflow_id": "wf-1"})
        assert entry.document_id is None
        assert log.statistics()["top_documents"] == []

    def test_entries_are_immutable(self, log):
        entry = log.log(AccessAction.VIEW, document_id="d1", details={"k": "v"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.success = False
        with pytest.raises(TypeError):
            entry.details["k"] = "changed"

    def test_user_agent_sets_device(self, log):
        actor = ActorIdentity(user_id="x", user_agent="Mozilla/5.0 (iPad; CPU OS 17_0)")
        assert log.log(AccessAction.VIEW, document_id="d1", actor=actor).device_type == DeviceType.TABLET


# ═════════════════════════════════════════════════════════════════════════
# FILTER
# ═════════════════════════════════════════════════════════════════════════

class TestFilter:
    def test_reverse_insertion_order(self, log, clock):
        for i in range(3):
            log.log(AccessAction.VIEW, document_id=f"d{i}")
        # same timestamps everywhere: order must come from insertion, not time
        assert [e.document_id for e in log.filter()] == ["d2", "d1", "d0"]

    def test_order_not_resorted_by_timestamp(self, log, clock):
        later = clock.now + timedelta(hours=1)
        log.record(AccessLogEntry(timestamp=later, action=AccessAction.VIEW, document_id="late"))
        log.record(AccessLogEntry(timestamp=clock.now, action=AccessAction.VIEW, document_id="early"))
        assert [e.document_id for e in log.filter()] == ["early", "late"]

    def test_criteria(self, log):
        log.log(AccessAction.VIEW, document_id="d1", session_id="s1", actor=ALICE)
        log.log(AccessAction.DOWNLOAD, document_id="d1", actor=BOB)
        log.log(AccessAction.VIEW, document_id="d2", session_id="s1", actor=BOB, success=False)

        assert len(log.filter(action="view")) == 2
        assert len(log.filter(document_id="d1")) == 2
        assert len(log.filter(session_id="s1")) == 2
        assert len(log.filter(actor_id="bob@fund.example")) == 2
        assert len(log.filter(success=False)) == 1
        assert len(log.filter(action=AccessAction.VIEW, session_id="s1", success=True)) == 1

    def test_date_range_inclusive(self, log, clock):
        log.log(AccessAction.VIEW, document_id="d1")
        clock.advance(days=1)
        log.log(AccessAction.VIEW, document_id="d2")
        clock.advance(days=1)
        log.log(AccessAction.VIEW, document_id="d3")

        start = datetime(2026, 1, 16, 9, 0, tzinfo=timezone.utc)
        assert [e.document_id for e in log.filter(date_range=(start, start))] == ["d2"]
        assert [e.document_id for e in log.filter(date_range=(start, None))] == ["d3", "d2"]
        assert [e.document_id for e in log.filter(date_range=(None, "2026-01-15T23:59:59Z"))] == ["d1"]

    def test_search(self, log):
        log.log(AccessAction.VIEW, document_id="d1", document_name="Cap Table")
        log.log(AccessAction.VIEW, document_id="d2", document_name="Teaser")
        assert [e.document_id for e in log.filter(search="cap")] == ["d1"]

    def test_unknown_action_filter(self, log):
        with pytest.raises(InvalidInputError):
            log.filter(action="print")

    def test_limit(self, log):
        for i in range(5):
            log.log(AccessAction.VIEW, document_id=f"d{i}")
        assert [e.document_id for e in log.filter(limit=2)] == ["d4", "d3"]


# ═════════════════════════════════════════════════════════════════════════
# STATISTICS
# ═════════════════════════════════════════════════════════════════════════

class TestStatistics:
    def test_breakdowns(self, log, clock):
        log.log(AccessAction.VIEW, document_id="d1", actor=ALICE)
        log.log(AccessAction.VIEW, document_id="d1", actor=ALICE)
        log.record({"action": "download", "document_id": "d2", "actor": {"email": "bob@fund.example"},
                    "device_type": "mobile"})
        clock.advance(days=1)
        log.log(AccessAction.SHARE, session_id="s1", actor=GUEST)

        stats = log.statistics()
        assert stats["total_access"] == 4
        assert stats["unique_actors"] == 3
        assert stats["action_breakdown"] == {"view": 2, "download": 1, "upload": 0, "share": 1, "delete": 0}
        assert stats["device_breakdown"] == {"unknown": 3, "mobile": 1}
        assert stats["daily_access_counts"] == [
            {"date": "2026-01-15", "count": 3},
            {"date": "2026-01-16", "count": 1},
        ]

    def test_top_documents_ties_broken_by_most_recent(self, log):
        log.log(AccessAction.VIEW, document_id="a")
        log.log(AccessAction.VIEW, document_id="b")
        log.log(AccessAction.VIEW, document_id="c")
        log.log(AccessAction.VIEW, document_id="a")
        log.log(AccessAction.VIEW, document_id="b")
        top = [d["document_id"] for d in log.statistics()["top_documents"]]
        assert top == ["b", "a", "c"]

    def test_top_documents_capped_at_ten(self, log):
        for i in range(12):
            log.log(AccessAction.VIEW, document_id=f"d{i}")
        assert len(log.statistics()["top_documents"]) == 10

    def test_cache_invalidated_on_record(self, log):
        log.log(AccessAction.VIEW, document_id="d1")
        assert log.statistics()["total_access"] == 1
        log.log(AccessAction.VIEW, document_id="d1")
        assert log.statistics()["total_access"] == 2

    def test_cached_result_is_a_copy(self, log):
        log.log(AccessAction.VIEW, document_id="d1")
        log.statistics()["action_breakdown"]["view"] = 99
        assert log.statistics()["action_breakdown"]["view"] == 1

    def test_empty_log(self, log):
        stats = log.statistics()
        assert stats["total_access"] == 0
        assert stats["top_documents"] == []
        assert stats["daily_access_counts"] == []


# ═════════════════════════════════════════════════════════════════════════
# CLEAR & EXPORT
# ═════════════════════════════════════════════════════════════════════════

class TestClear:
    def test_clear_requires_admin(self, log):
        log.log(AccessAction.VIEW, document_id="d1")
        with pytest.raises(UnauthorizedError):
            log.clear("mallory")
        with pytest.raises(UnauthorizedError):
            log.clear(None)
        assert len(log) == 1

    def test_clear_by_admin(self, log):
        log.log(AccessAction.VIEW, document_id="d1")
        log.log(AccessAction.VIEW, document_id="d2")
        log.statistics()
        assert log.clear("auditor") == 2
        assert log.filter() == []
        assert log.statistics()["total_access"] == 0

    def test_without_admin_list_nobody_may_clear(self, clock):
        locked = AccessAuditLog(clock=clock)
        locked.log(AccessAction.VIEW, document_id="d1")
        with pytest.raises(UnauthorizedError):
            locked.clear("ops")
        assert len(locked) == 1


class TestExport:
    def test_csv(self, log):
        log.log(AccessAction.VIEW, document_id="d1", actor=ALICE)
        log.log(AccessAction.DOWNLOAD, document_id="d2", success=False, error_message="denied")
        rows = list(csv.DictReader(io.StringIO(log.export("csv"))))
        assert [r["document_id"] for r in rows] == ["d2", "d1"]
        assert rows[0]["success"] == "false"
        assert rows[1]["user_id"] == "alice"

    def test_json_with_filter(self, log):
        log.log(AccessAction.VIEW, document_id="d1")
        log.log(AccessAction.DOWNLOAD, document_id="d2")
        data = json.loads(log.export("json", action="download"))
        assert [d["document_id"] for d in data] == ["d2"]

    def test_unknown_format(self, log):
        with pytest.raises(InvalidInputError):
            log.export("xml")


class TestConcurrency:
    def test_concurrent_appends_keep_unique_ids(self, log):
        def write(i):
            return log.log(AccessAction.VIEW, document_id=f"d{i % 5}").id

        with ThreadPoolExecutor(max_workers=16) as executor:
            ids = list(executor.map(write, range(200)))

        assert sorted(ids) == list(range(1, 201))
        assert log.statistics()["total_access"] == 200

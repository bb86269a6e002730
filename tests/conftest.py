"""
Shared pytest fixtures for the Data Room Governance Engine test suite.

Provides:
    - clock: FakeClock pinned to a fixed UTC instant (advance() to move time)
    - notifier: InMemoryNotifier bound to the fake clock
    - dataroom: DataRoom facade wired to clock + notifier, with sample documents
    - app: Flask application built around that DataRoom (function-scoped)
    - client: Flask test client
"""

from datetime import datetime, timedelta, timezone

import pytest

from dataroom import create_app
from dataroom.services.dataroom import DataRoom
from dataroom.services.notification import InMemoryNotifier

START = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

APPROVERS = {
    "analyst": ["analyst-1", "analyst-2"],
    "manager": ["manager-1"],
    "admin": ["admin-1", "admin-2", "admin-3"],
}

SAMPLE_DOCUMENTS = [
    {"id": "doc-teaser", "name": "Company Teaser", "visibility": "public", "category": "ir_deck"},
    {"id": "doc-deck", "name": "IR Deck 2026", "visibility": "investors", "category": "ir_deck"},
    {"id": "doc-kpi", "name": "Monthly KPI Report", "visibility": "team", "category": "kpi_report",
     "source": "kpi"},
    {"id": "doc-captable", "name": "Cap Table", "visibility": "private", "category": "financial"},
]


class FakeClock:
    """Callable clock; ``advance`` moves it forward."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FailingNotifier:
    """Notifier whose every delivery raises."""

    def __init__(self):
        self.attempts = 0

    def send_notification(self, user_id, type, payload):
        self.attempts += 1
        raise ConnectionError("smtp relay unreachable")


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def notifier(clock):
    return InMemoryNotifier(clock)


def build_dataroom(clock, notifier, **overrides):
    options = {
        "clock": clock,
        "notifier": notifier,
        "base_url": "https://dataroom.test/",
        "audit_admins": ["auditor"],
        "approver_directory": APPROVERS,
    }
    options.update(overrides)
    room = DataRoom(**options)
    room.register_documents(SAMPLE_DOCUMENTS)
    return room


@pytest.fixture()
def dataroom(clock, notifier):
    return build_dataroom(clock, notifier)


# ── App fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def app(dataroom):
    """Flask application bound to the per-test DataRoom."""
    return create_app("testing", dataroom=dataroom)


@pytest.fixture()
def client(app):
    return app.test_client()

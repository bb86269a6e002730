"""Shared utility functions for clocks, datetime parsing and deadline policies.

utc_now:           default clock injected into every service
parse_datetime:    lenient parser used by blueprints (returns None on bad input)
resolve_deadline:  turns "7days" / "30days" / "never" / explicit dates into datetimes
"""
from datetime import date, datetime, time, timedelta, timezone


# Named relative deadlines shared by share-link expiry and NDA deadlines.
DEADLINE_POLICIES = {
    "7days": timedelta(days=7),
    "30days": timedelta(days=30),
}

# Policies meaning "no deadline".
UNBOUNDED_POLICIES = frozenset({"none", "never", ""})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix offsets."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value):
    """Parse an ISO datetime or date string to an aware datetime.

    Returns None for empty/invalid input. Supports:
    - datetime / date objects
    - YYYY-MM-DDTHH:MM:SS[+offset] (a trailing "Z" is accepted)
    - YYYY-MM-DD (midnight UTC)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def resolve_deadline(policy, now: datetime) -> datetime | None:
    """Compute an absolute deadline from a policy.

    Args:
        policy: "7days", "30days", "none"/"never"/None, a datetime, a date,
                or an ISO string.
        now:    Reference time (the injected clock's current value).

    Returns:
        Aware datetime, or None for an unbounded policy.

    Raises:
        ValueError: Unknown policy string that is not a parseable date.
    """
    if policy is None:
        return None
    if isinstance(policy, (datetime, date)):
        return parse_datetime(policy)
    key = str(policy).strip().lower()
    if key in UNBOUNDED_POLICIES:
        return None
    if key in DEADLINE_POLICIES:
        return now + DEADLINE_POLICIES[key]
    parsed = parse_datetime(policy)
    if parsed is None:
        raise ValueError(
            f"Unknown deadline policy {policy!r}. "
            f"Use one of {sorted(DEADLINE_POLICIES)}, 'none' or an ISO date"
        )
    return parsed


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None

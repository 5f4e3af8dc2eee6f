# propflow/domain/eviction_rules.py
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

# -----------------------------------------------------------------------------
# Eviction notice lifecycle
# -----------------------------------------------------------------------------
#   served -> cure_period -> cured            (tenant fixed the issue)
#                        \-> expired          (deadline passed without cure)
#                              -> filed_with_court -> completed
#
# Pure rules only. Persistence and side effects live in
# services/eviction_service.py.
# -----------------------------------------------------------------------------


class NoticeType(str, Enum):
    THREE_DAY = "3-day"
    SEVEN_DAY = "7-day"
    THIRTY_DAY = "30-day"


class EvictionStatus(str, Enum):
    SERVED = "served"
    CURE_PERIOD = "cure_period"
    CURED = "cured"
    EXPIRED = "expired"
    FILED_WITH_COURT = "filed_with_court"
    COMPLETED = "completed"


NOTICE_DAYS: dict[NoticeType, int] = {
    NoticeType.THREE_DAY: 3,
    NoticeType.SEVEN_DAY: 7,
    NoticeType.THIRTY_DAY: 30,
}

ALLOWED_TRANSITIONS: dict[EvictionStatus, frozenset[EvictionStatus]] = {
    EvictionStatus.SERVED: frozenset(
        {EvictionStatus.CURE_PERIOD, EvictionStatus.CURED, EvictionStatus.EXPIRED}
    ),
    EvictionStatus.CURE_PERIOD: frozenset({EvictionStatus.CURED, EvictionStatus.EXPIRED}),
    EvictionStatus.EXPIRED: frozenset({EvictionStatus.FILED_WITH_COURT}),
    EvictionStatus.FILED_WITH_COURT: frozenset({EvictionStatus.COMPLETED}),
    EvictionStatus.CURED: frozenset(),
    EvictionStatus.COMPLETED: frozenset(),
}

# Statuses the daily sweep may move to EXPIRED
OPEN_STATUSES: frozenset[EvictionStatus] = frozenset({EvictionStatus.SERVED, EvictionStatus.CURE_PERIOD})

# Statuses that stamp exactly one timestamp column when entered
TIMESTAMP_FIELD: dict[EvictionStatus, str] = {
    EvictionStatus.CURED: "cured_at",
    EvictionStatus.FILED_WITH_COURT: "filed_at",
    EvictionStatus.COMPLETED: "completed_at",
}

BLOCKED_LEASE_STATUSES = frozenset({"terminated", "ended"})


def parse_notice_type(value: str | NoticeType) -> NoticeType:
    try:
        return NoticeType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in NoticeType)
        raise ValueError(f"unknown notice type {value!r} (expected one of: {allowed})")


def parse_status(value: str | EvictionStatus) -> EvictionStatus:
    try:
        return EvictionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in EvictionStatus)
        raise ValueError(f"unknown eviction status {value!r} (expected one of: {allowed})")


def compute_deadline(served_at: datetime, notice_type: str | NoticeType) -> datetime:
    return served_at + timedelta(days=NOTICE_DAYS[parse_notice_type(notice_type)])


def can_transition(current: EvictionStatus, requested: EvictionStatus) -> bool:
    """Total over every (current, requested) pair; anything not listed is refused."""
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: EvictionStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


def timestamp_field_for(status: EvictionStatus) -> Optional[str]:
    return TIMESTAMP_FIELD.get(status)


def append_note(existing: Optional[str], note: str, at: datetime) -> str:
    """Notes are an append-only log: each entry is prefixed with its timestamp."""
    entry = f"[{at.isoformat(timespec='seconds')}] {note.strip()}"
    if not existing:
        return entry
    return f"{existing}\n{entry}"


def is_past_deadline(deadline_date: datetime, now: datetime) -> bool:
    return deadline_date < now

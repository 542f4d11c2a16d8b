"""Infer tag and time filters from cue phrases in a free-text query.

Cues:
- ``urgent``, ``important`` -> urgent_action
- ``email`` -> email_thread
- ``meeting`` -> meeting_notes
- ``commitment``, ``promise`` -> commitment
- ``follow up``, ``followup`` -> followup_required
- ``today``, ``yesterday``, ``this week`` -> a UTC time window

Tags are combined any-of. When several time cues appear the first one in
the table above (``today``, then ``yesterday``, then ``this week``) wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone

from semstore.domain.enums import ContentTag

_TAG_CUES: list[tuple[re.Pattern[str], ContentTag]] = [
    (re.compile(r"\burgent\b"), ContentTag.URGENT_ACTION),
    (re.compile(r"\bimportant\b"), ContentTag.URGENT_ACTION),
    (re.compile(r"\bemails?\b"), ContentTag.EMAIL_THREAD),
    (re.compile(r"\bmeetings?\b"), ContentTag.MEETING_NOTES),
    (re.compile(r"\bcommitments?\b"), ContentTag.COMMITMENT),
    (re.compile(r"\bpromise[sd]?\b"), ContentTag.COMMITMENT),
    (re.compile(r"\bfollow[\s-]?ups?\b"), ContentTag.FOLLOWUP_REQUIRED),
]

_TODAY = re.compile(r"\btoday\b")
_YESTERDAY = re.compile(r"\byesterday\b")
_THIS_WEEK = re.compile(r"\bthis\s+week\b")


@dataclass
class QueryPlan:
    """Filters inferred from a query string."""

    text: str
    tags: set[ContentTag] = field(default_factory=set)
    since: datetime | None = None
    until: datetime | None = None
    window: str | None = None

    @property
    def has_filters(self) -> bool:
        return bool(self.tags) or self.since is not None or self.until is not None


def _midnight(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)


def time_window(name: str, now: datetime) -> tuple[datetime, datetime]:
    """Return ``(since, until)`` for a named window ending at *now* (UTC).

    ``today`` is [00:00 today, now], ``yesterday`` is [00:00 yesterday,
    00:00 today) and ``this week`` is [Monday 00:00, now].
    """
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    start_of_today = _midnight(now)
    if name == "today":
        return start_of_today, now
    if name == "yesterday":
        return start_of_today - timedelta(days=1), start_of_today - timedelta(microseconds=1)
    if name == "this week":
        return start_of_today - timedelta(days=now.weekday()), now
    raise ValueError(f"Unknown time window: {name}")


def infer_query(text: str, now: datetime | None = None) -> QueryPlan:
    """Parse cue phrases from *text* into a ``QueryPlan``."""
    lowered = text.lower()
    plan = QueryPlan(text=text)
    for pattern, tag in _TAG_CUES:
        if pattern.search(lowered):
            plan.tags.add(tag)

    for name, pattern in (("today", _TODAY), ("yesterday", _YESTERDAY), ("this week", _THIS_WEEK)):
        if pattern.search(lowered):
            plan.window = name
            plan.since, plan.until = time_window(name, now or datetime.now(timezone.utc))
            break
    return plan

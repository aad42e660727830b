# app/counters.py

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, List, Optional
import time
from app.config import settings
from app.tags import (
    GOOD, ISSUE_TAGS, UNKNOWN, WAITING_MESSAGE,
    feedback_message, is_issue_tag, normalize_tags,
)


@dataclass
class CounterRecord:
    """Live counters for one user"""
    latest_tags: List[str] = field(default_factory=list)
    latest_timestamp: Optional[datetime] = None
    good: int = 0
    warning: int = 0
    total: int = 0
    issue_counts: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(ISSUE_TAGS, 0))
    expires_at: float = 0.0


@dataclass(frozen=True)
class CounterSnapshot:
    latest_tags: List[str]
    latest_timestamp: Optional[datetime]
    good: int
    warning: int
    total: int
    issue_counts: Dict[str, int]


@dataclass(frozen=True)
class FinalCounts:
    good: int = 0
    total: int = 0
    warning: int = 0


class CounterCache:
    """
    Per-user rolling posture counters.
    Thread-safe for concurrent ingestion workers; records expire after
    `ttl_seconds` without a write.
    """

    def __init__(self, ttl_seconds: int = 600, monotonic: Callable[[], float] = time.monotonic):
        self._records: Dict[int, CounterRecord] = {}
        self._lock = Lock()
        self._ttl = ttl_seconds
        self._monotonic = monotonic

    def increment(self, user_id: int, tags: List[str], timestamp: Optional[datetime] = None) -> None:
        """
        Count one event.
        An event is warning if it has any known issue tag, good if it has
        GOOD and no issue tag, so good + warning never exceeds total.
        """
        tags = normalize_tags(tags)
        issues = {t for t in tags if is_issue_tag(t)}

        with self._lock:
            record = self._get_live_record(user_id)
            if record is None:
                record = CounterRecord()
                self._records[user_id] = record

            record.total += 1
            if issues:
                record.warning += 1
                for tag in issues:
                    record.issue_counts[tag] += 1
            elif GOOD in tags:
                record.good += 1

            record.latest_tags = tags
            record.latest_timestamp = timestamp or datetime.now()
            record.expires_at = self._monotonic() + self._ttl

    def read(self, user_id: int) -> Optional[CounterSnapshot]:
        """Current snapshot, or None when nothing was recorded yet"""
        with self._lock:
            record = self._get_live_record(user_id)
            if record is None:
                return None
            return CounterSnapshot(
                latest_tags=list(record.latest_tags),
                latest_timestamp=record.latest_timestamp,
                good=record.good,
                warning=record.warning,
                total=record.total,
                issue_counts=dict(record.issue_counts),
            )

    def final_counts(self, user_id: int) -> FinalCounts:
        with self._lock:
            record = self._get_live_record(user_id)
            if record is None:
                return FinalCounts()
            return FinalCounts(good=record.good, total=record.total, warning=record.warning)

    def clear(self, user_id: int) -> None:
        with self._lock:
            self._records.pop(user_id, None)

    def purge_expired(self) -> int:
        """Drop idle records. Returns how many were removed."""
        now = self._monotonic()
        with self._lock:
            expired = [uid for uid, r in self._records.items() if r.expires_at <= now]
            for uid in expired:
                del self._records[uid]
            return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def _get_live_record(self, user_id: int) -> Optional[CounterRecord]:
        # Caller holds the lock
        record = self._records.get(user_id)
        if record is not None and record.expires_at <= self._monotonic():
            del self._records[user_id]
            return None
        return record


def maintenance_ratio(good: int, total: int) -> float:
    """good / total as a percentage, 2 decimals"""
    if total <= 0:
        return 0.0
    return round(good / total * 100, 2)


def build_feedback(snapshot: Optional[CounterSnapshot]) -> dict:
    """
    Poll view of a snapshot.
    Without data the client gets a neutral placeholder, never an error.
    """
    if snapshot is None:
        return {
            "tags": [UNKNOWN],
            "messages": [WAITING_MESSAGE],
            "timestamp": datetime.now(),
            "ratio": 0.0,
            "warning_total": 0,
            "issue_counts": {},
        }

    tags = snapshot.latest_tags or [UNKNOWN]
    return {
        "tags": tags,
        "messages": [feedback_message(t) for t in tags],
        "timestamp": snapshot.latest_timestamp or datetime.now(),
        "ratio": maintenance_ratio(snapshot.good, snapshot.total),
        "warning_total": snapshot.warning,
        "issue_counts": {k: v for k, v in snapshot.issue_counts.items() if v > 0},
    }


# Global singleton
counter_cache = CounterCache(ttl_seconds=settings.cache_ttl_seconds)

"""
Cap tracker for the Points service.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterator, Optional, Set, Tuple

from shared.logging import get_logger


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
WEEKLY_RESET_DAYS = 7

Key = Tuple[str, str]


class ClampResult(str, Enum):
    """How a capped award was settled."""
    FULL = "full"
    PARTIAL = "partial"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class CapTrackerEntry:
    """Accumulated points and last reset for one (group, rule) key."""
    points: Optional[int]
    last_reset: Optional[datetime]
    known: bool = False


@dataclass(frozen=True)
class CapDecision:
    """Outcome of one clamp-and-update step."""
    requested: int
    granted: int
    previous: int
    cap: int
    reset_applied: bool

    @property
    def result(self) -> ClampResult:
        if self.previous >= self.cap:
            return ClampResult.EXHAUSTED
        if self.granted < self.requested:
            return ClampResult.PARTIAL
        return ClampResult.FULL

    @property
    def accumulated(self) -> int:
        return self.previous + self.granted


def clamp_award(current: int, requested: int, cap: int) -> int:
    """Points a capped award may contribute given the running total."""
    if current >= cap:
        return 0
    if current + requested > cap:
        return cap - current
    return requested


class CapTracker:
    """Per (group, rule) running totals with lazy interval resets.

    Keys are guarded by a fixed pool of re-entrant locks picked by key hash,
    so the read-clamp-write sequence for one key never interleaves with
    another writer of the same key.
    """

    def __init__(self, shards: int = 64):
        self.logger = get_logger("points.caps.tracker")
        self._points: Dict[Key, int] = {}
        self._last_reset: Dict[Key, datetime] = {}
        self._known: Set[Key] = set()
        self._locks = [threading.RLock() for _ in range(max(1, shards))]

    def _lock_for(self, key: Key) -> threading.RLock:
        return self._locks[hash(key) % len(self._locks)]

    @contextmanager
    def lock(self, group_id: str, rule_name: str) -> Iterator[None]:
        """Hold the lock guarding one key."""
        with self._lock_for((group_id, rule_name)):
            yield

    def current_points(self, group_id: str, rule_name: str) -> int:
        return self._points.get((group_id, rule_name), 0)

    def last_reset(self, group_id: str, rule_name: str) -> datetime:
        return self._last_reset.get((group_id, rule_name), EPOCH)

    def apply_delta(self, group_id: str, rule_name: str, delta: int) -> int:
        """Add to the running total and return the new value."""
        key = (group_id, rule_name)
        with self._lock_for(key):
            value = self._points.get(key, 0) + delta
            self._points[key] = value
            self._known.add(key)
            return value

    def reset(self, group_id: str, rule_name: str) -> None:
        """Drop the running total for a key."""
        key = (group_id, rule_name)
        with self._lock_for(key):
            self._points.pop(key, None)
            self._known.add(key)

    def maybe_reset(self, group_id: str, rule_name: str, now: datetime, interval_days: int) -> bool:
        """Reset the key if at least ``interval_days`` have passed since the last reset."""
        key = (group_id, rule_name)
        with self._lock_for(key):
            last = self._last_reset.get(key, EPOCH)
            if now - last < timedelta(days=interval_days):
                return False
            self._known.add(key)
            self._points.pop(key, None)
            self._last_reset[key] = now

        self.logger.info(
            "Cap reset",
            group_id=group_id,
            rule=rule_name,
            interval_days=interval_days,
            previous_reset=last.isoformat()
        )
        return True

    def maybe_weekly_reset(self, group_id: str, rule_name: str, now: datetime) -> bool:
        return self.maybe_reset(group_id, rule_name, now, WEEKLY_RESET_DAYS)

    def clamp(self, group_id: str, rule_name: str, requested: int, cap: int, now: datetime,
              interval_days: Optional[int] = None, baseline: Optional[int] = None) -> CapDecision:
        """Reset if due, clamp the request against the cap and record the grant.

        ``baseline`` seeds the running total from persisted group state when
        the tracker has never seen the key. Once seen, a key is never
        seeded again, even after a reset.
        """
        key = (group_id, rule_name)
        with self._lock_for(key):
            if key not in self._known:
                if baseline:
                    self._points[key] = baseline
                self._known.add(key)

            reset_applied = False
            if interval_days is not None:
                reset_applied = self.maybe_reset(group_id, rule_name, now, interval_days)

            current = self._points.get(key, 0)
            granted = clamp_award(current, requested, cap)
            self._points[key] = current + granted

        decision = CapDecision(
            requested=requested,
            granted=granted,
            previous=current,
            cap=cap,
            reset_applied=reset_applied
        )
        self.logger.debug(
            "Cap decision",
            group_id=group_id,
            rule=rule_name,
            cap=cap,
            previous=current,
            requested=requested,
            granted=granted,
            result=decision.result.value
        )
        return decision

    def snapshot(self, group_id: str, rule_name: str) -> CapTrackerEntry:
        key = (group_id, rule_name)
        with self._lock_for(key):
            return CapTrackerEntry(
                points=self._points.get(key),
                last_reset=self._last_reset.get(key),
                known=key in self._known
            )

    def restore(self, group_id: str, rule_name: str, entry: CapTrackerEntry) -> None:
        """Put a key back to a state captured by ``snapshot``."""
        key = (group_id, rule_name)
        with self._lock_for(key):
            if entry.points is None:
                self._points.pop(key, None)
            else:
                self._points[key] = entry.points
            if entry.last_reset is None:
                self._last_reset.pop(key, None)
            else:
                self._last_reset[key] = entry.last_reset
            if entry.known:
                self._known.add(key)
            else:
                self._known.discard(key)

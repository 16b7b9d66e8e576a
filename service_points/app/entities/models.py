"""
Person and group entities for the Points service.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PointHistoryEntry:
    """Individual audit record."""
    points: int
    reason: str
    rule_name: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class GroupPointHistoryEntry:
    """Group audit record of a signed delta."""
    points: int
    reason: str
    rule_name: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Person:
    """Individual participant. Belongs to exactly one group."""
    id: str
    name: str
    group_id: str
    point_history: List[PointHistoryEntry] = field(default_factory=list)

    @property
    def total_points(self) -> int:
        return sum(entry.points for entry in self.point_history)

    def record_contribution(self, points: int, reason: str, rule_name: str,
                            timestamp: Optional[datetime] = None) -> PointHistoryEntry:
        """Append an audit entry at the given value."""
        entry = PointHistoryEntry(points, reason, rule_name, timestamp or utcnow())
        self.point_history.append(entry)
        return entry


@dataclass
class Group:
    """Team whose total is the sum of its history deltas."""
    id: str
    name: str
    total_points: int = 0
    point_history: List[GroupPointHistoryEntry] = field(default_factory=list)
    capped_activity: Dict[str, int] = field(default_factory=dict)

    def add_points(self, points: int, reason: str, rule_name: str,
                   timestamp: Optional[datetime] = None) -> bool:
        """Apply a signed delta. Zero deltas leave no trace."""
        if points == 0:
            return False
        self.total_points += points
        self.point_history.append(
            GroupPointHistoryEntry(points, reason, rule_name, timestamp or utcnow())
        )
        return True

    def current_points_for_activity(self, rule_name: str) -> int:
        return self.capped_activity.get(rule_name, 0)

    def update_activity_points(self, rule_name: str, points: int) -> None:
        self.capped_activity[rule_name] = points

    def reset_activity_cap(self, rule_name: str) -> None:
        self.capped_activity.pop(rule_name, None)

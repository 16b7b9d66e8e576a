"""
Entity store for the Points service.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol

from shared.logging import get_logger
from shared.errors import PersistenceFailure
from .models import Person, Group, PointHistoryEntry, GroupPointHistoryEntry


class EntityStore(Protocol):
    """Operations the engine needs from persistence."""

    def find_person(self, person_id: str) -> Optional[Person]:
        ...

    def find_group(self, group_id: str) -> Optional[Group]:
        ...

    def find_group_members(self, group_id: str) -> List[Person]:
        ...

    def list_all_groups(self) -> List[Group]:
        ...

    def save_person(self, person: Person) -> None:
        ...

    def save_group(self, group: Group) -> None:
        ...

    def transaction(self):
        """Context manager: commit on clean exit, discard writes on error.

        Transactions must be serialized against each other. Cap tracker
        rollback restores absolute snapshots, which is only correct when no
        other distribution ran in between.
        """
        ...


class _UnitOfWork:
    """Writes buffered by one open transaction."""

    def __init__(self):
        self.persons: Dict[str, Person] = {}
        self.groups: Dict[str, Group] = {}


class InMemoryEntityStore:
    """Thread-safe in-memory store with buffered transactions.

    Reads hand out copies, so callers mutate detached entities and nothing
    is visible until saved. Inside ``transaction()`` saves are buffered and
    applied together on exit; an exception discards the whole buffer. The
    store lock is held for the whole transaction.
    """

    def __init__(self):
        self.logger = get_logger("points.entities.store")
        self._persons: Dict[str, Person] = {}
        self._groups: Dict[str, Group] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    # Transactions

    @property
    def _unit(self) -> Optional[_UnitOfWork]:
        return getattr(self._local, "unit", None)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryEntityStore"]:
        """Apply every save made inside the block atomically."""
        with self._lock:
            if self._unit is not None:
                # Nested blocks join the outer transaction
                yield self
                return

            unit = _UnitOfWork()
            self._local.unit = unit
            try:
                yield self
            except BaseException:
                self.logger.debug(
                    "Transaction discarded",
                    persons=len(unit.persons),
                    groups=len(unit.groups)
                )
                raise
            else:
                self._persons.update(unit.persons)
                self._groups.update(unit.groups)
            finally:
                self._local.unit = None

    # Reads

    def _person_view(self) -> Dict[str, Person]:
        unit = self._unit
        if unit is None or not unit.persons:
            return self._persons
        merged = dict(self._persons)
        merged.update(unit.persons)
        return merged

    def _group_view(self) -> Dict[str, Group]:
        unit = self._unit
        if unit is None or not unit.groups:
            return self._groups
        merged = dict(self._groups)
        merged.update(unit.groups)
        return merged

    def find_person(self, person_id: str) -> Optional[Person]:
        with self._lock:
            person = self._person_view().get(person_id)
            return copy.deepcopy(person) if person is not None else None

    def find_group(self, group_id: str) -> Optional[Group]:
        with self._lock:
            group = self._group_view().get(group_id)
            return copy.deepcopy(group) if group is not None else None

    def find_group_members(self, group_id: str) -> List[Person]:
        with self._lock:
            return [
                copy.deepcopy(person) for person in self._person_view().values()
                if person.group_id == group_id
            ]

    def list_all_groups(self) -> List[Group]:
        with self._lock:
            return [copy.deepcopy(group) for group in self._group_view().values()]

    def list_all_persons(self) -> List[Person]:
        with self._lock:
            return [copy.deepcopy(person) for person in self._person_view().values()]

    def search_persons(self, fragment: str) -> List[Person]:
        """Persons whose name contains the fragment, ignoring case."""
        needle = fragment.lower()
        return [p for p in self.list_all_persons() if needle in p.name.lower()]

    def search_groups(self, fragment: str) -> List[Group]:
        """Groups whose name contains the fragment, ignoring case."""
        needle = fragment.lower()
        return [g for g in self.list_all_groups() if needle in g.name.lower()]

    def person_history(self, person_id: str) -> List[PointHistoryEntry]:
        person = self.find_person(person_id)
        return list(person.point_history) if person else []

    def group_history(self, group_id: str) -> List[GroupPointHistoryEntry]:
        group = self.find_group(group_id)
        return list(group.point_history) if group else []

    def leaderboard(self, limit: Optional[int] = None) -> List[Group]:
        """Groups ordered by total points, highest first."""
        ranked = sorted(self.list_all_groups(), key=lambda g: (-g.total_points, g.name))
        return ranked[:limit] if limit is not None else ranked

    # Writes

    def add_group(self, group: Group) -> Group:
        """Register a new group."""
        with self._lock:
            if group.id in self._group_view():
                raise PersistenceFailure(f"Group already exists: {group.id}", {"group_id": group.id})
            self._write_group(group)
        self.logger.info("Group added", group_id=group.id, name=group.name)
        return group

    def add_person(self, person: Person) -> Person:
        """Register a new person in an existing group."""
        with self._lock:
            if person.id in self._person_view():
                raise PersistenceFailure(f"Person already exists: {person.id}", {"person_id": person.id})
            if person.group_id not in self._group_view():
                raise PersistenceFailure(
                    f"Unknown group for person {person.id}: {person.group_id}",
                    {"person_id": person.id, "group_id": person.group_id}
                )
            self._write_person(person)
        self.logger.info("Person added", person_id=person.id, group_id=person.group_id)
        return person

    def save_person(self, person: Person) -> None:
        with self._lock:
            existing = self._person_view().get(person.id)
            if existing is None:
                raise PersistenceFailure(f"Unknown person: {person.id}", {"person_id": person.id})
            if existing.group_id != person.group_id:
                raise PersistenceFailure(
                    f"Owning group of {person.id} cannot change",
                    {"person_id": person.id, "group_id": existing.group_id}
                )
            self._write_person(person)

    def save_group(self, group: Group) -> None:
        with self._lock:
            if group.id not in self._group_view():
                raise PersistenceFailure(f"Unknown group: {group.id}", {"group_id": group.id})
            self._write_group(group)

    def _write_person(self, person: Person) -> None:
        stored = copy.deepcopy(person)
        unit = self._unit
        if unit is not None:
            unit.persons[person.id] = stored
        else:
            self._persons[person.id] = stored

    def _write_group(self, group: Group) -> None:
        stored = copy.deepcopy(group)
        unit = self._unit
        if unit is not None:
            unit.groups[group.id] = stored
        else:
            self._groups[group.id] = stored

"""
Outcome distribution for the Points service.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import UnknownParticipant
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..caps.tracker import CapDecision, CapTracker, CapTrackerEntry
from ..entities.models import Group, Person, as_utc, utcnow
from ..entities.store import EntityStore
from ..rules.models import Outcome, OutcomeKind, RuleDefinition


COMPLIANT_ROLE = "compliant"

Participants = Mapping[str, Tuple[str, ...]]


def normalize_participants(
    participants: Optional[Mapping[str, Union[str, Sequence[str]]]]
) -> Dict[str, Tuple[str, ...]]:
    """Turn role -> id or role -> ids into role -> ordered unique ids."""
    normalized: Dict[str, Tuple[str, ...]] = {}
    for role, value in (participants or {}).items():
        if value is None:
            continue
        ids = (value,) if isinstance(value, str) else tuple(value)
        ids = tuple(dict.fromkeys(i for i in ids if i))
        if ids:
            normalized[role] = ids
    return normalized


@dataclass(frozen=True)
class PersonEntry:
    """Audit entry written for one person."""
    person_id: str
    group_id: str
    points: int
    kind: OutcomeKind
    role: str


@dataclass(frozen=True)
class GroupDelta:
    """Group total change produced by one outcome."""
    group_id: str
    requested: int
    points: int
    kind: OutcomeKind
    role: str
    cap_decision: Optional[CapDecision] = None


@dataclass(frozen=True)
class SkippedOutcome:
    """Outcome that could not be applied to a participant."""
    role: str
    person_id: Optional[str]
    reason: str
    code: Optional[str] = None


@dataclass
class Distribution:
    """Everything one rule distribution wrote."""
    rule_name: str
    mixed: bool
    person_entries: List[PersonEntry] = field(default_factory=list)
    group_deltas: List[GroupDelta] = field(default_factory=list)
    skipped: List[SkippedOutcome] = field(default_factory=list)

    def group_total(self, group_id: str) -> int:
        return sum(d.points for d in self.group_deltas if d.group_id == group_id)

    def person_total(self, person_id: str) -> int:
        return sum(e.points for e in self.person_entries if e.person_id == person_id)


class CapJournal:
    """First-touch snapshots of tracker keys, for rollback.

    Only valid inside a serialized store transaction.
    """

    def __init__(self, tracker: CapTracker):
        self.tracker = tracker
        self._entries: Dict[Tuple[str, str], CapTrackerEntry] = {}

    def touch(self, group_id: str, rule_name: str) -> None:
        key = (group_id, rule_name)
        if key not in self._entries:
            self._entries[key] = self.tracker.snapshot(group_id, rule_name)

    def rollback(self) -> int:
        for (group_id, rule_name), entry in reversed(list(self._entries.items())):
            self.tracker.restore(group_id, rule_name, entry)
        count = len(self._entries)
        self._entries.clear()
        return count


class OutcomeDistributor:
    """Applies a matched rule's outcomes to persons and groups."""

    def __init__(
        self,
        store: EntityStore,
        tracker: CapTracker,
        clock: Callable[[], datetime] = utcnow,
        default_reset_interval_days: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.tracker = tracker
        self.clock = clock
        self.default_reset_interval_days = default_reset_interval_days
        self.metrics = metrics
        self.logger = get_logger("points.distribution")

    def distribute(
        self,
        rule: RuleDefinition,
        participants: Mapping[str, Union[str, Sequence[str]]],
        now: Optional[datetime] = None,
    ) -> Distribution:
        """Apply one rule as a single unit.

        Store writes and cap tracker changes either all land or, if anything
        raises, none of them do.
        Naive ``now`` values are read as UTC.
        """
        now = as_utc(now or self.clock())
        roles = normalize_participants(participants)
        journal = CapJournal(self.tracker)
        distribution = Distribution(rule_name=rule.name, mixed=rule.has_mixed_outcomes)

        try:
            with self.store.transaction():
                if distribution.mixed:
                    self._distribute_mixed(rule, roles, now, journal, distribution)
                else:
                    self._distribute_single(rule, roles, now, journal, distribution)
        except BaseException:
            restored = journal.rollback()
            self.logger.error("Rule distribution rolled back", rule=rule.name, cap_keys_restored=restored)
            raise

        return distribution

    def _reset_interval(self, rule: RuleDefinition) -> Optional[int]:
        if rule.reset_interval_days is not None:
            return rule.reset_interval_days
        return self.default_reset_interval_days

    def _resolve(self, rule: RuleDefinition, role: str, person_id: str,
                 distribution: Distribution) -> Optional[Tuple[Person, Group]]:
        """Look up a participant and their group, recording a skip if either is missing."""
        person = self.store.find_person(person_id)
        if person is None:
            self._skip_unknown(rule, distribution, role, UnknownParticipant("person", person_id))
            return None
        group = self.store.find_group(person.group_id)
        if group is None:
            self._skip_unknown(
                rule, distribution, role, UnknownParticipant("group", person.group_id, {"person_id": person_id})
            )
            return None
        return person, group

    def _skip(self, rule: RuleDefinition, distribution: Distribution, role: str,
              person_id: Optional[str], reason: str, code: Optional[str] = None) -> None:
        distribution.skipped.append(SkippedOutcome(role=role, person_id=person_id, reason=reason, code=code))
        self.logger.warning(
            "Outcome skipped", rule=rule.name, role=role, person_id=person_id, reason=reason, code=code
        )

    def _skip_unknown(self, rule: RuleDefinition, distribution: Distribution, role: str,
                      error: UnknownParticipant) -> None:
        person_id = error.details.get("person_id", error.entity_id)
        self._skip(rule, distribution, role, person_id, error.message, code=error.code)

    def _record_person(self, rule: RuleDefinition, person: Person, outcome: Outcome,
                       now: datetime, distribution: Distribution) -> None:
        person.record_contribution(outcome.points, outcome.reason, rule.name, now)
        self.store.save_person(person)
        distribution.person_entries.append(PersonEntry(
            person_id=person.id,
            group_id=person.group_id,
            points=outcome.points,
            kind=outcome.kind,
            role=outcome.target
        ))
        self.logger.debug("Person points recorded", rule=rule.name, person_id=person.id, points=outcome.points)

    def _settle(self, rule: RuleDefinition, group: Group, outcome: Outcome, requested: int,
                now: datetime, journal: CapJournal) -> Tuple[int, Optional[CapDecision]]:
        """Group delta for an outcome; capped awards go through the tracker."""
        if not outcome.is_award or rule.cap is None:
            return requested, None

        journal.touch(group.id, rule.name)
        decision = self.tracker.clamp(
            group.id,
            rule.name,
            requested,
            rule.cap.max_points,
            now,
            interval_days=self._reset_interval(rule),
            baseline=group.current_points_for_activity(rule.name)
        )
        if decision.reset_applied:
            group.reset_activity_cap(rule.name)
            self._count("cap_resets_total", rule=rule.name)
        group.update_activity_points(rule.name, decision.accumulated)
        self._count("cap_clamps_total", rule=rule.name, result=decision.result.value)
        return decision.granted, decision

    def _apply_group(self, rule: RuleDefinition, group: Group, outcome: Outcome, requested: int,
                     delta: int, decision: Optional[CapDecision], now: datetime,
                     distribution: Distribution) -> None:
        group.add_points(delta, outcome.reason, rule.name, now)
        self.store.save_group(group)
        distribution.group_deltas.append(GroupDelta(
            group_id=group.id,
            requested=requested,
            points=delta,
            kind=outcome.kind,
            role=outcome.target,
            cap_decision=decision
        ))
        if delta:
            self._count("points_awarded_total", amount=abs(delta), kind=outcome.kind.value)
            self.logger.info(
                "Group points changed",
                rule=rule.name,
                group_id=group.id,
                delta=delta,
                requested=requested,
                total=group.total_points
            )

    def _distribute_single(self, rule: RuleDefinition, roles: Participants, now: datetime,
                           journal: CapJournal, distribution: Distribution) -> None:
        for outcome in rule.outcomes:
            person_ids = roles.get(outcome.target)
            if not person_ids:
                self._skip(rule, distribution, outcome.target, None, "role not among participants")
                continue

            for person_id in person_ids:
                resolved = self._resolve(rule, outcome.target, person_id, distribution)
                if resolved is None:
                    continue
                person, group = resolved

                # Audit entries always carry the nominal value
                self._record_person(rule, person, outcome, now, distribution)

                delta, decision = self._settle(rule, group, outcome, outcome.points, now, journal)
                self._apply_group(rule, group, outcome, outcome.points, delta, decision, now, distribution)

    def _distribute_mixed(self, rule: RuleDefinition, roles: Participants, now: datetime,
                          journal: CapJournal, distribution: Distribution) -> None:
        penalized = self._apply_penalties(rule, roles, now, distribution)

        award_roles = rule.targets(OutcomeKind.AWARD)
        for listed_group in self.store.list_all_groups():
            for role in award_roles:
                eligible = self._eligible(listed_group.id, role, roles, penalized)
                if not eligible:
                    continue

                outcome = rule.outcome_for(OutcomeKind.AWARD, role)
                requested = len(eligible) * outcome.points

                group = self.store.find_group(listed_group.id)
                delta, decision = self._settle(rule, group, outcome, requested, now, journal)

                # Per-person entries stay at the unclamped value even when the group is capped
                for person in eligible:
                    self._record_person(rule, person, outcome, now, distribution)

                self._apply_group(rule, group, outcome, requested, delta, decision, now, distribution)

    def _apply_penalties(self, rule: RuleDefinition, roles: Participants, now: datetime,
                         distribution: Distribution) -> List[str]:
        penalized: List[str] = []
        for role in rule.targets(OutcomeKind.PENALTY):
            outcome = rule.outcome_for(OutcomeKind.PENALTY, role)
            for person_id in roles.get(role, ()):
                penalized.append(person_id)
                resolved = self._resolve(rule, role, person_id, distribution)
                if resolved is None:
                    continue
                person, group = resolved
                self._record_person(rule, person, outcome, now, distribution)
                self._apply_group(rule, group, outcome, outcome.points, outcome.points, None, now, distribution)
        return penalized

    def _eligible(self, group_id: str, role: str, roles: Participants,
                  penalized: Sequence[str]) -> List[Person]:
        """Members of a group who earn the award aimed at ``role``."""
        if role == COMPLIANT_ROLE and COMPLIANT_ROLE not in roles:
            # Compliance inferred by exclusion
            return [p for p in self.store.find_group_members(group_id) if p.id not in penalized]

        eligible = []
        for person_id in roles.get(role, ()):
            person = self.store.find_person(person_id)
            if person is not None and person.group_id == group_id:
                eligible.append(person)
        return eligible

    def _count(self, metric_name: str, amount: float = 1, **labels) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, amount=amount, **labels)

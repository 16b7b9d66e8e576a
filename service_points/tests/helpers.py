"""
Builders shared by the Points service tests.
"""

from datetime import datetime, timedelta

from service_points.app.entities.models import Group, Person
from service_points.app.rules.models import (
    Cap, Condition, Outcome, OutcomeKind, RuleDefinition
)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_rule(name, action, outcomes, cap=None, active=True, reset_interval_days=None):
    """Build a rule keyed on a single action condition."""
    return RuleDefinition(
        name=name,
        active=active,
        conditions=(Condition(type="action", value=action),),
        outcomes=tuple(outcomes),
        cap=Cap(max_points=cap) if cap is not None else None,
        reset_interval_days=reset_interval_days,
    )


def award(points, target, reason="award"):
    return Outcome(kind=OutcomeKind.AWARD, points=points, target=target, reason=reason)


def penalty(points, target, reason="penalty"):
    return Outcome(kind=OutcomeKind.PENALTY, points=points, target=target, reason=reason)


def seed_store(store):
    """Three groups of three, two and two members."""
    store.add_group(Group(id="grp_a", name="The Avengers"))
    store.add_group(Group(id="grp_b", name="Justice League"))
    store.add_group(Group(id="grp_c", name="Jujutsu Kaisen"))

    store.add_person(Person(id="p_alice", name="Alice", group_id="grp_a"))
    store.add_person(Person(id="p_bob", name="Bob", group_id="grp_a"))
    store.add_person(Person(id="p_charlie", name="Charlie", group_id="grp_a"))
    store.add_person(Person(id="p_max", name="Max", group_id="grp_b"))
    store.add_person(Person(id="p_biagi", name="Biagi", group_id="grp_b"))
    store.add_person(Person(id="p_gojo", name="Gojo", group_id="grp_c"))
    store.add_person(Person(id="p_geto", name="Geto", group_id="grp_c"))
    return store

"""
Unit tests for outcome distribution.
"""

from datetime import timedelta

import pytest

from shared.errors import PersistenceFailure
from service_points.app.caps.tracker import EPOCH, ClampResult
from service_points.app.distribution.distributor import OutcomeDistributor, normalize_participants
from service_points.app.entities.store import InMemoryEntityStore

from service_points.tests.helpers import award, make_rule, penalty, seed_store


class FlakyStore(InMemoryEntityStore):
    """Store that rejects writes for one group."""

    def __init__(self, fail_on_group):
        super().__init__()
        self.fail_on_group = fail_on_group

    def save_group(self, group):
        if group.id == self.fail_on_group:
            raise PersistenceFailure("write rejected", {"group_id": group.id})
        super().save_group(group)


def history_points(entity):
    return [entry.points for entry in entity.point_history]


class TestNormalizeParticipants:
    """Test cases for normalize_participants()."""

    def test_single_ids_become_tuples(self):
        assert normalize_participants({"winner": "p_alice"}) == {"winner": ("p_alice",)}

    def test_sequences_keep_order_and_drop_duplicates(self):
        result = normalize_participants({"offender": ["p_bob", "p_alice", "p_bob"]})

        assert result == {"offender": ("p_bob", "p_alice")}

    def test_empty_roles_dropped(self):
        assert normalize_participants({"offender": [], "winner": None, "x": ""}) == {}


class TestSingleKindDistribution:
    """Rules whose outcomes are all awards or all penalties."""

    def test_uncapped_award(self, distributor, store):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant", "Joined")])

        distribution = distributor.distribute(rule, {"participant": "p_alice"})

        group = store.find_group("grp_a")
        alice = store.find_person("p_alice")
        assert group.total_points == 5
        assert history_points(group) == [5]
        assert history_points(alice) == [5]
        assert alice.point_history[0].reason == "Joined"
        assert alice.point_history[0].rule_name == "Hackathon"
        assert distribution.group_total("grp_a") == 5
        assert distribution.mixed is False

    def test_cap_clamps_to_exactly_reach_cap(self, distributor, store, tracker):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10)
        tracker.apply_delta("grp_a", "Win", 8)

        distribution = distributor.distribute(rule, {"winner": "p_alice"})

        group = store.find_group("grp_a")
        assert group.total_points == 2
        assert tracker.current_points("grp_a", "Win") == 10
        assert group.capped_activity == {"Win": 10}
        assert history_points(store.find_person("p_alice")) == [5]
        assert distribution.group_deltas[0].cap_decision.result == ClampResult.PARTIAL

    def test_cap_exhausted_still_audits_person(self, distributor, store, tracker):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10)
        tracker.apply_delta("grp_a", "Win", 10)

        distributor.distribute(rule, {"winner": "p_alice"})

        group = store.find_group("grp_a")
        assert group.total_points == 0
        assert group.point_history == []
        assert history_points(store.find_person("p_alice")) == [5]
        assert tracker.current_points("grp_a", "Win") == 10

    def test_interval_reset_applied_before_clamp(self, distributor, store, tracker, clock):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10, reset_interval_days=7)
        tracker.maybe_weekly_reset("grp_a", "Win", clock.now - timedelta(days=8))
        tracker.apply_delta("grp_a", "Win", 10)

        distribution = distributor.distribute(rule, {"winner": "p_alice"})

        assert distribution.group_deltas[0].cap_decision.reset_applied is True
        assert store.find_group("grp_a").total_points == 5
        assert tracker.current_points("grp_a", "Win") == 5
        assert tracker.last_reset("grp_a", "Win") == clock.now

    def test_no_reset_within_interval(self, distributor, store, tracker, clock):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10, reset_interval_days=7)
        tracker.maybe_weekly_reset("grp_a", "Win", clock.now - timedelta(days=3))
        tracker.apply_delta("grp_a", "Win", 10)

        distributor.distribute(rule, {"winner": "p_alice"})

        assert store.find_group("grp_a").total_points == 0

    def test_naive_now_is_read_as_utc(self, distributor, store, tracker, clock):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10, reset_interval_days=7)
        naive = clock.now.replace(tzinfo=None)

        distribution = distributor.distribute(rule, {"winner": "p_alice"}, now=naive)

        assert distribution.group_deltas[0].cap_decision.reset_applied is True
        assert tracker.last_reset("grp_a", "Win") == clock.now
        assert store.find_group("grp_a").point_history[0].timestamp == clock.now

    def test_manual_reset_reopens_persisted_cap(self, distributor, store, tracker):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10)
        distributor.distribute(rule, {"winner": "p_alice"})
        distributor.distribute(rule, {"winner": "p_alice"})

        tracker.reset("grp_a", "Win")
        distributor.distribute(rule, {"winner": "p_alice"})

        group = store.find_group("grp_a")
        assert group.total_points == 15
        assert group.current_points_for_activity("Win") == 5
        assert tracker.current_points("grp_a", "Win") == 5

    def test_default_reset_interval_applies_to_capped_rules(self, store, tracker, clock):
        distributor = OutcomeDistributor(store, tracker, clock=clock, default_reset_interval_days=1)
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=5)

        distributor.distribute(rule, {"winner": "p_alice"})
        distributor.distribute(rule, {"winner": "p_alice"})
        assert store.find_group("grp_a").total_points == 5

        clock.advance(days=1)
        distributor.distribute(rule, {"winner": "p_alice"})
        assert store.find_group("grp_a").total_points == 10

    def test_penalty_never_clamped(self, distributor, store, tracker):
        rule = make_rule("Late", "late_submission", [penalty(-3, "offender")], cap=1)

        distributor.distribute(rule, {"offender": "p_max"})

        assert store.find_group("grp_b").total_points == -3
        assert history_points(store.find_person("p_max")) == [-3]
        assert tracker.snapshot("grp_b", "Late").points is None

    def test_missing_role_is_skipped(self, distributor, store):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        distribution = distributor.distribute(rule, {"winner": "p_alice"})

        assert distribution.person_entries == []
        assert distribution.skipped[0].role == "participant"
        assert store.find_group("grp_a").total_points == 0

    def test_unknown_person_is_skipped(self, distributor, store):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        distribution = distributor.distribute(rule, {"participant": ["p_ghost", "p_gojo"]})

        assert [s.person_id for s in distribution.skipped] == ["p_ghost"]
        assert distribution.skipped[0].reason == "Unknown person: p_ghost"
        assert distribution.skipped[0].code == "UNKNOWN_PARTICIPANT"
        assert store.find_group("grp_c").total_points == 5

    def test_every_listed_id_receives_the_outcome(self, distributor, store):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        distributor.distribute(rule, {"participant": ["p_alice", "p_max"]})

        assert store.find_group("grp_a").total_points == 5
        assert store.find_group("grp_b").total_points == 5

    def test_cap_shared_within_one_distribution(self, distributor, store, tracker):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=8)

        distribution = distributor.distribute(rule, {"winner": ["p_alice", "p_bob"]})

        assert [d.points for d in distribution.group_deltas] == [5, 3]
        assert store.find_group("grp_a").total_points == 8
        assert tracker.current_points("grp_a", "Win") == 8

    def test_persisted_ledger_seeds_tracker(self, distributor, store, tracker):
        group = store.find_group("grp_a")
        group.update_activity_points("Win", 9)
        store.save_group(group)
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10)

        distributor.distribute(rule, {"winner": "p_alice"})

        assert store.find_group("grp_a").total_points == 1
        assert tracker.current_points("grp_a", "Win") == 10

    def test_group_total_matches_history(self, distributor, store):
        hackathon = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])
        late = make_rule("Late", "late_submission", [penalty(-3, "offender")])

        distributor.distribute(hackathon, {"participant": "p_alice"})
        distributor.distribute(late, {"offender": "p_bob"})

        group = store.find_group("grp_a")
        assert group.total_points == sum(history_points(group)) == 2

    def test_cap_metrics_recorded(self, distributor, tracker, metrics):
        rule = make_rule("Win", "win_team_game", [award(5, "winner")], cap=10)
        tracker.apply_delta("grp_a", "Win", 8)

        distributor.distribute(rule, {"winner": "p_alice"})

        assert metrics.get_sample_value("cap_clamps_total", {"rule": "Win", "result": "partial"}) == 1.0
        assert metrics.get_sample_value("points_awarded_total", {"kind": "award"}) == 2.0


class TestMixedDistribution:
    """Rules declaring both penalty and award outcomes."""

    @pytest.fixture
    def timesheet(self):
        return make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender", "Offender"), award(1, "compliant", "Compliant")],
        )

    def test_compliance_by_exclusion(self, distributor, store, timesheet):
        distribution = distributor.distribute(timesheet, {"offender": ["p_alice", "p_bob"]})

        assert distribution.mixed is True
        assert history_points(store.find_person("p_alice")) == [-2]
        assert history_points(store.find_person("p_bob")) == [-2]
        assert history_points(store.find_person("p_charlie")) == [1]
        assert store.find_group("grp_a").total_points == -2 * 2 + 1
        assert store.find_group("grp_b").total_points == 2
        assert store.find_group("grp_c").total_points == 2

    def test_cap_limits_award_side_only(self, distributor, store):
        rule = make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender"), award(5, "compliant")],
            cap=3,
        )

        distributor.distribute(rule, {"offender": ["p_alice", "p_bob"]})

        group = store.find_group("grp_a")
        assert group.total_points == -4 + 3
        assert history_points(group) == [-2, -2, 3]
        assert group.capped_activity == {"Timesheet": 3}

    def test_person_entries_keep_unclamped_value(self, distributor, store, tracker):
        rule = make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender"), award(1, "compliant")],
            cap=10,
        )
        tracker.apply_delta("grp_b", "Timesheet", 9)

        distribution = distributor.distribute(rule, {"offender": ["p_alice"]})

        assert store.find_group("grp_b").total_points == 1
        assert history_points(store.find_person("p_max")) == [1]
        assert history_points(store.find_person("p_biagi")) == [1]
        delta = [d for d in distribution.group_deltas if d.group_id == "grp_b"][0]
        assert delta.requested == 2
        assert delta.points == 1

    def test_cap_exhausted_group_still_audits_members(self, distributor, store, tracker):
        rule = make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender"), award(1, "compliant")],
            cap=10,
        )
        tracker.apply_delta("grp_c", "Timesheet", 10)

        distributor.distribute(rule, {"offender": ["p_alice"]})

        assert store.find_group("grp_c").total_points == 0
        assert history_points(store.find_person("p_gojo")) == [1]
        assert history_points(store.find_person("p_geto")) == [1]

    def test_explicit_compliant_participants(self, distributor, store, timesheet):
        distributor.distribute(timesheet, {"offender": ["p_alice"], "compliant": ["p_bob", "p_max"]})

        assert store.find_group("grp_a").total_points == -2 + 1
        assert history_points(store.find_person("p_charlie")) == []
        assert store.find_group("grp_b").total_points == 1
        assert history_points(store.find_person("p_biagi")) == []
        assert store.find_group("grp_c").total_points == 0

    def test_other_award_roles_need_explicit_listing(self, distributor, store):
        rule = make_rule(
            "Incident",
            "incident_reported",
            [penalty(-2, "offender"), award(3, "reporter")],
        )

        distributor.distribute(rule, {"offender": ["p_max"], "reporter": ["p_alice"]})

        assert store.find_group("grp_a").total_points == 3
        assert store.find_group("grp_b").total_points == -2
        assert store.find_group("grp_c").total_points == 0
        assert history_points(store.find_person("p_bob")) == []

    def test_unknown_offender_still_excluded_from_compliance(self, distributor, store, timesheet):
        distribution = distributor.distribute(timesheet, {"offender": ["p_ghost"]})

        assert distribution.skipped[0].person_id == "p_ghost"
        assert store.find_group("grp_a").total_points == 3

    def test_reset_runs_once_per_group(self, distributor, tracker, clock):
        rule = make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender"), award(1, "compliant")],
            cap=10,
            reset_interval_days=7,
        )

        distribution = distributor.distribute(rule, {"offender": ["p_alice"]})

        resets = [d.group_id for d in distribution.group_deltas
                  if d.cap_decision is not None and d.cap_decision.reset_applied]
        assert resets == ["grp_a", "grp_b", "grp_c"]
        assert tracker.last_reset("grp_b", "Timesheet") == clock.now


class TestDistributionRollback:
    """A rejected write leaves no trace of the rule's distribution."""

    def test_rollback_restores_store_and_tracker(self, tracker, clock):
        store = seed_store(FlakyStore(fail_on_group="grp_c"))
        distributor = OutcomeDistributor(store, tracker, clock=clock)
        rule = make_rule(
            "Timesheet",
            "did_not_key_in_timesheet",
            [penalty(-2, "offender"), award(1, "compliant")],
            cap=10,
            reset_interval_days=7,
        )

        with pytest.raises(PersistenceFailure):
            distributor.distribute(rule, {"offender": ["p_alice"]})

        for group in store.list_all_groups():
            assert group.total_points == 0
            assert group.point_history == []
            assert group.capped_activity == {}
        for person in store.list_all_persons():
            assert person.point_history == []
        for group_id in ("grp_a", "grp_b", "grp_c"):
            assert tracker.snapshot(group_id, "Timesheet").points is None
            assert tracker.last_reset(group_id, "Timesheet") == EPOCH

    def test_rollback_keeps_earlier_distributions(self, tracker, clock):
        store = seed_store(FlakyStore(fail_on_group="grp_b"))
        distributor = OutcomeDistributor(store, tracker, clock=clock)
        hackathon = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        distributor.distribute(hackathon, {"participant": "p_alice"})
        with pytest.raises(PersistenceFailure):
            distributor.distribute(hackathon, {"participant": ["p_gojo", "p_max"]})

        assert store.find_group("grp_a").total_points == 5
        assert store.find_group("grp_c").total_points == 0
        assert history_points(store.find_person("p_gojo")) == []

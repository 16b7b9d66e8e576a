"""
Unit tests for rule matching.
"""

from service_points.app.rules.matcher import matches
from service_points.app.rules.models import Condition, RuleDefinition

from service_points.tests.helpers import award, make_rule


class TestMatches:
    """Test cases for matches()."""

    def test_matches_action_case_insensitively(self):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        assert matches(rule, "join_hackathon") is True
        assert matches(rule, "JOIN_Hackathon") is True

    def test_other_action_does_not_match(self):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")])

        assert matches(rule, "win_team_game") is False

    def test_inactive_rule_never_matches(self):
        rule = make_rule("Hackathon", "join_hackathon", [award(5, "participant")], active=False)

        assert matches(rule, "join_hackathon") is False

    def test_condition_type_is_case_insensitive(self):
        rule = RuleDefinition(name="r", conditions=(Condition(type="ACTION", value="x"),))

        assert matches(rule, "x") is True

    def test_all_conditions_must_match(self):
        rule = RuleDefinition(
            name="r",
            conditions=(Condition(type="action", value="a"), Condition(type="action", value="b")),
        )

        assert matches(rule, "a") is False
        assert matches(rule, "b") is False

    def test_non_action_condition_blocks_match(self):
        rule = RuleDefinition(
            name="r",
            conditions=(Condition(type="action", value="a"), Condition(type="team", value="a")),
        )

        assert matches(rule, "a") is False

    def test_rule_without_conditions_matches_everything(self):
        rule = RuleDefinition(name="catch-all", conditions=())

        assert matches(rule, "anything") is True
        assert matches(rule, "") is True

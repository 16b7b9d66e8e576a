"""
Rule matching for the Points service.
"""

from .models import RuleDefinition


def matches(rule: RuleDefinition, action_type: str) -> bool:
    """Check whether an active rule applies to an action type.

    Every condition must be an ``action`` condition whose value equals the
    action type, compared case-insensitively. A rule without conditions
    matches every action type.
    """
    if not rule.active:
        return False

    wanted = action_type.lower()
    for condition in rule.conditions:
        if not condition.is_action:
            return False
        if condition.value.lower() != wanted:
            return False

    return True

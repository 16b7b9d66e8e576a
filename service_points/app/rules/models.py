"""
Rule data models for the Points service.
"""

from typing import Any, Optional, List, Tuple
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


ACTION_CONDITION = "action"


class OutcomeKind(str, Enum):
    """Outcome kinds."""
    AWARD = "award"
    PENALTY = "penalty"


@dataclass(frozen=True)
class Condition:
    """Rule condition."""
    type: str
    value: str

    @property
    def is_action(self) -> bool:
        return self.type.lower() == ACTION_CONDITION


@dataclass(frozen=True)
class Outcome:
    """One point effect of a rule, scoped to a participant role."""
    kind: OutcomeKind
    points: int
    target: str
    reason: str = ""

    @property
    def is_award(self) -> bool:
        return self.kind == OutcomeKind.AWARD

    @property
    def is_penalty(self) -> bool:
        return self.kind == OutcomeKind.PENALTY


@dataclass(frozen=True)
class Cap:
    """Ceiling on cumulative group points a rule may award per window."""
    max_points: int


@dataclass(frozen=True)
class RuleDefinition:
    """Points rule."""
    name: str
    description: Optional[str] = None
    active: bool = True
    group_based_activity: bool = False
    conditions: Tuple[Condition, ...] = field(default_factory=tuple)
    outcomes: Tuple[Outcome, ...] = field(default_factory=tuple)
    cap: Optional[Cap] = None
    reset_interval_days: Optional[int] = None

    @property
    def has_mixed_outcomes(self) -> bool:
        """Whether the rule declares both award and penalty outcomes."""
        kinds = {outcome.kind for outcome in self.outcomes}
        return OutcomeKind.AWARD in kinds and OutcomeKind.PENALTY in kinds

    def targets(self, kind: OutcomeKind) -> List[str]:
        """Distinct target roles of the given kind, in declaration order."""
        return list(dict.fromkeys(o.target for o in self.outcomes if o.kind == kind))

    def outcome_for(self, kind: OutcomeKind, target: str) -> Optional[Outcome]:
        """First outcome of the given kind aimed at the given role."""
        for outcome in self.outcomes:
            if outcome.kind == kind and outcome.target == target:
                return outcome
        return None


class ConditionDocument(BaseModel):
    """Condition as written in a rules document."""
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="Condition type")
    value: str = Field(..., description="Condition value")


class OutcomeDocument(BaseModel):
    """Outcome as written in a rules document."""
    model_config = ConfigDict(extra="ignore")

    type: OutcomeKind = Field(..., description="award or penalty")
    points: int = Field(..., description="Signed point value")
    target: str = Field(..., description="Participant role")
    reason: str = Field("", description="Audit reason")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class CapDocument(BaseModel):
    """Cap as written in a rules document."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    max_points: int = Field(..., gt=0, alias="maxPoints")


class RuleDocument(BaseModel):
    """Rule as written in a rules document."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    rule_name: str = Field(..., min_length=1, alias="ruleName")
    description: Optional[str] = None
    active: bool = False
    group_based_activity: bool = Field(False, alias="groupBasedActivity")
    conditions: List[ConditionDocument] = Field(default_factory=list)
    outcomes: List[OutcomeDocument] = Field(default_factory=list)
    cap: Optional[CapDocument] = None
    reset_interval_days: Optional[int] = Field(None, gt=0, alias="resetIntervalDays")

    def to_definition(self) -> RuleDefinition:
        """Convert to an immutable rule definition."""
        return RuleDefinition(
            name=self.rule_name,
            description=self.description,
            active=self.active,
            group_based_activity=self.group_based_activity,
            conditions=tuple(Condition(type=c.type, value=c.value) for c in self.conditions),
            outcomes=tuple(
                Outcome(kind=o.type, points=o.points, target=o.target, reason=o.reason)
                for o in self.outcomes
            ),
            cap=Cap(max_points=self.cap.max_points) if self.cap else None,
            reset_interval_days=self.reset_interval_days,
        )

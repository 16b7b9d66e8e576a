"""
Event processing for the Points service.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Union

from shared.logging import get_logger, set_event_context, clear_context
from shared.errors import PersistenceFailure
from shared.metrics import MetricsCollector
from .distribution.distributor import Distribution, OutcomeDistributor, normalize_participants
from .entities.models import utcnow
from .rules.catalog import RuleCatalog
from .rules.models import RuleDefinition


@dataclass
class Event:
    """Something that happened, with the people involved by role."""
    action_type: str
    participants: Dict[str, List[str]] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def add_participant(self, role: str, person_id: str) -> "Event":
        """Add a person under a role; repeated roles accumulate."""
        self.participants.setdefault(role, []).append(person_id)
        return self


@dataclass
class ProcessingReport:
    """Result of processing one event."""
    event_id: str
    action_type: str
    matched_rules: List[str] = field(default_factory=list)
    distributions: Dict[str, Distribution] = field(default_factory=dict)
    failures: Dict[str, PersistenceFailure] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failures


class EventProcessor:
    """Matches events against the catalog and distributes each rule's outcomes."""

    def __init__(
        self,
        catalog: RuleCatalog,
        distributor: OutcomeDistributor,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.catalog = catalog
        self.distributor = distributor
        self.metrics = metrics
        self.logger = get_logger("points.processor")

    def process(
        self,
        action_type: str,
        participants: Mapping[str, Union[str, Sequence[str]]],
        raise_on_failure: bool = True,
        event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ProcessingReport:
        """Apply every active rule matching the action type.

        Each rule is its own transactional unit: a rule whose writes are
        rejected is rolled back without undoing rules already applied, and
        the remaining rules still run. Rejections are raised together once
        all rules have been tried, unless ``raise_on_failure`` is off.
        """
        # RuleSourceUnavailable propagates; the next call retries the load
        self.catalog.ensure_loaded()

        event_id = set_event_context(event_id, action_type)
        report = ProcessingReport(event_id=event_id, action_type=action_type)
        roles = normalize_participants(participants)

        try:
            rules = self.catalog.matching(action_type)
            report.matched_rules = [rule.name for rule in rules]
            self.logger.info("Processing event", matched_rules=report.matched_rules)

            for rule in rules:
                self._apply_rule(rule, roles, now, report)

            if self.metrics is not None:
                self.metrics.increment_counter("events_processed_total", action_type=action_type.lower())
        finally:
            clear_context()

        if report.failures and raise_on_failure:
            raise PersistenceFailure(
                f"Failed to apply {len(report.failures)} rule(s) for action '{action_type}'",
                {
                    "event_id": event_id,
                    "failed_rules": list(report.failures),
                    "applied_rules": list(report.distributions)
                }
            )
        return report

    def process_event(self, event: Event, raise_on_failure: bool = True) -> ProcessingReport:
        return self.process(
            event.action_type,
            event.participants,
            raise_on_failure=raise_on_failure,
            event_id=event.id,
            now=event.timestamp
        )

    def _apply_rule(self, rule: RuleDefinition, roles, now: Optional[datetime],
                    report: ProcessingReport) -> None:
        try:
            if self.metrics is not None:
                with self.metrics.time_operation("rule_distribution_duration_seconds", rule=rule.name):
                    distribution = self.distributor.distribute(rule, roles, now=now)
            else:
                distribution = self.distributor.distribute(rule, roles, now=now)
        except PersistenceFailure as e:
            report.failures[rule.name] = e
            self.logger.error("Rule distribution failed", rule=rule.name, code=e.code, error=e.message)
            if self.metrics is not None:
                self.metrics.increment_counter("rules_applied_total", rule=rule.name, status="failed")
                self.metrics.record_error(e.code)
            return

        report.distributions[rule.name] = distribution
        if self.metrics is not None:
            self.metrics.increment_counter("rules_applied_total", rule=rule.name, status="applied")

    def get_loaded_rules(self) -> Mapping[str, RuleDefinition]:
        """Read-only snapshot of the loaded rules, loading them first if needed."""
        self.catalog.ensure_loaded()
        return self.catalog.get_loaded_rules()

    def reload_rules(self) -> Mapping[str, RuleDefinition]:
        return self.catalog.reload()

"""
Points service package.

This package awards and penalizes points to people and their groups when
events happen. It provides:

- app.rules: Rule model, action matcher, rule catalog and rule sources.
- app.caps: Per (group, rule) cap accumulators with lazy interval resets.
- app.distribution: Outcome distribution for single-kind and mixed
  (penalty + award) rules.
- app.entities: Person and group entities and the entity store.
- app.processor: Event processing across all matching rules.
- app.engine: Wiring of the above from configuration.

Guidelines:
- Every point change is appended to a history; totals are never edited.
- Each rule's distribution is applied as one transactional unit.
- Keep distribution deterministic and observable (metrics + logs).
"""

from .engine import PointsEngine, build_engine
from .processor import Event, EventProcessor, ProcessingReport

__all__ = ["PointsEngine", "build_engine", "Event", "EventProcessor", "ProcessingReport"]

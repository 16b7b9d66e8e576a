"""
Assembly of the Points engine from configuration.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from prometheus_client import CollectorRegistry

from shared.config import PointsConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .caps.tracker import CapTracker
from .distribution.distributor import OutcomeDistributor
from .entities.models import utcnow
from .entities.store import EntityStore, InMemoryEntityStore
from .processor import EventProcessor
from .rules.catalog import RuleCatalog
from .rules.source import JsonRuleSource, RuleSource


@dataclass
class PointsEngine:
    """The wired components of one engine instance."""
    config: PointsConfig
    store: EntityStore
    catalog: RuleCatalog
    tracker: CapTracker
    distributor: OutcomeDistributor
    processor: EventProcessor
    metrics: Optional[MetricsCollector] = None

    def process(self, action_type, participants, **kwargs):
        return self.processor.process(action_type, participants, **kwargs)

    def process_event(self, event, **kwargs):
        return self.processor.process_event(event, **kwargs)

    def get_loaded_rules(self):
        return self.processor.get_loaded_rules()

    def reload_rules(self):
        return self.processor.reload_rules()


def build_engine(
    config: Optional[PointsConfig] = None,
    store: Optional[EntityStore] = None,
    source: Optional[RuleSource] = None,
    clock: Callable[[], datetime] = utcnow,
    registry: Optional[CollectorRegistry] = None,
) -> PointsEngine:
    """Build an engine; anything not supplied comes from configuration."""
    config = config or get_config()
    configure_logging(config.service_name, config.log_level)
    logger = get_logger("points.engine")

    metrics = None
    if config.metrics_enabled:
        metrics = get_metrics_collector(config.service_name, registry)
        if config.metrics_port:
            metrics.start_metrics_server(config.metrics_port)

    store = store if store is not None else InMemoryEntityStore()
    source = source if source is not None else JsonRuleSource(config.rules_path)
    catalog = RuleCatalog(source)
    tracker = CapTracker(shards=config.cap_lock_shards)
    distributor = OutcomeDistributor(
        store,
        tracker,
        clock=clock,
        default_reset_interval_days=config.default_reset_interval_days,
        metrics=metrics
    )
    processor = EventProcessor(catalog, distributor, metrics=metrics)

    logger.info(
        "Points engine built",
        env=config.env,
        rules_path=config.rules_path if isinstance(source, JsonRuleSource) else None,
        metrics_enabled=metrics is not None
    )
    return PointsEngine(
        config=config,
        store=store,
        catalog=catalog,
        tracker=tracker,
        distributor=distributor,
        processor=processor,
        metrics=metrics
    )

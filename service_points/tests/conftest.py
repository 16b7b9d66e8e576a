"""
Shared fixtures for Points service tests.
"""

from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from shared.metrics import MetricsCollector
from service_points.app.caps.tracker import CapTracker
from service_points.app.distribution.distributor import OutcomeDistributor
from service_points.app.entities.store import InMemoryEntityStore
from service_points.app.processor import EventProcessor
from service_points.app.rules.catalog import RuleCatalog
from service_points.app.rules.source import StaticRuleSource
from service_points.tests.helpers import FakeClock, seed_store


@pytest.fixture
def clock():
    """Clock fixed at a known instant."""
    return FakeClock(datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return seed_store(InMemoryEntityStore())


@pytest.fixture
def tracker():
    return CapTracker(shards=8)


@pytest.fixture
def metrics():
    return MetricsCollector("points", registry=CollectorRegistry())


@pytest.fixture
def distributor(store, tracker, clock, metrics):
    return OutcomeDistributor(store, tracker, clock=clock, metrics=metrics)


@pytest.fixture
def make_processor(distributor, metrics):
    """Build a processor over the given rules."""
    def _make(*rules):
        catalog = RuleCatalog(StaticRuleSource(rules))
        return EventProcessor(catalog, distributor, metrics=metrics)
    return _make

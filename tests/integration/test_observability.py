"""
Observability Tests

Audit collection per layer, metric aggregation and the engine's own
audit trail for a generation run.
"""

import asyncio
import logging

from story_engine.contracts.base import CurationScope
from story_engine.contracts.events import AuditEventType
from story_engine.engine import StoryCurationEngine
from story_engine.observability import (
    ObservabilityConfig, ObservabilityEngine, configure_logging
)
from story_engine.store import InMemoryMetadataStore
from tests.integration.fixtures import scenario_a_photos


def test_audit_entries_land_in_their_layer():
    observability = ObservabilityEngine()

    observability.log_audit("lookup", entity_id="E1", layer="cache", event_type=AuditEventType.CACHE)
    observability.log_audit("lookup", entity_id="E1", layer="cache", event_type=AuditEventType.CACHE)
    observability.log_audit("fetch", entity_id="E1", layer="store", event_type=AuditEventType.STORE)

    assert len(observability.get_layer_log("cache")) == 2
    assert len(observability.get_layer_log("store")) == 1
    entry_ids = {e.entry_id for e in observability.get_unified_log()}
    assert len(entry_ids) == 3


def test_unknown_layer_is_ignored():
    observability = ObservabilityEngine()
    observability.log_audit("noop", layer="frontend")

    assert observability.get_unified_log() == []
    assert observability.get_layer_log("frontend") == []


def test_metric_aggregates_and_label_filter():
    observability = ObservabilityEngine()
    observability.collect_metric("detector_duration_ms", 10.0, {"arc_type": "comeback-story"})
    observability.collect_metric("detector_duration_ms", 30.0, {"arc_type": "emotion-spectrum"})

    metrics = observability.get_metrics()
    aggregates = metrics.compute_aggregates("detector_duration_ms")

    assert aggregates["count"] == 2
    assert aggregates["avg"] == 20.0
    assert metrics.total("detector_duration_ms", {"arc_type": "comeback-story"}) == 10.0
    assert metrics.compute_aggregates("cache_hits_total") == {}


def test_metrics_can_be_disabled():
    observability = ObservabilityEngine(ObservabilityConfig(enable_metrics=False))
    observability.collect_metric("cache_hits_total", 1.0)

    assert observability.get_metrics() is None


def test_generation_leaves_an_audit_trail():
    engine = StoryCurationEngine(InMemoryMetadataStore(scenario_a_photos()))

    asyncio.run(engine.generate_stories(CurationScope.event("E1")))
    report = engine.observability.generate_audit_report()

    assert report["total_entries"] > 0
    assert report["by_layer"]["engine"] >= 1
    assert report["by_event_type"][AuditEventType.GENERATION.value] >= 1
    assert engine.observability.get_metrics().total("stories_generated_total") == 1.0


def test_configure_logging_installs_one_handler():
    configure_logging("debug")
    configure_logging("info")

    package_logger = logging.getLogger("story_engine")
    ours = [h for h in package_logger.handlers if getattr(h, "_story_engine", False)]
    assert len(ours) == 1
    assert package_logger.level == logging.INFO


def test_collectors_stay_bounded_and_counters_stay_exact():
    observability = ObservabilityEngine(
        ObservabilityConfig(max_audit_entries=5, max_metric_points=5)
    )

    for n in range(20):
        observability.log_audit("lookup", entity_id=f"E{n}", layer="cache")
        observability.collect_metric("cache_hits_total", 1.0, {"arc_type": "comeback-story"})

    entries = observability.get_layer_log("cache")
    metrics = observability.get_metrics()
    assert [e.entity_id for e in entries] == [f"E{n}" for n in range(15, 20)]
    assert len(metrics.get_metric("cache_hits_total")) == 5
    assert metrics.total("cache_hits_total") == 20.0
    assert metrics.total("cache_hits_total", {"arc_type": "comeback-story"}) == 20.0

"""
Observability & Audit Layer

RESPONSIBILITY: Logging setup, audit trail, metrics
ALLOWED INPUTS: Audit entries and metric points from any layer
OUTPUTS: Per-layer audit logs, metric series, audit reports

WHAT THIS LAYER MUST NOT DO:
============================
- Modify engine behavior
- Filter or interpret events (only record them)
- Make decisions based on logged data
- Block or delay generation

BOUNDARY ENFORCEMENT:
=====================
- Receives immutable entries (AuditLogEntry, MetricPoint)
- Collectors are append-only
- Provides read-only access to logs and metrics
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from enum import Enum
from collections import deque
import hashlib
import itertools
import logging
import sys

from ..contracts.base import Timestamp, TimeRange
from ..contracts.events import AuditLogEntry, AuditEventType, MetricPoint


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    """Attach a console handler to the package logger."""
    package_logger = logging.getLogger("story_engine")
    package_logger.setLevel(level.upper())
    if not any(getattr(h, "_story_engine", False) for h in package_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._story_engine = True
        package_logger.addHandler(handler)


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class LogCollector:
    """
    Append-only audit collector for one layer.

    Keeps the most recent `max_entries`; older entries fall off the front.
    """

    def __init__(self, layer_name: str, max_entries: Optional[int] = None):
        self._layer_name = layer_name
        self._entries = deque(maxlen=max_entries)

    def collect(self, entry: AuditLogEntry):
        self._entries.append(entry)

    def get_entries(
        self,
        time_range: Optional[TimeRange] = None,
        event_type: Optional[AuditEventType] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = self._entries

        if time_range:
            entries = [e for e in entries if time_range.contains(e.timestamp)]

        if event_type:
            entries = [e for e in entries if e.event_type == event_type]

        return list(entries)

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricType(Enum):
    """Types of metrics collected."""
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMING = "timing"


@dataclass
class MetricDefinition:
    """Definition of a metric to collect."""
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


DEFAULT_METRICS = (
    MetricDefinition(
        name="stories_generated_total",
        metric_type=MetricType.COUNTER,
        description="Arcs returned by generate_stories",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="detector_duration_ms",
        metric_type=MetricType.TIMING,
        description="Detector run time in milliseconds",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="detector_timeouts_total",
        metric_type=MetricType.COUNTER,
        description="Detectors abandoned at the request deadline",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="detector_failures_total",
        metric_type=MetricType.COUNTER,
        description="Detectors that raised",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="cache_hits_total",
        metric_type=MetricType.COUNTER,
        description="Cache lookups served without computing",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="cache_misses_total",
        metric_type=MetricType.COUNTER,
        description="Cache lookups that had to compute",
        labels=("arc_type",)
    ),
    MetricDefinition(
        name="store_retries_total",
        metric_type=MetricType.COUNTER,
        description="Metadata store queries retried after a failure"
    ),
    MetricDefinition(
        name="generation_duration_ms",
        metric_type=MetricType.TIMING,
        description="End-to-end generate_stories time in milliseconds"
    ),
)


class MetricsCollector:
    """
    Time series of metric points.

    Each series keeps its most recent `max_points`. Running totals per
    label set are kept separately so counters stay exact after old points
    are dropped.
    """

    def __init__(self, max_points: Optional[int] = None):
        self._max_points = max_points
        self._metrics: Dict[str, deque] = {}
        self._totals: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
        self._definitions: Dict[str, MetricDefinition] = {}
        for definition in DEFAULT_METRICS:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        self._definitions[definition.name] = definition
        self._series(definition.name)

    @property
    def definitions(self) -> Dict[str, MetricDefinition]:
        return dict(self._definitions)

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Record a metric data point."""
        label_tuple = tuple(sorted(labels.items())) if labels else ()

        point = MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=Timestamp.now(),
            labels=label_tuple
        )
        self._series(metric_name).append(point)
        total_key = (metric_name, label_tuple)
        self._totals[total_key] = self._totals.get(total_key, 0.0) + value

    def _series(self, metric_name: str) -> deque:
        if metric_name not in self._metrics:
            self._metrics[metric_name] = deque(maxlen=self._max_points)
        return self._metrics[metric_name]

    def get_metric(
        self,
        metric_name: str,
        time_range: Optional[TimeRange] = None,
        labels: Optional[Dict[str, str]] = None
    ) -> List[MetricPoint]:
        """Get metric data points, optionally filtered by time range and labels."""
        points = self._metrics.get(metric_name, [])

        if time_range:
            points = [p for p in points if time_range.contains(p.timestamp)]

        if labels:
            wanted = set(labels.items())
            points = [p for p in points if wanted.issubset(set(p.labels))]

        return list(points)

    def total(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Sum of every value ever recorded; the running value of a counter."""
        wanted = set(labels.items()) if labels else set()
        return sum(
            value for (name, label_tuple), value in self._totals.items()
            if name == metric_name and wanted.issubset(set(label_tuple))
        )

    def compute_aggregates(
        self,
        metric_name: str,
        time_range: Optional[TimeRange] = None
    ) -> Dict[str, float]:
        """Compute aggregate statistics for a metric."""
        points = self.get_metric(metric_name, time_range)

        if not points:
            return {}

        values = [p.value for p in points]

        return {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'avg': sum(values) / len(values),
        }


# =============================================================================
# OBSERVABILITY ENGINE
# =============================================================================

LAYERS = ('store', 'detection', 'cache', 'engine', 'api')


@dataclass
class ObservabilityConfig:
    """Configuration for observability engine."""
    enable_metrics: bool = True
    log_level: str = "INFO"
    max_audit_entries: int = 10000
    max_metric_points: int = 10000


class ObservabilityEngine:
    """
    Central observability sink shared by every layer of one engine.

    BOUNDARY ENFORCEMENT:
    - ONLY observes, never modifies
    - Provides read-only access to collected data
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {
            layer: LogCollector(layer, self._config.max_audit_entries) for layer in LAYERS
        }
        self._metrics = (
            MetricsCollector(self._config.max_metric_points)
            if self._config.enable_metrics else None
        )
        self._sequence = itertools.count()

    def collect_audit(self, entry: AuditLogEntry):
        """Collect an audit log entry from any layer."""
        collector = self._collectors.get(entry.layer)
        if collector:
            collector.collect(entry)

    def log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        outcome: str = "success",
        details: str = "",
        layer: str = "engine",
        event_type: AuditEventType = AuditEventType.SYSTEM
    ):
        """Helper to log audit entry directly."""
        now = Timestamp.now()
        entry_id = hashlib.sha256(
            f"{layer}_{action}|{now.value.timestamp()}|{next(self._sequence)}".encode()
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{entry_id}",
            event_type=event_type,
            timestamp=now,
            layer=layer,
            action=action,
            entity_id=entity_id,
            metadata=(
                ("outcome", outcome),
                ("details", details)
            )
        )
        self.collect_audit(entry)

    def collect_metric(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Collect a metric data point."""
        if self._metrics:
            self._metrics.record(metric_name, value, labels)

    def get_unified_log(
        self,
        time_range: Optional[TimeRange] = None,
        layers: Optional[List[str]] = None
    ) -> List[AuditLogEntry]:
        """Get unified log from all or specified layers."""
        target_layers = layers or list(self._collectors.keys())

        all_entries = []
        for layer_name in target_layers:
            collector = self._collectors.get(layer_name)
            if collector:
                all_entries.extend(collector.get_entries(time_range=time_range))

        all_entries.sort(key=lambda e: e.timestamp.value)
        return all_entries

    def get_layer_log(
        self,
        layer_name: str,
        time_range: Optional[TimeRange] = None
    ) -> List[AuditLogEntry]:
        collector = self._collectors.get(layer_name)
        if not collector:
            return []
        return collector.get_entries(time_range=time_range)

    def get_metrics(self) -> Optional[MetricsCollector]:
        """Get metrics collector (read-only access)."""
        return self._metrics

    def generate_audit_report(
        self,
        time_range: Optional[TimeRange] = None
    ) -> Dict:
        """Audit entries aggregated by layer and event type."""
        entries = self.get_unified_log(time_range=time_range)

        by_layer = {}
        by_type = {}

        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'time_range': {
                'start': entries[0].timestamp.to_iso() if entries else None,
                'end': entries[-1].timestamp.to_iso() if entries else None,
            },
            'generated_at': Timestamp.now().to_iso()
        }


__all__ = [
    'configure_logging',
    'LogCollector',
    'MetricType',
    'MetricDefinition',
    'MetricsCollector',
    'ObservabilityConfig',
    'ObservabilityEngine',
]

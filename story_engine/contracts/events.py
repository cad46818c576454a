"""
Layer-Specific Contracts

These contracts define the explicit interfaces between layers.
Each layer exposes its contracts here, and other layers consume only these.

LAYER TRANSITIONS:
==================
1. Detection: Tuple[Photo, ...] -> CandidateArc (or nothing)
2. Assembly: CandidateArc + confidence -> NarrativeArc
3. Orchestration: NarrativeArc* -> StoryResult
4. Observability: AuditLogEntry / MetricPoint from every layer
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Tuple
from enum import Enum

from .base import ArcType, Error, Timestamp
from .photos import Photo


# =============================================================================
# DETECTION LAYER CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class CandidateArc:
    """
    IMMUTABLE detector output.

    A candidate has already met its type's thresholds; it carries the
    member photos (unordered), the type-specific quality signal the scorer
    consumes, and the subject the arc is about (event or athlete id).

    `anchors` override a photo's capture time for chronological ordering
    (a season journey orders representatives by their event's start).
    """
    arc_type: ArcType
    photos: Tuple[Photo, ...]
    quality: float
    subject: Optional[str] = None
    details: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    anchors: Tuple[Tuple[str, Timestamp], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.photos:
            raise ValueError("CandidateArc requires at least one photo")
        if not 0.0 <= self.quality <= 1.0:
            raise ValueError("quality must be between 0.0 and 1.0")

    @property
    def count(self) -> int:
        return len(self.photos)

    @property
    def member_count(self) -> int:
        """
        The quantity the type's minimum is measured in: distinct emotions
        for an emotion spectrum, photos for every other type.
        """
        if self.arc_type == ArcType.EMOTION_SPECTRUM:
            return len({p.emotion for p in self.photos if p.emotion is not None})
        return self.count

    def detail(self, key: str, default: str = "") -> str:
        for name, value in self.details:
            if name == key:
                return value
        return default

    def anchor_for(self, photo: Photo) -> Timestamp:
        for photo_id, anchor in self.anchors:
            if photo_id == photo.id:
                return anchor
        return photo.captured_at


# =============================================================================
# ASSEMBLY LAYER CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class CurvePoint:
    """One point on an emotional curve: a photo and its emotional impact."""
    photo_id: str
    intensity: float


@dataclass(frozen=True)
class NarrativeArc:
    """
    IMMUTABLE narrative arc.

    `photo_ids` and `emotional_curve` are kept in lockstep: same length,
    and `emotional_curve[i].photo_id == photo_ids[i]` for every i.
    The arc holds references only; photo data stays in the store.
    """
    id: str
    arc_type: ArcType
    title: str
    description: str
    scope_key: str
    photo_ids: Tuple[str, ...]
    emotional_curve: Tuple[CurvePoint, ...]
    confidence: float
    generated_at: Timestamp
    expires_at: Timestamp
    duration_seconds: float = 0.0

    def __post_init__(self):
        if not self.photo_ids:
            raise ValueError("NarrativeArc requires at least one photo id")
        if len(self.photo_ids) != len(self.emotional_curve):
            raise ValueError("emotional_curve must match photo_ids in length")
        for photo_id, point in zip(self.photo_ids, self.emotional_curve):
            if point.photo_id != photo_id:
                raise ValueError("emotional_curve must follow photo_ids order")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0.0 and 1.0")
        if self.expires_at.value < self.generated_at.value:
            raise ValueError("expires_at must not precede generated_at")

    def is_expired(self, now: Timestamp) -> bool:
        return now.value >= self.expires_at.value


# =============================================================================
# ORCHESTRATION LAYER CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class StoryResult:
    """
    IMMUTABLE result of one generation request.

    Partial results are still successful: detectors that timed out or
    failed are listed, their arcs are simply absent. `success` is False
    only when the scope as a whole could not be served.
    """
    scope_key: str
    success: bool
    arcs: Tuple[NarrativeArc, ...] = field(default_factory=tuple)
    timed_out: Tuple[ArcType, ...] = field(default_factory=tuple)
    failed: Tuple[ArcType, ...] = field(default_factory=tuple)
    error: Optional[Error] = None
    execution_time_ms: float = 0.0

    @staticmethod
    def unavailable(scope_key: str, error: Error, execution_time_ms: float = 0.0) -> StoryResult:
        """Create a failed result for a scope the store could not serve."""
        return StoryResult(
            scope_key=scope_key,
            success=False,
            error=error,
            execution_time_ms=execution_time_ms
        )

    @property
    def is_partial(self) -> bool:
        return bool(self.timed_out or self.failed)


# =============================================================================
# OBSERVABILITY LAYER CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    STORE = "store"
    DETECTION = "detection"
    CACHE = "cache"
    GENERATION = "generation"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

"""
Confidence Scoring

Assigns a 0-1 confidence to a candidate arc from its member count and its
type-specific quality signal.

DETERMINISM:
============
Same (type, count, quality) always yields the same float. Results are
rounded so regenerating an unchanged photo set reproduces confidence
bit-for-bit.

The per-type coefficients are configuration, not derived constants:
the ceilings keep the hand-picked values the gallery shipped with.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

from .contracts.base import ArcType
from .contracts.events import CandidateArc
from .detection import DetectionConfig


CONFIDENCE_PRECISION = 6


@dataclass(frozen=True)
class ScoringProfile:
    """
    Coefficients for one arc type.

    confidence = base
               + count_weight * min(1, (count - minimum) / count_saturation)
               + quality_weight * quality
    clamped to [0, ceiling]. Non-decreasing in count and quality as long
    as both weights are non-negative.
    """
    base: float
    count_weight: float
    quality_weight: float
    count_saturation: float
    ceiling: float = 1.0

    def __post_init__(self):
        if self.count_weight < 0 or self.quality_weight < 0:
            raise ValueError("scoring weights must be non-negative")
        if self.count_saturation <= 0:
            raise ValueError("count_saturation must be positive")
        if not 0.0 <= self.ceiling <= 1.0:
            raise ValueError("ceiling must be between 0.0 and 1.0")


def _default_profiles() -> Dict[ArcType, ScoringProfile]:
    return {
        ArcType.GAME_WINNING_RALLY: ScoringProfile(
            base=0.55, count_weight=0.15, quality_weight=0.20, count_saturation=5, ceiling=0.9
        ),
        ArcType.PLAYER_HIGHLIGHT_REEL: ScoringProfile(
            base=0.45, count_weight=0.15, quality_weight=0.25, count_saturation=5, ceiling=0.85
        ),
        ArcType.SEASON_JOURNEY: ScoringProfile(
            base=0.50, count_weight=0.30, quality_weight=0.20, count_saturation=8, ceiling=1.0
        ),
        ArcType.COMEBACK_STORY: ScoringProfile(
            base=0.40, count_weight=0.15, quality_weight=0.35, count_saturation=6, ceiling=0.85
        ),
        ArcType.TECHNICAL_EXCELLENCE: ScoringProfile(
            base=0.50, count_weight=0.15, quality_weight=0.20, count_saturation=16, ceiling=0.9
        ),
        ArcType.EMOTION_SPECTRUM: ScoringProfile(
            base=0.30, count_weight=0.10, quality_weight=0.50, count_saturation=2, ceiling=0.8
        ),
    }


@dataclass
class ScoringConfig:
    """Scoring profiles keyed by arc type."""
    profiles: Dict[ArcType, ScoringProfile] = field(default_factory=_default_profiles)

    def profile_for(self, arc_type: ArcType) -> ScoringProfile:
        return self.profiles[arc_type]


class ConfidenceScorer:
    """Turns (count, quality) into a bounded, monotonic confidence."""

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        detection: Optional[DetectionConfig] = None
    ):
        self._config = config or ScoringConfig()
        self._detection = detection or DetectionConfig()

    def score(self, arc_type: ArcType, count: int, quality: float) -> float:
        profile = self._config.profile_for(arc_type)
        minimum = self._detection.minimum_for(arc_type)

        surplus = max(0, count - minimum)
        count_factor = min(1.0, surplus / profile.count_saturation)
        quality = min(1.0, max(0.0, quality))

        raw = profile.base + profile.count_weight * count_factor + profile.quality_weight * quality
        return round(min(profile.ceiling, max(0.0, raw)), CONFIDENCE_PRECISION)

    def score_candidate(self, candidate: CandidateArc) -> float:
        return self.score(candidate.arc_type, candidate.member_count, candidate.quality)

"""
Arc Assembly

Turns a scored candidate into a NarrativeArc: orders its photos by the
type's rule, maps the ordered photos onto the emotional curve, and stamps
identity, copy, lifetime and slideshow duration.

INVARIANTS:
===========
- The curve is a direct 1:1 mapping of ordered photos to emotional impact;
  no smoothing, no interpolation
- Orderings are total (ties fall back to capture time, then photo id), so
  the same candidate always assembles to the same arc id and order
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional
import hashlib

from .contracts.base import ArcType, Timestamp
from .contracts.events import CandidateArc, CurvePoint, NarrativeArc
from .contracts.photos import Photo
from .detection import DetectionConfig


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class AssemblyConfig:
    """Configuration for arc assembly."""
    seconds_per_photo: float = 3.0


# =============================================================================
# ORDERING RULES
# =============================================================================

def _chronological(candidate: CandidateArc) -> Callable[[Photo], tuple]:
    return lambda p: (candidate.anchor_for(p).value, p.captured_at.value, p.id)


def _by_composition(candidate: CandidateArc) -> Callable[[Photo], tuple]:
    return lambda p: (-p.composition_score, p.captured_at.value, p.id)


def _by_combined_score(candidate: CandidateArc) -> Callable[[Photo], tuple]:
    return lambda p: (-p.combined_score, p.captured_at.value, p.id)


ORDERING_RULES: Dict[ArcType, Callable[[CandidateArc], Callable[[Photo], tuple]]] = {
    ArcType.GAME_WINNING_RALLY: _chronological,
    ArcType.PLAYER_HIGHLIGHT_REEL: _by_composition,
    ArcType.SEASON_JOURNEY: _chronological,
    ArcType.COMEBACK_STORY: _chronological,
    ArcType.TECHNICAL_EXCELLENCE: _by_combined_score,
    ArcType.EMOTION_SPECTRUM: _chronological,
}


def order_photos(candidate: CandidateArc) -> List[Photo]:
    """Photos of a candidate in their presentation order."""
    return sorted(candidate.photos, key=ORDERING_RULES[candidate.arc_type](candidate))


# =============================================================================
# COPY
# =============================================================================

_TITLES = {
    ArcType.GAME_WINNING_RALLY: "Game-Winning Rally",
    ArcType.PLAYER_HIGHLIGHT_REEL: "Player Highlight Reel",
    ArcType.SEASON_JOURNEY: "Season Journey",
    ArcType.COMEBACK_STORY: "Comeback Story",
    ArcType.TECHNICAL_EXCELLENCE: "Technical Excellence",
    ArcType.EMOTION_SPECTRUM: "Emotion Spectrum",
}

_DESCRIPTIONS = {
    ArcType.GAME_WINNING_RALLY:
        "The closing moments of the match: {count} high-intensity frames as the game was won.",
    ArcType.PLAYER_HIGHLIGHT_REEL:
        "The {count} sharpest, best-composed frames of one athlete.",
    ArcType.SEASON_JOURNEY:
        "One defining frame from each of {count} events, told in order.",
    ArcType.COMEBACK_STORY:
        "From determination through intensity to triumph, in {count} frames.",
    ArcType.TECHNICAL_EXCELLENCE:
        "{count} frames where sharpness and composition both reach the top tier.",
    ArcType.EMOTION_SPECTRUM:
        "{emotions} distinct emotions across {count} frames of a single event.",
}


def _title(candidate: CandidateArc) -> str:
    title = _TITLES[candidate.arc_type]
    if candidate.subject:
        return f"{title}: {candidate.subject}"
    return title


def _description(candidate: CandidateArc) -> str:
    emotions = candidate.detail("distinct_emotions")
    return _DESCRIPTIONS[candidate.arc_type].format(
        count=candidate.count,
        emotions=len(emotions.split(",")) if emotions else 0,
    )


def arc_id_for(arc_type: ArcType, scope_key: str, photo_ids) -> str:
    """Deterministic arc id from type, scope and ordered members."""
    content = f"{arc_type.value}|{scope_key}|{','.join(photo_ids)}"
    return f"arc_{hashlib.sha256(content.encode('utf-8')).hexdigest()[:16]}"


# =============================================================================
# ASSEMBLER
# =============================================================================

class ArcAssembler:
    """Builds NarrativeArc instances from scored candidates."""

    def __init__(
        self,
        config: Optional[AssemblyConfig] = None,
        detection: Optional[DetectionConfig] = None
    ):
        self._config = config or AssemblyConfig()
        self._detection = detection or DetectionConfig()

    def assemble(
        self,
        candidate: CandidateArc,
        scope_key: str,
        confidence: float,
        generated_at: Timestamp,
        ttl: timedelta
    ) -> NarrativeArc:
        minimum = self._detection.minimum_for(candidate.arc_type)
        members = candidate.member_count
        if members < minimum:
            raise ValueError(
                f"{candidate.arc_type.value} candidate below minimum ({members} < {minimum})"
            )

        ordered = order_photos(candidate)
        photo_ids = tuple(p.id for p in ordered)
        curve = tuple(CurvePoint(photo_id=p.id, intensity=p.emotional_impact) for p in ordered)

        return NarrativeArc(
            id=arc_id_for(candidate.arc_type, scope_key, photo_ids),
            arc_type=candidate.arc_type,
            title=_title(candidate),
            description=_description(candidate),
            scope_key=scope_key,
            photo_ids=photo_ids,
            emotional_curve=curve,
            confidence=confidence,
            generated_at=generated_at,
            expires_at=Timestamp(value=generated_at.value + ttl),
            duration_seconds=len(photo_ids) * self._config.seconds_per_photo
        )

"""
Narrative Pattern Detection

RESPONSIBILITY: Decide whether a narrative pattern is present in a photo set
ALLOWED INPUTS: Immutable photo snapshot from the store adapter
OUTPUTS: CandidateArc (or None when the pattern is absent)

WHAT THIS LAYER MUST NOT DO:
============================
- Query the store (detectors receive their snapshot)
- Assign confidence (scoring layer's job)
- Order photos for presentation (assembly layer's job)
- Produce partial arcs: every threshold is a minimum, violating one
  means no candidate at all

BOUNDARY ENFORCEMENT:
=====================
- Every detector is a pure function of its input snapshot
- A photo with a malformed or missing field is skipped with a warning,
  never allowed to abort the detector
- Arcs are independent views: one photo may satisfy several detectors
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
import logging
import threading

from ..contracts.base import (
    ArcType, ScopeKind, ActionIntensity, Emotion, TimeInGame, Timestamp
)
from ..contracts.errors import InvalidPhotoRecord
from ..contracts.events import CandidateArc
from ..contracts.photos import Photo

logger = logging.getLogger(__name__)


EMOTION_COUNT = len(Emotion)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class DetectionConfig:
    """
    Thresholds for all six detectors.

    Counts are minimums unless named max_*.
    """
    rally_min_photos: int = 3

    highlight_min_photos: int = 5
    highlight_max_photos: int = 10
    highlight_min_sharpness: float = 8.0
    highlight_min_composition: float = 7.0

    season_min_events: int = 8

    comeback_min_photos: int = 4

    excellence_min_photos: int = 8
    excellence_max_photos: int = 48
    excellence_min_sharpness: float = 9.0
    excellence_min_composition: float = 9.0

    spectrum_min_emotions: int = 4

    def minimum_for(self, arc_type: ArcType) -> int:
        """Type-specific minimum member count used by scoring."""
        return {
            ArcType.GAME_WINNING_RALLY: self.rally_min_photos,
            ArcType.PLAYER_HIGHLIGHT_REEL: self.highlight_min_photos,
            ArcType.SEASON_JOURNEY: self.season_min_events,
            ArcType.COMEBACK_STORY: self.comeback_min_photos,
            ArcType.TECHNICAL_EXCELLENCE: self.excellence_min_photos,
            ArcType.EMOTION_SPECTRUM: self.spectrum_min_emotions,
        }[arc_type]


# =============================================================================
# DETECTOR BASE (Single Responsibility)
# =============================================================================

class Detector:
    """
    Base class for narrative detectors.

    Subclasses declare the arc type they detect and the scopes they
    apply to, and implement `detect`. `cancel_event` is checked between
    iterations (per event or per athlete), never mid-computation.
    """

    scope_kinds: FrozenSet[ScopeKind] = frozenset()

    def __init__(self, config: Optional[DetectionConfig] = None):
        self._config = config or DetectionConfig()

    @property
    def arc_type(self) -> ArcType:
        raise NotImplementedError

    def applies_to(self, scope_kind: ScopeKind) -> bool:
        return scope_kind in self.scope_kinds

    def detect(
        self,
        photos: Sequence[Photo],
        cancel_event: Optional[threading.Event] = None
    ) -> Optional[CandidateArc]:
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def _select(self, photos: Iterable[Photo], predicate: Callable[[Photo], bool]) -> List[Photo]:
        """Photos satisfying `predicate`; malformed ones are skipped."""
        selected = []
        for photo in photos:
            try:
                if predicate(photo):
                    selected.append(photo)
            except InvalidPhotoRecord as e:
                logger.warning(
                    "%s detector skipping photo %s: %s",
                    self.arc_type.value, e.photo_id, e.message
                )
        return selected

    def _best_by_group(
        self,
        photos: Sequence[Photo],
        group_key: Callable[[Photo], str],
        evaluate: Callable[[str, List[Photo]], Optional[CandidateArc]],
        cancel_event: Optional[threading.Event]
    ) -> Optional[CandidateArc]:
        """
        Evaluate each group independently and keep the strongest candidate.

        Strongest = higher quality, then more photos, then lower group id.
        """
        groups: Dict[str, List[Photo]] = {}
        for photo in self._select(photos, lambda p: group_key(p) is not None):
            groups.setdefault(group_key(photo), []).append(photo)

        candidates: List[Tuple[float, int, str, CandidateArc]] = []
        for key in sorted(groups):
            if cancel_event is not None and cancel_event.is_set():
                logger.debug("%s detector cancelled before group %s", self.arc_type.value, key)
                return None
            candidate = evaluate(key, groups[key])
            if candidate is not None:
                candidates.append((-candidate.quality, -candidate.count, key, candidate))

        if not candidates:
            return None
        candidates.sort(key=lambda c: c[:3])
        return candidates[0][3]


def _athlete_of(photo: Photo) -> str:
    return photo.require("athlete_id")


def _event_of(photo: Photo) -> str:
    return photo.event_id


# =============================================================================
# GAME-WINNING RALLY
# =============================================================================

class GameWinningRallyDetector(Detector):
    """
    Final-minutes action at high or peak intensity carrying triumph or
    intensity, within one event.
    """

    scope_kinds = frozenset({ScopeKind.EVENT})

    _QUALIFYING_INTENSITIES = frozenset({ActionIntensity.HIGH, ActionIntensity.PEAK})
    _QUALIFYING_EMOTIONS = frozenset({Emotion.TRIUMPH, Emotion.INTENSITY})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.GAME_WINNING_RALLY

    def detect(self, photos, cancel_event=None):
        return self._best_by_group(photos, _event_of, self._evaluate_event, cancel_event)

    def _qualifies(self, photo: Photo) -> bool:
        if photo.time_in_game != TimeInGame.FINAL:
            return False
        if photo.action_intensity not in self._QUALIFYING_INTENSITIES:
            return False
        return photo.require("emotion") in self._QUALIFYING_EMOTIONS

    def _evaluate_event(self, event_id: str, photos: List[Photo]) -> Optional[CandidateArc]:
        members = self._select(photos, self._qualifies)
        if len(members) < self._config.rally_min_photos:
            return None

        peak = sum(1 for p in members if p.action_intensity == ActionIntensity.PEAK)
        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(members),
            quality=peak / len(members),
            subject=event_id,
            details=(("peak_count", str(peak)),)
        )


# =============================================================================
# PLAYER HIGHLIGHT REEL
# =============================================================================

class PlayerHighlightReelDetector(Detector):
    """An athlete's sharpest, best-composed shots, capped at the top few."""

    scope_kinds = frozenset({ScopeKind.ATHLETE})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.PLAYER_HIGHLIGHT_REEL

    def detect(self, photos, cancel_event=None):
        return self._best_by_group(photos, _athlete_of, self._evaluate_athlete, cancel_event)

    def _qualifies(self, photo: Photo) -> bool:
        return (
            photo.sharpness >= self._config.highlight_min_sharpness
            and photo.composition_score >= self._config.highlight_min_composition
        )

    def _evaluate_athlete(self, athlete_id: str, photos: List[Photo]) -> Optional[CandidateArc]:
        members = self._select(photos, self._qualifies)
        if len(members) < self._config.highlight_min_photos:
            return None

        members.sort(key=lambda p: (-p.composition_score, p.captured_at.value, p.id))
        members = members[:self._config.highlight_max_photos]

        mean_composition = sum(p.composition_score for p in members) / len(members)
        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(members),
            quality=min(1.0, mean_composition / 10.0),
            subject=athlete_id,
            details=(("mean_composition", f"{mean_composition:.2f}"),)
        )


# =============================================================================
# SEASON JOURNEY
# =============================================================================

class SeasonJourneyDetector(Detector):
    """One representative photo per event across a season or the archive."""

    scope_kinds = frozenset({ScopeKind.GLOBAL, ScopeKind.SEASON})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.SEASON_JOURNEY

    def detect(self, photos, cancel_event=None):
        by_event: Dict[str, List[Photo]] = {}
        for photo in photos:
            by_event.setdefault(photo.event_id, []).append(photo)

        if len(by_event) < self._config.season_min_events:
            return None

        representatives: List[Photo] = []
        anchors: List[Tuple[str, Timestamp]] = []
        for event_id in sorted(by_event):
            if cancel_event is not None and cancel_event.is_set():
                return None
            event_photos = by_event[event_id]
            best = min(
                event_photos,
                key=lambda p: (-p.composition_score, p.captured_at.value, p.id)
            )
            event_start = min(event_photos, key=Photo.chronological_key).captured_at
            representatives.append(best)
            anchors.append((best.id, event_start))

        events = len(representatives)
        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(representatives),
            quality=min(1.0, events / (2.0 * self._config.season_min_events)),
            subject=None,
            details=(("event_count", str(events)),),
            anchors=tuple(anchors)
        )


# =============================================================================
# COMEBACK STORY
# =============================================================================

class ComebackStoryDetector(Detector):
    """
    Within one event: determination, then intensity, then triumph.

    The comeback window runs from the earliest determination, through the
    first intensity after it, to the last triumph after that. Members are
    the window photos carrying one of the three emotions; the quality
    signal is how much of the window they make up.
    """

    scope_kinds = frozenset({ScopeKind.EVENT})

    _TARGETS = frozenset({Emotion.DETERMINATION, Emotion.INTENSITY, Emotion.TRIUMPH})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.COMEBACK_STORY

    def detect(self, photos, cancel_event=None):
        return self._best_by_group(photos, _event_of, self._evaluate_event, cancel_event)

    def _evaluate_event(self, event_id: str, photos: List[Photo]) -> Optional[CandidateArc]:
        timeline = sorted(
            self._select(photos, lambda p: p.require("emotion") is not None),
            key=Photo.chronological_key
        )
        emotions = [p.emotion for p in timeline]

        start = _index_of(emotions, Emotion.DETERMINATION, 0)
        if start is None:
            return None
        turn = _index_of(emotions, Emotion.INTENSITY, start + 1)
        if turn is None:
            return None
        end = _last_index_of(emotions, Emotion.TRIUMPH, turn + 1)
        if end is None:
            return None

        window = timeline[start:end + 1]
        members = [p for p in window if p.emotion in self._TARGETS]
        if len(members) < self._config.comeback_min_photos:
            return None

        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(members),
            quality=len(members) / len(window),
            subject=event_id,
            details=(("window_size", str(len(window))),)
        )


def _index_of(values: List, target, start: int) -> Optional[int]:
    for i in range(start, len(values)):
        if values[i] == target:
            return i
    return None


def _last_index_of(values: List, target, start: int) -> Optional[int]:
    for i in range(len(values) - 1, start - 1, -1):
        if values[i] == target:
            return i
    return None


# =============================================================================
# TECHNICAL EXCELLENCE
# =============================================================================

class TechnicalExcellenceDetector(Detector):
    """Photos at the top of both sharpness and composition."""

    scope_kinds = frozenset({ScopeKind.GLOBAL, ScopeKind.EVENT})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.TECHNICAL_EXCELLENCE

    def detect(self, photos, cancel_event=None):
        members = self._select(
            photos,
            lambda p: (
                p.sharpness >= self._config.excellence_min_sharpness
                and p.composition_score >= self._config.excellence_min_composition
            )
        )
        if len(members) < self._config.excellence_min_photos:
            return None

        members.sort(key=lambda p: (-p.combined_score, p.captured_at.value, p.id))
        members = members[:self._config.excellence_max_photos]

        mean_combined = sum(p.combined_score for p in members) / len(members)
        event_ids = {p.event_id for p in members}
        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(members),
            quality=min(1.0, mean_combined / 20.0),
            subject=event_ids.pop() if len(event_ids) == 1 else None,
            details=(("mean_combined", f"{mean_combined:.2f}"),)
        )


# =============================================================================
# EMOTION SPECTRUM
# =============================================================================

class EmotionSpectrumDetector(Detector):
    """An event that runs through a wide range of emotions."""

    scope_kinds = frozenset({ScopeKind.EVENT})

    @property
    def arc_type(self) -> ArcType:
        return ArcType.EMOTION_SPECTRUM

    def detect(self, photos, cancel_event=None):
        return self._best_by_group(photos, _event_of, self._evaluate_event, cancel_event)

    def _evaluate_event(self, event_id: str, photos: List[Photo]) -> Optional[CandidateArc]:
        members = self._select(photos, lambda p: p.require("emotion") is not None)
        distinct = {p.emotion for p in members}
        if len(distinct) < self._config.spectrum_min_emotions:
            return None

        return CandidateArc(
            arc_type=self.arc_type,
            photos=tuple(members),
            quality=len(distinct) / EMOTION_COUNT,
            subject=event_id,
            details=(
                ("distinct_emotions", ",".join(sorted(e.value for e in distinct))),
            )
        )


# =============================================================================
# REGISTRY
# =============================================================================

class DetectorRegistry:
    """Holds one detector per arc type, in arc-type declaration order."""

    def __init__(self, detectors: Optional[Iterable[Detector]] = None):
        self._detectors: Dict[ArcType, Detector] = {}
        for detector in detectors or ():
            self.register(detector)

    def register(self, detector: Detector):
        """Register (or replace) the detector for its arc type."""
        self._detectors[detector.arc_type] = detector

    def get(self, arc_type: ArcType) -> Optional[Detector]:
        return self._detectors.get(arc_type)

    def applicable(self, scope_kind: ScopeKind) -> List[Detector]:
        """Detectors that run for a scope kind, in arc-type order."""
        return [
            self._detectors[arc_type]
            for arc_type in ArcType
            if arc_type in self._detectors and self._detectors[arc_type].applies_to(scope_kind)
        ]

    def __len__(self) -> int:
        return len(self._detectors)


def default_registry(config: Optional[DetectionConfig] = None) -> DetectorRegistry:
    """Registry with the six built-in detectors."""
    config = config or DetectionConfig()
    return DetectorRegistry([
        GameWinningRallyDetector(config),
        PlayerHighlightReelDetector(config),
        SeasonJourneyDetector(config),
        ComebackStoryDetector(config),
        TechnicalExcellenceDetector(config),
        EmotionSpectrumDetector(config),
    ])


__all__ = [
    'DetectionConfig',
    'Detector',
    'GameWinningRallyDetector',
    'PlayerHighlightReelDetector',
    'SeasonJourneyDetector',
    'ComebackStoryDetector',
    'TechnicalExcellenceDetector',
    'EmotionSpectrumDetector',
    'DetectorRegistry',
    'default_registry',
]

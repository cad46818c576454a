"""
Integration Test Fixtures

Deterministic photo fixtures for detector, engine and API tests.
All fixtures are explicit - no random generation.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
import itertools
import threading

from story_engine.contracts.base import (
    ActionIntensity, ArcType, Emotion, PlayType, ScopeKind, TimeInGame, Timestamp
)
from story_engine.contracts.errors import MetadataStoreUnavailable
from story_engine.contracts.events import CandidateArc
from story_engine.contracts.photos import Photo
from story_engine.detection import Detector
from story_engine.store import InMemoryMetadataStore


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

EPOCH = datetime(2026, 3, 1, 18, 0, 0, tzinfo=timezone.utc)


def at(minutes: float) -> Timestamp:
    return Timestamp(value=EPOCH + timedelta(minutes=minutes))


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        self._now = start

    def __call__(self) -> Timestamp:
        return Timestamp(value=self._now)

    def advance(self, **kwargs):
        self._now = self._now + timedelta(**kwargs)


# =============================================================================
# PHOTO BUILDERS
# =============================================================================

_ids = itertools.count(1)


def make_photo(
    photo_id: Optional[str] = None,
    event_id: str = "E1",
    minute: float = 0,
    action_intensity: ActionIntensity = ActionIntensity.MEDIUM,
    sharpness: float = 6.0,
    composition_score: float = 6.0,
    emotional_impact: float = 5.0,
    athlete_id: Optional[str] = None,
    play_type: Optional[PlayType] = PlayType.ATTACK,
    emotion: Optional[Emotion] = Emotion.FOCUS,
    time_in_game: Optional[TimeInGame] = TimeInGame.MIDDLE
) -> Photo:
    return Photo(
        id=photo_id or f"photo_{next(_ids):04d}",
        event_id=event_id,
        captured_at=at(minute),
        action_intensity=action_intensity,
        sharpness=sharpness,
        composition_score=composition_score,
        emotional_impact=emotional_impact,
        athlete_id=athlete_id,
        play_type=play_type,
        emotion=emotion,
        time_in_game=time_in_game
    )


def rally_photo(photo_id: str, minute: float, event_id: str = "E1", **overrides) -> Photo:
    """A photo that qualifies for a game-winning rally."""
    fields = dict(
        event_id=event_id,
        minute=minute,
        action_intensity=ActionIntensity.PEAK,
        emotion=Emotion.TRIUMPH,
        time_in_game=TimeInGame.FINAL,
        emotional_impact=9.0
    )
    fields.update(overrides)
    return make_photo(photo_id, **fields)


def scenario_a_photos() -> List[Photo]:
    """Event E1: three final-minute peak triumph shots and two focus shots."""
    return [
        rally_photo("e1_p3", minute=88),
        make_photo("e1_f1", minute=10, emotion=Emotion.FOCUS),
        rally_photo("e1_p1", minute=85),
        make_photo("e1_f2", minute=40, emotion=Emotion.FOCUS),
        rally_photo("e1_p2", minute=86),
    ]


def scenario_b_photos() -> List[Photo]:
    """Athlete A1: four sharp, well-composed shots, one short of a reel."""
    return [
        make_photo(f"a1_{i}", event_id="E5", minute=i, athlete_id="A1",
                   sharpness=8.5, composition_score=7.5)
        for i in range(4)
    ]


def scenario_c_photos() -> List[Photo]:
    """Event E2: four distinct emotions, no comeback ordering."""
    emotions = [Emotion.TRIUMPH, Emotion.DETERMINATION, Emotion.FOCUS, Emotion.FOCUS, Emotion.INTENSITY]
    return [
        make_photo(f"e2_{i}", event_id="E2", minute=i * 5, emotion=emotion,
                   emotional_impact=float(i + 3))
        for i, emotion in enumerate(emotions)
    ]


def comeback_photos(event_id: str = "E3") -> List[Photo]:
    """determination -> intensity -> triumph, with a focus shot in the window."""
    sequence = [
        ("cb_0", Emotion.SERENITY),
        ("cb_1", Emotion.DETERMINATION),
        ("cb_2", Emotion.FOCUS),
        ("cb_3", Emotion.INTENSITY),
        ("cb_4", Emotion.DETERMINATION),
        ("cb_5", Emotion.TRIUMPH),
        ("cb_6", Emotion.EXCITEMENT),
    ]
    return [
        make_photo(photo_id, event_id=event_id, minute=i, emotion=emotion)
        for i, (photo_id, emotion) in enumerate(sequence)
    ]


def season_photos(events: int = 8) -> List[Photo]:
    """Two photos per event, events one week apart, ids out of date order."""
    photos = []
    for n in range(events):
        event_id = f"season_{(n * 3) % events:02d}"
        week = n * 7 * 24 * 60
        photos.append(make_photo(f"{event_id}_a", event_id=event_id, minute=week,
                                 composition_score=6.0))
        photos.append(make_photo(f"{event_id}_b", event_id=event_id, minute=week + 30,
                                 composition_score=8.0))
    return photos


def excellence_photos(count: int = 8, event_id: str = "E4") -> List[Photo]:
    return [
        make_photo(f"ex_{i:02d}", event_id=event_id, minute=i,
                   sharpness=9.0 + (i % 3) * 0.5, composition_score=9.5)
        for i in range(count)
    ]


# =============================================================================
# TEST DETECTORS
# =============================================================================

class CountingDetector(Detector):
    """Wraps a real detector and counts how often it runs."""

    def __init__(self, inner: Detector, delay: float = 0.0):
        super().__init__()
        self._inner = inner
        self._delay = delay
        self._lock = threading.Lock()
        self.calls = 0
        self.scope_kinds = inner.scope_kinds

    @property
    def arc_type(self) -> ArcType:
        return self._inner.arc_type

    def detect(self, photos, cancel_event=None):
        with self._lock:
            self.calls += 1
        if self._delay:
            threading.Event().wait(self._delay)
        return self._inner.detect(photos, cancel_event)


class StallingDetector(Detector):
    """Blocks until cancelled (or a long safety timeout) and finds nothing."""

    scope_kinds = frozenset({ScopeKind.EVENT})

    def __init__(self, arc_type: ArcType = ArcType.COMEBACK_STORY, safety_timeout: float = 5.0):
        super().__init__()
        self._arc_type = arc_type
        self._safety_timeout = safety_timeout

    @property
    def arc_type(self) -> ArcType:
        return self._arc_type

    def detect(self, photos, cancel_event=None):
        if cancel_event is not None:
            cancel_event.wait(self._safety_timeout)
        return None


class ExplodingDetector(Detector):
    """Raises on every run."""

    scope_kinds = frozenset({ScopeKind.EVENT})

    def __init__(self, arc_type: ArcType = ArcType.TECHNICAL_EXCELLENCE):
        super().__init__()
        self._arc_type = arc_type

    @property
    def arc_type(self) -> ArcType:
        return self._arc_type

    def detect(self, photos, cancel_event=None):
        raise RuntimeError("detector exploded")


class FixedCandidateDetector(Detector):
    """Returns a prepared candidate regardless of input."""

    scope_kinds = frozenset({ScopeKind.EVENT})

    def __init__(self, candidate: CandidateArc):
        super().__init__()
        self._candidate = candidate

    @property
    def arc_type(self) -> ArcType:
        return self._candidate.arc_type

    def detect(self, photos, cancel_event=None):
        return self._candidate


# =============================================================================
# TEST STORES
# =============================================================================

class FlakyStore(InMemoryMetadataStore):
    """Fails the first `failures` event queries."""

    def __init__(self, photos=(), failures=0, **kwargs):
        super().__init__(photos, **kwargs)
        self.failures = failures
        self.queries = 0

    def query_photos_by_event(self, event_id):
        self.queries += 1
        if self.queries <= self.failures:
            raise MetadataStoreUnavailable("store offline")
        return super().query_photos_by_event(event_id)


class SlowChangeStore(InMemoryMetadataStore):
    """Answers change checks only after `delay` seconds."""

    def __init__(self, photos=(), delay=1.0, **kwargs):
        super().__init__(photos, **kwargs)
        self.delay = delay

    def changed_since(self, scope_key, timestamp):
        threading.Event().wait(self.delay)
        return super().changed_since(scope_key, timestamp)

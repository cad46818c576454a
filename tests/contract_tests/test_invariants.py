"""
Property Tests for Story Contracts
Verifies curve lockstep, confidence bounds and monotonicity, and
presentation-order totality over generated photo sets.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from story_engine.assembly import ArcAssembler, order_photos
from story_engine.contracts.base import (
    ActionIntensity, ArcType, Emotion, TimeInGame, Timestamp
)
from story_engine.contracts.events import CandidateArc
from story_engine.contracts.photos import Photo
from story_engine.detection import DetectionConfig
from story_engine.scoring import ConfidenceScorer

# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)

scores = st.floats(min_value=0.0, max_value=10.0, allow_nan=False)

# Types whose membership is a plain photo count.
COUNTED_TYPES = [t for t in ArcType if t != ArcType.EMOTION_SPECTRUM]


@composite
def photos(draw, index):
    """Generates a valid Photo; `index` keeps ids unique within a set."""
    return Photo(
        id=f"p{index:03d}",
        event_id=draw(st.sampled_from(["E1", "E2", "E3"])),
        captured_at=Timestamp(value=EPOCH + timedelta(
            seconds=draw(st.integers(min_value=0, max_value=86400))
        )),
        action_intensity=draw(st.sampled_from(ActionIntensity)),
        sharpness=draw(scores),
        composition_score=draw(scores),
        emotional_impact=draw(scores),
        emotion=draw(st.one_of(st.none(), st.sampled_from(Emotion))),
        time_in_game=draw(st.one_of(st.none(), st.sampled_from(TimeInGame)))
    )


@composite
def photo_sets(draw, min_size=1, max_size=24):
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    return [draw(photos(i)) for i in range(size)]


@composite
def candidates(draw):
    """Generates a candidate that meets its type's minimum."""
    arc_type = draw(st.sampled_from(COUNTED_TYPES))
    minimum = DetectionConfig().minimum_for(arc_type)
    members = draw(photo_sets(min_size=minimum, max_size=minimum + 12))
    return CandidateArc(
        arc_type=arc_type,
        photos=tuple(members),
        quality=draw(st.floats(min_value=0.0, max_value=1.0, allow_nan=False)),
        subject="E1"
    )


# =============================================================================
# PROPERTY TESTS
# =============================================================================

@given(candidates())
def test_curve_is_lockstep_with_photos(candidate):
    """The curve maps each ordered photo to its own emotional impact."""
    generated_at = Timestamp(value=EPOCH)
    arc = ArcAssembler().assemble(candidate, "E1", 0.5, generated_at, timedelta(hours=24))

    by_id = {p.id: p for p in candidate.photos}
    assert len(arc.emotional_curve) == len(arc.photo_ids)
    for point, photo_id in zip(arc.emotional_curve, arc.photo_ids):
        assert point.photo_id == photo_id
        assert point.intensity == by_id[photo_id].emotional_impact


@given(candidates())
def test_arc_has_no_duplicate_members(candidate):
    arc = ArcAssembler().assemble(
        candidate, "E1", 0.5, Timestamp(value=EPOCH), timedelta(hours=24)
    )
    assert len(set(arc.photo_ids)) == len(arc.photo_ids) == candidate.count


@given(candidates())
def test_presentation_order_ignores_input_order(candidate):
    reversed_candidate = CandidateArc(
        arc_type=candidate.arc_type,
        photos=tuple(reversed(candidate.photos)),
        quality=candidate.quality,
        subject=candidate.subject
    )
    assert order_photos(candidate) == order_photos(reversed_candidate)


@given(
    st.sampled_from(ArcType),
    st.integers(min_value=0, max_value=200),
    st.floats(min_value=-1.0, max_value=2.0, allow_nan=False)
)
def test_confidence_is_bounded(arc_type, count, quality):
    confidence = ConfidenceScorer().score(arc_type, count, quality)
    assert 0.0 <= confidence <= 1.0


@given(
    st.sampled_from(ArcType),
    st.integers(min_value=0, max_value=100),
    st.integers(min_value=0, max_value=100),
    st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
)
def test_confidence_is_monotonic_in_count(arc_type, count, extra, quality):
    scorer = ConfidenceScorer()
    assert scorer.score(arc_type, count, quality) <= scorer.score(arc_type, count + extra, quality)


@given(
    st.sampled_from(ArcType),
    st.integers(min_value=0, max_value=100),
    st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
    st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
)
def test_confidence_is_monotonic_in_quality(arc_type, count, low, high):
    low, high = min(low, high), max(low, high)
    scorer = ConfidenceScorer()
    assert scorer.score(arc_type, count, low) <= scorer.score(arc_type, count, high)

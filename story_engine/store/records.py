"""
Photo Record Validation

Turns raw photo-metadata rows (as exported from the photo_metadata table
or emitted by the enrichment pipeline) into validated `Photo` contracts.

Vocabulary cleanup mirrors the data-quality migrations run against the
photo table: multi-value emotions keep their first canonical value,
synonyms collapse onto the canonical six, and unclear values become null.
Anything the mappings do not recognise is malformed and rejected here,
so detectors never see it.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from ..contracts.base import (
    Timestamp, PlayType, ActionIntensity, Emotion, TimeInGame
)
from ..contracts.errors import InvalidPhotoRecord
from ..contracts.photos import Photo


# =============================================================================
# VOCABULARY NORMALIZATION
# =============================================================================

# Precedence used when an emotion field holds several pipe-delimited values
_EMOTION_PRECEDENCE = (
    ("focus", Emotion.FOCUS),
    ("determination", Emotion.DETERMINATION),
    ("intensity", Emotion.INTENSITY),
    ("excitement", Emotion.EXCITEMENT),
    ("triumph", Emotion.TRIUMPH),
    ("serenity", Emotion.SERENITY),
    ("playfulness", Emotion.EXCITEMENT),
)

_EMOTION_SYNONYMS: Dict[str, Emotion] = {}
for _names, _emotion in (
    (("joy", "happiness", "playfulness", "enthusiasm", "vibrancy"), Emotion.EXCITEMENT),
    (("concentration", "anticipation", "curiosity", "contemplation"), Emotion.FOCUS),
    (("pride", "satisfaction", "confidence", "fulfillment"), Emotion.TRIUMPH),
    (("contentment", "appreciation", "gratitude", "fondness"), Emotion.SERENITY),
    (("unity", "camaraderie", "respect", "affection", "community", "dedication"),
     Emotion.DETERMINATION),
    (("awe", "intrigue"), Emotion.INTENSITY),
):
    for _name in _names:
        _EMOTION_SYNONYMS[_name] = _emotion

# Values the enrichment model emits that carry no usable emotion
_EMOTION_UNCLEAR = frozenset({
    "distress", "anxiety", "neglect", "solemnity", "mysterious", "mystery",
    "documentation", "informational", "candid", "dramatic", "raw", "action", "interest",
})

_TIME_IN_GAME_ALIASES: Dict[str, Optional[TimeInGame]] = {
    "first_5_min": TimeInGame.EARLY,
    "final_5_min": TimeInGame.FINAL,
    "unknown": None,
}

_PLAY_TYPE_ALIASES: Dict[str, Optional[PlayType]] = {
    "null": None,
    "pass": PlayType.DIG,
    "timeout": PlayType.CELEBRATION,
    "action": PlayType.ATTACK,
    "play": PlayType.ATTACK,
}
for _name in ("joust", "cutback", "swing", "tackle", "roll", "kick", "defense"):
    _PLAY_TYPE_ALIASES[_name] = PlayType.TRANSITION


def normalize_emotion(raw: Any, photo_id: Optional[str] = None) -> Optional[Emotion]:
    """Map a raw emotion value onto the canonical vocabulary (or None)."""
    if raw is None:
        return None
    if isinstance(raw, Emotion):
        return raw
    if not isinstance(raw, str):
        raise InvalidPhotoRecord("emotion must be a string", photo_id=photo_id, field_name="emotion")

    value = raw.strip().lower()
    if not value:
        return None

    if "|" in value:
        tokens = {token.strip() for token in value.split("|")}
        for name, emotion in _EMOTION_PRECEDENCE:
            if name in tokens:
                return emotion
        return None

    try:
        return Emotion(value)
    except ValueError:
        pass

    if value in _EMOTION_SYNONYMS:
        return _EMOTION_SYNONYMS[value]
    if value in _EMOTION_UNCLEAR:
        return None

    raise InvalidPhotoRecord(
        f"unrecognised emotion: {raw!r}", photo_id=photo_id, field_name="emotion"
    )


def normalize_time_in_game(raw: Any, photo_id: Optional[str] = None) -> Optional[TimeInGame]:
    if raw is None or isinstance(raw, TimeInGame):
        return raw
    if not isinstance(raw, str):
        raise InvalidPhotoRecord(
            "time_in_game must be a string", photo_id=photo_id, field_name="time_in_game"
        )
    value = raw.strip().lower()
    if not value:
        return None
    if value in _TIME_IN_GAME_ALIASES:
        return _TIME_IN_GAME_ALIASES[value]
    try:
        return TimeInGame(value)
    except ValueError:
        raise InvalidPhotoRecord(
            f"unrecognised time_in_game: {raw!r}", photo_id=photo_id, field_name="time_in_game"
        )


def normalize_play_type(raw: Any, photo_id: Optional[str] = None) -> Optional[PlayType]:
    """Map a raw play type onto the canonical vocabulary (or None)."""
    if isinstance(raw, str) and raw.strip().lower() in _PLAY_TYPE_ALIASES:
        return _PLAY_TYPE_ALIASES[raw.strip().lower()]
    return _parse_enum(PlayType, raw, "play_type", photo_id, False)


def _parse_enum(enum_cls, raw: Any, field_name: str, photo_id: Optional[str], required: bool):
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise InvalidPhotoRecord(f"{field_name} is required", photo_id=photo_id, field_name=field_name)
        return None
    if isinstance(raw, enum_cls):
        return raw
    if not isinstance(raw, str):
        raise InvalidPhotoRecord(f"{field_name} must be a string", photo_id=photo_id, field_name=field_name)
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        raise InvalidPhotoRecord(
            f"unrecognised {field_name}: {raw!r}", photo_id=photo_id, field_name=field_name
        )


def _parse_timestamp(raw: Any, photo_id: Optional[str]) -> Timestamp:
    if isinstance(raw, Timestamp):
        return raw
    if isinstance(raw, datetime):
        return Timestamp(value=raw)
    if isinstance(raw, str) and raw.strip():
        try:
            return Timestamp.from_iso(raw.strip())
        except ValueError:
            pass
    raise InvalidPhotoRecord(
        f"captured_at must be an ISO 8601 timestamp, got {raw!r}",
        photo_id=photo_id,
        field_name="captured_at"
    )


def _parse_score(raw: Any, field_name: str, photo_id: Optional[str]) -> float:
    if isinstance(raw, bool) or raw is None:
        raise InvalidPhotoRecord(f"{field_name} is required", photo_id=photo_id, field_name=field_name)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            raise InvalidPhotoRecord(f"{field_name} must be numeric", photo_id=photo_id, field_name=field_name)
    if isinstance(raw, (int, float)):
        return float(raw)
    raise InvalidPhotoRecord(f"{field_name} must be numeric", photo_id=photo_id, field_name=field_name)


def _pick(record: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in record:
        return record[snake]
    return record.get(camel)


def _optional_id(raw: Any, field_name: str, photo_id: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, (int, str)):
        value = str(raw).strip()
        return value or None
    raise InvalidPhotoRecord(f"{field_name} must be a string", photo_id=photo_id, field_name=field_name)


# =============================================================================
# RECORD PARSING
# =============================================================================

def parse_photo_record(record: Mapping[str, Any]) -> Photo:
    """
    Validate one raw record into a Photo.

    Accepts snake_case and camelCase field names.
    Raises InvalidPhotoRecord on the first missing or malformed field.
    """
    if not isinstance(record, Mapping):
        raise InvalidPhotoRecord("photo record must be a mapping")

    photo_id = _optional_id(record.get("id"), "id", None)
    if not photo_id:
        raise InvalidPhotoRecord("photo record has no id", field_name="id")

    event_id = _optional_id(_pick(record, "event_id", "eventId"), "event_id", photo_id)
    if not event_id:
        raise InvalidPhotoRecord("event_id is required", photo_id=photo_id, field_name="event_id")

    return Photo(
        id=photo_id,
        event_id=event_id,
        athlete_id=_optional_id(_pick(record, "athlete_id", "athleteId"), "athlete_id", photo_id),
        captured_at=_parse_timestamp(_pick(record, "captured_at", "capturedAt"), photo_id),
        play_type=normalize_play_type(_pick(record, "play_type", "playType"), photo_id),
        action_intensity=_parse_enum(
            ActionIntensity,
            _pick(record, "action_intensity", "actionIntensity"),
            "action_intensity",
            photo_id,
            True
        ),
        emotion=normalize_emotion(record.get("emotion"), photo_id),
        sharpness=_parse_score(record.get("sharpness"), "sharpness", photo_id),
        composition_score=_parse_score(
            _pick(record, "composition_score", "compositionScore"), "composition_score", photo_id
        ),
        emotional_impact=_parse_score(
            _pick(record, "emotional_impact", "emotionalImpact"), "emotional_impact", photo_id
        ),
        time_in_game=normalize_time_in_game(_pick(record, "time_in_game", "timeInGame"), photo_id),
    )


def photo_to_record(photo: Photo) -> Dict[str, Any]:
    """Serialize a Photo back to a snake_case record."""
    return {
        "id": photo.id,
        "event_id": photo.event_id,
        "athlete_id": photo.athlete_id,
        "captured_at": photo.captured_at.to_iso(),
        "play_type": photo.play_type.value if photo.play_type else None,
        "action_intensity": photo.action_intensity.value,
        "emotion": photo.emotion.value if photo.emotion else None,
        "sharpness": photo.sharpness,
        "composition_score": photo.composition_score,
        "emotional_impact": photo.emotional_impact,
        "time_in_game": photo.time_in_game.value if photo.time_in_game else None,
    }

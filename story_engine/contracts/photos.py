"""
Photo Contract

The engine's read-only view of one AI-tagged photograph. Photos are produced
by the enrichment pipeline and reach the engine only through the store
adapter, which validates raw records into this type.

BOUNDARY ENFORCEMENT:
=====================
- Photo is immutable; the engine never writes photo data
- Arcs reference photos by id, never by copy
- A Photo that exists has passed validation; nullable fields are the
  only fields a detector may find absent
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .base import (
    Timestamp, PlayType, ActionIntensity, Emotion, TimeInGame
)
from .errors import InvalidPhotoRecord


SCORE_MIN = 0.0
SCORE_MAX = 10.0


@dataclass(frozen=True)
class Photo:
    """
    IMMUTABLE tagged photo.

    Every photo belongs to exactly one event. `athlete_id` is absent for
    team and crowd shots; `emotion` is absent when enrichment could not
    settle on a canonical value.
    """
    id: str
    event_id: str
    captured_at: Timestamp
    action_intensity: ActionIntensity
    sharpness: float
    composition_score: float
    emotional_impact: float
    athlete_id: Optional[str] = None
    play_type: Optional[PlayType] = None
    emotion: Optional[Emotion] = None
    time_in_game: Optional[TimeInGame] = None

    def __post_init__(self):
        if not self.id or not isinstance(self.id, str):
            raise InvalidPhotoRecord("photo id must be a non-empty string", field_name="id")
        if not self.event_id or not isinstance(self.event_id, str):
            raise InvalidPhotoRecord(
                "event_id must be a non-empty string", photo_id=self.id, field_name="event_id"
            )
        if not isinstance(self.captured_at, Timestamp):
            raise InvalidPhotoRecord(
                "captured_at must be a Timestamp", photo_id=self.id, field_name="captured_at"
            )
        if not isinstance(self.action_intensity, ActionIntensity):
            raise InvalidPhotoRecord(
                "action_intensity is required", photo_id=self.id, field_name="action_intensity"
            )
        for name in ("sharpness", "composition_score", "emotional_impact"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidPhotoRecord(
                    f"{name} must be numeric", photo_id=self.id, field_name=name
                )
            if not SCORE_MIN <= value <= SCORE_MAX:
                raise InvalidPhotoRecord(
                    f"{name} must be between {SCORE_MIN} and {SCORE_MAX}, got {value}",
                    photo_id=self.id,
                    field_name=name
                )
            object.__setattr__(self, name, float(value))

    @property
    def combined_score(self) -> float:
        return self.sharpness + self.composition_score

    def require(self, field_name: str):
        """
        Read a nullable field a detector cannot work without.

        Raises InvalidPhotoRecord when the field is absent so the calling
        detector can skip this photo and carry on.
        """
        value = getattr(self, field_name)
        if value is None:
            raise InvalidPhotoRecord(
                f"{field_name} is missing", photo_id=self.id, field_name=field_name
            )
        return value

    def chronological_key(self):
        """Total ordering key: capture time, then id."""
        return (self.captured_at.value, self.id)

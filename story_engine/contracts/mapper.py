"""
Arc Wire Mapper
===============
Maps NarrativeArc contracts to and from the JSON wire shape consumed by the
presentation layer (story viewer, timeline).

Wire shape:
    {id, type, title, description, scopeKey, photoIds: [..],
     emotionalCurve: [{photoId, intensity}], confidence,
     generatedAt, expiresAt, durationSeconds}

Principles:
- Timestamps are ISO 8601 UTC with a trailing Z
- emotionalCurve is emitted in photoIds order; the reverse mapping
  re-validates the lockstep invariant through NarrativeArc itself
"""

from typing import Any, Dict

from .base import ArcType, Timestamp
from .events import CurvePoint, NarrativeArc


def arc_to_dict(arc: NarrativeArc) -> Dict[str, Any]:
    """Serialize an arc to its wire dict."""
    return {
        "id": arc.id,
        "type": arc.arc_type.value,
        "title": arc.title,
        "description": arc.description,
        "scopeKey": arc.scope_key,
        "photoIds": list(arc.photo_ids),
        "emotionalCurve": [
            {"photoId": point.photo_id, "intensity": point.intensity}
            for point in arc.emotional_curve
        ],
        "confidence": arc.confidence,
        "generatedAt": arc.generated_at.to_iso(),
        "expiresAt": arc.expires_at.to_iso(),
        "durationSeconds": arc.duration_seconds,
    }


def arc_from_dict(data: Dict[str, Any]) -> NarrativeArc:
    """
    Rebuild an arc from its wire dict.

    Raises KeyError, TypeError or ValueError on malformed input; callers
    decide what a malformed payload means for them.
    """
    return NarrativeArc(
        id=data["id"],
        arc_type=ArcType(data["type"]),
        title=data["title"],
        description=data["description"],
        scope_key=data["scopeKey"],
        photo_ids=tuple(data["photoIds"]),
        emotional_curve=tuple(
            CurvePoint(photo_id=point["photoId"], intensity=float(point["intensity"]))
            for point in data["emotionalCurve"]
        ),
        confidence=float(data["confidence"]),
        generated_at=Timestamp.from_iso(data["generatedAt"]),
        expires_at=Timestamp.from_iso(data["expiresAt"]),
        duration_seconds=float(data.get("durationSeconds", 0.0)),
    )

"""
Base Contracts and Shared Types

These are the foundational types used across all layers of the
story curation engine. All types here are IMMUTABLE and represent pure data.
No behavior beyond validation, no side effects, no dependencies.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses or closed enums
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Store adapter errors
    INVALID_PHOTO_RECORD = auto()
    STORE_UNAVAILABLE = auto()

    # Detection errors
    INSUFFICIENT_DATA = auto()
    DETECTOR_TIMEOUT = auto()
    DETECTOR_FAILED = auto()

    # Cache errors
    CACHE_CORRUPTION = auto()

    # Lookup errors
    STORY_NOT_FOUND = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, 'value', self.value.astimezone(timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat().replace('+00:00', 'Z')

    def __lt__(self, other: Timestamp) -> bool:
        return self.value < other.value

    def __le__(self, other: Timestamp) -> bool:
        return self.value <= other.value


@dataclass(frozen=True)
class TimeRange:
    """Immutable time range for season windows and queries."""
    start: Timestamp
    end: Timestamp

    def __post_init__(self):
        if self.start.value > self.end.value:
            raise ValueError("TimeRange start must be before or equal to end")

    def contains(self, timestamp: Timestamp) -> bool:
        return self.start.value <= timestamp.value <= self.end.value


# =============================================================================
# PHOTO VOCABULARY (Closed world - produced by the enrichment pipeline)
# =============================================================================

class PlayType(Enum):
    ATTACK = "attack"
    BLOCK = "block"
    DIG = "dig"
    SET = "set"
    SERVE = "serve"
    CELEBRATION = "celebration"
    TRANSITION = "transition"


class ActionIntensity(Enum):
    """How much action a frame captures, from low to peak."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PEAK = "peak"


class Emotion(Enum):
    TRIUMPH = "triumph"
    DETERMINATION = "determination"
    INTENSITY = "intensity"
    FOCUS = "focus"
    EXCITEMENT = "excitement"
    SERENITY = "serenity"


class TimeInGame(Enum):
    EARLY = "early"
    MIDDLE = "middle"
    FINAL = "final"
    OVERTIME = "overtime"


# =============================================================================
# ARC TYPES (Declaration order is the ranking tie-break)
# =============================================================================

class ArcType(Enum):
    """
    The six narrative patterns.

    Declaration order is significant: when two arcs share a confidence,
    the one whose type is declared first ranks first.
    """
    GAME_WINNING_RALLY = "game-winning-rally"
    PLAYER_HIGHLIGHT_REEL = "player-highlight-reel"
    SEASON_JOURNEY = "season-journey"
    COMEBACK_STORY = "comeback-story"
    TECHNICAL_EXCELLENCE = "technical-excellence"
    EMOTION_SPECTRUM = "emotion-spectrum"

    @property
    def ordinal(self) -> int:
        return list(ArcType).index(self)


# =============================================================================
# SCOPES
# =============================================================================

class ScopeKind(Enum):
    EVENT = "event"
    ATHLETE = "athlete"
    GLOBAL = "global"
    SEASON = "season"


GLOBAL_SCOPE_KEY = "global"


@dataclass(frozen=True)
class CurationScope:
    """
    Grouping key a generation request runs over.

    Use the constructors (`event`, `athlete`, `global_`, `season`);
    they validate that the identifying value is present.
    """
    kind: ScopeKind
    value: Optional[str] = None
    window: Optional[TimeRange] = None

    def __post_init__(self):
        if self.kind in (ScopeKind.EVENT, ScopeKind.ATHLETE):
            if not self.value or not isinstance(self.value, str):
                raise ValueError(f"{self.kind.value} scope requires a non-empty id")
        if self.kind == ScopeKind.SEASON and self.window is None:
            raise ValueError("season scope requires a time window")

    @staticmethod
    def event(event_id: str) -> CurationScope:
        return CurationScope(kind=ScopeKind.EVENT, value=event_id)

    @staticmethod
    def athlete(athlete_id: str) -> CurationScope:
        return CurationScope(kind=ScopeKind.ATHLETE, value=athlete_id)

    @staticmethod
    def global_() -> CurationScope:
        return CurationScope(kind=ScopeKind.GLOBAL)

    @staticmethod
    def season(window: TimeRange) -> CurationScope:
        return CurationScope(kind=ScopeKind.SEASON, window=window)

    @property
    def scope_key(self) -> str:
        if self.kind == ScopeKind.GLOBAL:
            return GLOBAL_SCOPE_KEY
        if self.kind == ScopeKind.SEASON:
            return f"season:{self.window.start.to_iso()}/{self.window.end.to_iso()}"
        return self.value

"""
Contracts Package

Immutable types shared by every layer. Layers import from here and
never from each other's implementations.
"""

from .base import (
    ErrorCode, Error, Result,
    Timestamp, TimeRange,
    PlayType, ActionIntensity, Emotion, TimeInGame,
    ArcType, ScopeKind, CurationScope, GLOBAL_SCOPE_KEY,
)
from .errors import (
    StoryEngineError, InvalidPhotoRecord, MetadataStoreUnavailable, CacheCorruption,
)
from .photos import Photo
from .mapper import arc_to_dict, arc_from_dict
from .events import (
    CandidateArc, CurvePoint, NarrativeArc, StoryResult,
    AuditEventType, AuditLogEntry, MetricPoint,
)

__all__ = [
    'ErrorCode', 'Error', 'Result',
    'Timestamp', 'TimeRange',
    'PlayType', 'ActionIntensity', 'Emotion', 'TimeInGame',
    'ArcType', 'ScopeKind', 'CurationScope', 'GLOBAL_SCOPE_KEY',
    'StoryEngineError', 'InvalidPhotoRecord', 'MetadataStoreUnavailable', 'CacheCorruption',
    'Photo',
    'arc_to_dict', 'arc_from_dict',
    'CandidateArc', 'CurvePoint', 'NarrativeArc', 'StoryResult',
    'AuditEventType', 'AuditLogEntry', 'MetricPoint',
]

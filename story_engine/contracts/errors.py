"""
Boundary Exceptions

Errors are data everywhere inside the engine (see `ErrorCode` / `Error`).
The exceptions below exist only where a collaborator can fail mid-call:
the store adapter reading records and the cache decoding entries.
Each one converts to an `Error` record where it is caught.
"""

from __future__ import annotations
from typing import Optional, Tuple

from .base import Error, ErrorCode, Timestamp


class StoryEngineError(Exception):
    """Base class for every exception the engine raises at a boundary."""

    code: ErrorCode = ErrorCode.DETECTOR_FAILED

    def __init__(self, message: str, context: Tuple[Tuple[str, str], ...] = ()):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_error(self) -> Error:
        return Error(
            code=self.code,
            message=self.message,
            timestamp=Timestamp.now().value,
            context=self.context
        )


class InvalidPhotoRecord(StoryEngineError):
    """A required field is missing or malformed on a single photo record."""

    code = ErrorCode.INVALID_PHOTO_RECORD

    def __init__(self, message: str, photo_id: Optional[str] = None, field_name: Optional[str] = None):
        context = []
        if photo_id:
            context.append(("photo_id", photo_id))
        if field_name:
            context.append(("field", field_name))
        super().__init__(message, tuple(context))
        self.photo_id = photo_id
        self.field_name = field_name


class MetadataStoreUnavailable(StoryEngineError):
    """The store adapter query failed or timed out."""

    code = ErrorCode.STORE_UNAVAILABLE


class CacheCorruption(StoryEngineError):
    """A stored cache entry could not be deserialized."""

    code = ErrorCode.CACHE_CORRUPTION

"""
Metadata Store Adapter

RESPONSIBILITY: Read-only query interface over the tagged-photo collection
ALLOWED INPUTS: Raw photo records from the enrichment pipeline
OUTPUTS: Immutable tuples of validated Photo contracts

WHAT THIS LAYER MUST NOT DO:
============================
- Detect narrative patterns or rank photos
- Cache generated arcs (that's the cache layer's job)
- Hand malformed records to any other layer

BOUNDARY ENFORCEMENT:
=====================
- Raw records are validated on the way in; invalid ones are skipped
  with a logged warning and never stored
- Queries return immutable snapshots (tuples), ordered chronologically
- Failures to reach the underlying data surface as MetadataStoreUnavailable
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple
import json
import logging
import os
import threading

from ..contracts.base import Timestamp, TimeRange, GLOBAL_SCOPE_KEY
from ..contracts.errors import InvalidPhotoRecord, MetadataStoreUnavailable
from ..contracts.photos import Photo
from .records import parse_photo_record, photo_to_record

logger = logging.getLogger(__name__)


# =============================================================================
# QUERY FILTER
# =============================================================================

@dataclass(frozen=True)
class PhotoFilter:
    """Optional narrowing for global queries."""
    window: Optional[TimeRange] = None
    event_ids: Optional[Tuple[str, ...]] = None

    def matches(self, photo: Photo) -> bool:
        if self.window and not self.window.contains(photo.captured_at):
            return False
        if self.event_ids is not None and photo.event_id not in self.event_ids:
            return False
        return True


# =============================================================================
# STORE INTERFACE (Dependency Inversion)
# =============================================================================

class MetadataStore:
    """
    Abstract metadata store interface.

    Implementations can sit on any storage technology; the engine only
    relies on these four read operations.
    """

    def query_photos_by_event(self, event_id: str) -> Tuple[Photo, ...]:
        """All photos of one event."""
        raise NotImplementedError

    def query_photos_by_athlete(self, athlete_id: str) -> Tuple[Photo, ...]:
        """All photos tagged with one athlete."""
        raise NotImplementedError

    def query_all_photos(self, photo_filter: Optional[PhotoFilter] = None) -> Tuple[Photo, ...]:
        """All photos, optionally filtered (global scope)."""
        raise NotImplementedError

    def changed_since(self, scope_key: str, timestamp: Timestamp) -> bool:
        """True when any photo in the scope changed after `timestamp`."""
        raise NotImplementedError


# =============================================================================
# IN-MEMORY STORE (Reference Implementation)
# =============================================================================

@dataclass(frozen=True)
class _ChangeRecord:
    changed_at: Timestamp
    event_id: str
    athlete_id: Optional[str]


class InMemoryMetadataStore(MetadataStore):
    """
    In-memory implementation of the metadata store.

    Photos live in one id-addressed table. Every write appends to a change
    log so `changed_since` can answer per scope. Suitable for tests and
    for serving an exported photo table.
    """

    def __init__(
        self,
        photos: Iterable[Photo] = (),
        clock: Callable[[], Timestamp] = Timestamp.now
    ):
        self._clock = clock
        self._photos: Dict[str, Photo] = {}
        self._changes: List[_ChangeRecord] = []
        for photo in photos:
            self._photos[photo.id] = photo

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping],
        clock: Callable[[], Timestamp] = Timestamp.now
    ) -> InMemoryMetadataStore:
        """Build a store from raw records, skipping invalid ones."""
        return cls(photos=load_valid_photos(records), clock=clock)

    # -------------------------------------------------------------------------
    # Writes (enrichment side)
    # -------------------------------------------------------------------------

    def upsert(self, photo: Photo):
        """Insert or replace a photo and record the change."""
        now = self._clock()
        previous = self._photos.get(photo.id)
        if previous is not None and previous != photo:
            self._changes.append(_ChangeRecord(now, previous.event_id, previous.athlete_id))
        if previous != photo:
            self._changes.append(_ChangeRecord(now, photo.event_id, photo.athlete_id))
        self._photos[photo.id] = photo

    def remove(self, photo_id: str) -> bool:
        photo = self._photos.pop(photo_id, None)
        if photo is None:
            return False
        self._changes.append(_ChangeRecord(self._clock(), photo.event_id, photo.athlete_id))
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query_photos_by_event(self, event_id: str) -> Tuple[Photo, ...]:
        return self._snapshot(p for p in self._photos.values() if p.event_id == event_id)

    def query_photos_by_athlete(self, athlete_id: str) -> Tuple[Photo, ...]:
        return self._snapshot(p for p in self._photos.values() if p.athlete_id == athlete_id)

    def query_all_photos(self, photo_filter: Optional[PhotoFilter] = None) -> Tuple[Photo, ...]:
        if photo_filter is None:
            return self._snapshot(self._photos.values())
        return self._snapshot(p for p in self._photos.values() if photo_filter.matches(p))

    def changed_since(self, scope_key: str, timestamp: Timestamp) -> bool:
        is_global = scope_key == GLOBAL_SCOPE_KEY or scope_key.startswith("season:")
        for change in reversed(self._changes):
            if change.changed_at.value <= timestamp.value:
                break
            if is_global or scope_key in (change.event_id, change.athlete_id):
                return True
        return False

    @property
    def photo_count(self) -> int:
        return len(self._photos)

    def _snapshot(self, photos: Iterable[Photo]) -> Tuple[Photo, ...]:
        return tuple(sorted(photos, key=Photo.chronological_key))


# =============================================================================
# JSONL STORE (Exported photo table on disk)
# =============================================================================

class JsonlMetadataStore(InMemoryMetadataStore):
    """
    Store backed by a JSONL export of the photo table (one record per line).

    The file is read on construction, on `reload()`, and before any query
    once its modification time moves; photos whose content changed between
    reads are recorded as changes so dependent scopes go stale.
    """

    def __init__(self, path: str, clock: Callable[[], Timestamp] = Timestamp.now):
        super().__init__(clock=clock)
        self._path = path
        self._mtime: Optional[float] = None
        self._lock = threading.RLock()
        self.reload()

    @property
    def path(self) -> str:
        return self._path

    def reload(self) -> int:
        """Re-read the export. Returns the number of photos loaded."""
        with self._lock:
            mtime = self._stat_mtime()
            records = self._read_records()
            fresh = {photo.id: photo for photo in load_valid_photos(records)}

            for photo_id in list(self._photos):
                if photo_id not in fresh:
                    self.remove(photo_id)
            for photo in fresh.values():
                self.upsert(photo)

            self._mtime = mtime
            return len(fresh)

    def query_photos_by_event(self, event_id: str) -> Tuple[Photo, ...]:
        with self._lock:
            self._reload_if_modified()
            return super().query_photos_by_event(event_id)

    def query_photos_by_athlete(self, athlete_id: str) -> Tuple[Photo, ...]:
        with self._lock:
            self._reload_if_modified()
            return super().query_photos_by_athlete(athlete_id)

    def query_all_photos(self, photo_filter: Optional[PhotoFilter] = None) -> Tuple[Photo, ...]:
        with self._lock:
            self._reload_if_modified()
            return super().query_all_photos(photo_filter)

    def changed_since(self, scope_key: str, timestamp: Timestamp) -> bool:
        with self._lock:
            self._reload_if_modified()
            return super().changed_since(scope_key, timestamp)

    def _reload_if_modified(self):
        if self._stat_mtime() != self._mtime:
            logger.info("Photo export %s modified; reloading", self._path)
            self.reload()

    def _stat_mtime(self) -> float:
        try:
            return os.stat(self._path).st_mtime
        except OSError as e:
            raise MetadataStoreUnavailable(f"photo export not readable: {self._path}: {e}")

    def _read_records(self) -> List[Mapping]:
        if not os.path.exists(self._path):
            raise MetadataStoreUnavailable(f"photo export not found: {self._path}")

        records = []
        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                for line_number, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError as e:
                        logger.warning("Skipping unreadable line %d in %s: %s", line_number, self._path, e)
        except OSError as e:
            raise MetadataStoreUnavailable(f"failed to read photo export {self._path}: {e}")
        return records


# =============================================================================
# HELPERS
# =============================================================================

def load_valid_photos(records: Iterable[Mapping]) -> List[Photo]:
    """Validate raw records, logging and skipping the invalid ones."""
    photos = []
    for record in records:
        try:
            photos.append(parse_photo_record(record))
        except InvalidPhotoRecord as e:
            logger.warning("Skipping invalid photo record %s: %s", e.photo_id or "<no id>", e.message)
    return photos


__all__ = [
    'PhotoFilter',
    'MetadataStore',
    'InMemoryMetadataStore',
    'JsonlMetadataStore',
    'load_valid_photos',
    'parse_photo_record',
    'photo_to_record',
]

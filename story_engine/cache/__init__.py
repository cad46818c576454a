"""
Story Cache

RESPONSIBILITY: Memoize generated arcs per (arc type, scope key)
ALLOWED INPUTS: CacheEntry values produced by the orchestrator
OUTPUTS: Fresh CacheEntry values (an arc, or a "no arc" tombstone)

WHAT THIS LAYER MUST NOT DO:
============================
- Run detectors or decide what an arc contains
- Cache failed computations
- Serve an entry past its expiry

BOUNDARY ENFORCEMENT:
=====================
- At most one in-flight computation per key; concurrent misses share it
- Reads of a populated entry take no lock
- An entry that fails to decode is dropped and treated as a miss
- Invalidating a scope also discards any computation already in flight
  for it, so a stale result can never land after the invalidation
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import json
import logging

from ..contracts.base import ArcType, Timestamp
from ..contracts.errors import CacheCorruption
from ..contracts.events import NarrativeArc
from ..contracts.mapper import arc_from_dict, arc_to_dict
from .backends import CacheBackend, FileCacheBackend, InMemoryCacheBackend

logger = logging.getLogger(__name__)


# =============================================================================
# ENTRIES
# =============================================================================

@dataclass(frozen=True)
class CacheEntry:
    """
    IMMUTABLE cached outcome of one detector over one scope.

    `arc` is None for a tombstone: the pattern was evaluated and is absent.
    """
    arc_type: ArcType
    scope_key: str
    generated_at: Timestamp
    expires_at: Timestamp
    arc: Optional[NarrativeArc] = None

    @property
    def is_tombstone(self) -> bool:
        return self.arc is None

    def is_expired(self, now: Timestamp) -> bool:
        return now.value >= self.expires_at.value


def cache_key(arc_type: ArcType, scope_key: str) -> str:
    return f"{arc_type.value}|{scope_key}"


def split_cache_key(key: str) -> Tuple[ArcType, str]:
    arc_type, scope_key = key.split("|", 1)
    return ArcType(arc_type), scope_key


def encode_entry(entry: CacheEntry) -> str:
    return json.dumps({
        "arcType": entry.arc_type.value,
        "scopeKey": entry.scope_key,
        "generatedAt": entry.generated_at.to_iso(),
        "expiresAt": entry.expires_at.to_iso(),
        "arc": arc_to_dict(entry.arc) if entry.arc else None,
    }, sort_keys=True)


def decode_entry(payload: str) -> CacheEntry:
    """Decode a stored payload. Raises CacheCorruption on any failure."""
    try:
        data = json.loads(payload)
        return CacheEntry(
            arc_type=ArcType(data["arcType"]),
            scope_key=data["scopeKey"],
            generated_at=Timestamp.from_iso(data["generatedAt"]),
            expires_at=Timestamp.from_iso(data["expiresAt"]),
            arc=arc_from_dict(data["arc"]) if data["arc"] is not None else None,
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise CacheCorruption(f"cache entry failed to decode: {e}")


# =============================================================================
# CONFIGURATION & STATS
# =============================================================================

@dataclass
class StoryCacheConfig:
    """Configuration for the story cache."""
    ttl_seconds: float = 86400.0  # daily refresh
    backend_type: str = "memory"  # "memory" or "file"
    cache_dir: Optional[str] = None

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)


@dataclass
class CacheStats:
    """Running counters. Mutated only by the cache itself."""
    hits: int = 0
    tombstone_hits: int = 0
    misses: int = 0
    coalesced: int = 0
    corruptions: int = 0
    expirations: int = 0
    invalidations: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


# =============================================================================
# STORY CACHE
# =============================================================================

class StoryCache:
    """
    TTL cache with tombstones and single-flight misses.

    Single-flight: the first miss for a key starts one shared task; every
    caller awaits it through `asyncio.shield`, so a caller abandoned at its
    deadline never cancels the computation the others are waiting on.
    """

    def __init__(
        self,
        config: Optional[StoryCacheConfig] = None,
        backend: Optional[CacheBackend] = None,
        clock: Callable[[], Timestamp] = Timestamp.now
    ):
        self._config = config or StoryCacheConfig()
        self._backend = backend or self._create_backend()
        self._clock = clock
        self._inflight: Dict[str, asyncio.Future] = {}
        self._epochs: Dict[str, int] = {}
        self._arc_index: Dict[str, str] = {}
        self._stats = CacheStats()

    def _create_backend(self) -> CacheBackend:
        """Create cache backend based on configuration."""
        if self._config.backend_type == "file" and self._config.cache_dir:
            return FileCacheBackend(self._config.cache_dir)
        return InMemoryCacheBackend()

    @property
    def ttl(self) -> timedelta:
        return self._config.ttl

    @property
    def stats(self) -> CacheStats:
        return self._stats

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def peek(self, arc_type: ArcType, scope_key: str) -> Optional[CacheEntry]:
        """Fresh entry for a key, or None. Drops expired and corrupt entries."""
        return self._read(cache_key(arc_type, scope_key))

    def get_by_arc_id(self, arc_id: str) -> Optional[NarrativeArc]:
        """Fresh arc with this id, or None."""
        key = self._arc_index.get(arc_id)
        if key is None:
            # Index is process-local; a persistent backend may still hold it
            key = self._scan_for_arc(arc_id)
            if key is None:
                return None

        entry = self._read(key)
        if entry is None or entry.arc is None or entry.arc.id != arc_id:
            self._arc_index.pop(arc_id, None)
            return None
        return entry.arc

    def entries_for(self, scope_key: str) -> List[CacheEntry]:
        """Every stored entry of a scope, expired ones included."""
        entries = []
        for key in self._backend.keys():
            if self._scope_of(key) != scope_key:
                continue
            try:
                entry = self._load(key)
            except CacheCorruption as e:
                self._drop_corrupt(key, e)
                continue
            if entry is not None:
                entries.append(entry)
        return entries

    def scope_keys(self) -> Set[str]:
        """Scopes with at least one stored entry."""
        scopes = set()
        for key in self._backend.keys():
            scope = self._scope_of(key)
            if scope is not None:
                scopes.add(scope)
        return scopes

    # -------------------------------------------------------------------------
    # Get-or-compute (single-flight)
    # -------------------------------------------------------------------------

    async def get_or_compute(
        self,
        arc_type: ArcType,
        scope_key: str,
        compute: Callable[[], Awaitable[CacheEntry]]
    ) -> CacheEntry:
        """
        Return the fresh entry for the key, computing it at most once.

        Exceptions from `compute` reach every waiter and nothing is cached.
        """
        key = cache_key(arc_type, scope_key)

        entry = self._read(key)
        if entry is not None:
            return entry

        task = self._inflight.get(key)
        if task is None:
            self._stats.misses += 1
            task = asyncio.ensure_future(self._fill(key, scope_key, compute))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            self._stats.coalesced += 1

        return await asyncio.shield(task)

    async def _fill(
        self,
        key: str,
        scope_key: str,
        compute: Callable[[], Awaitable[CacheEntry]]
    ) -> CacheEntry:
        epoch = self._epochs.get(scope_key, 0)
        try:
            entry = await compute()
            if self._epochs.get(scope_key, 0) == epoch:
                self.put(entry)
            else:
                logger.debug("Discarding result for %s: scope invalidated mid-flight", key)
            return entry
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put(self, entry: CacheEntry):
        key = cache_key(entry.arc_type, entry.scope_key)
        self._backend.put(key, encode_entry(entry))
        if entry.arc is not None:
            self._arc_index[entry.arc.id] = key

    def invalidate(self, scope_key: str) -> int:
        """Drop every entry of a scope. Returns the number dropped."""
        self._epochs[scope_key] = self._epochs.get(scope_key, 0) + 1

        dropped = 0
        for key in self._backend.keys():
            if self._scope_of(key) == scope_key and self._backend.delete(key):
                dropped += 1
        for key in [k for k in self._inflight if self._scope_of(k) == scope_key]:
            del self._inflight[key]
        for arc_id in [a for a, k in self._arc_index.items() if self._scope_of(k) == scope_key]:
            del self._arc_index[arc_id]

        self._stats.invalidations += 1
        logger.debug("Invalidated %d cache entries for scope %s", dropped, scope_key)
        return dropped

    def evict_expired(self) -> int:
        """Delete every expired or unreadable entry. Returns the number removed."""
        removed = 0
        now = self._clock()
        for key in self._backend.keys():
            try:
                entry = self._load(key)
            except CacheCorruption as e:
                self._drop_corrupt(key, e)
                removed += 1
                continue
            if entry is not None and entry.is_expired(now) and self._backend.delete(key):
                self._stats.expirations += 1
                removed += 1
        return removed

    def release_scope(self, scope_key: str):
        """Forget a scope's invalidation epoch when nothing is in flight for it."""
        if any(self._scope_of(k) == scope_key for k in self._inflight):
            return
        self._epochs.pop(scope_key, None)

    def clear(self):
        for key in self._backend.keys():
            self._backend.delete(key)
        self._inflight.clear()
        self._arc_index.clear()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load(self, key: str) -> Optional[CacheEntry]:
        payload = self._backend.get(key)
        if payload is None:
            return None
        return decode_entry(payload)

    def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            entry = self._load(key)
        except CacheCorruption as e:
            self._drop_corrupt(key, e)
            return None
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            self._stats.expirations += 1
            self._backend.delete(key)
            return None

        if entry.is_tombstone:
            self._stats.tombstone_hits += 1
        else:
            self._stats.hits += 1
            self._arc_index[entry.arc.id] = key
        return entry

    def _drop_corrupt(self, key: str, error: CacheCorruption):
        logger.warning("Dropping corrupt cache entry %s: %s", key, error.message)
        self._stats.corruptions += 1
        self._backend.delete(key)

    def _scan_for_arc(self, arc_id: str) -> Optional[str]:
        for key in self._backend.keys():
            try:
                payload = self._backend.get(key)
            except CacheCorruption as e:
                self._drop_corrupt(key, e)
                continue
            if payload is not None and arc_id in payload:
                return key
        return None

    @staticmethod
    def _scope_of(key: str) -> Optional[str]:
        try:
            return split_cache_key(key)[1]
        except ValueError:
            return None


def _consume_exception(task: asyncio.Future):
    # Waiters that were abandoned never retrieve the exception themselves
    if not task.cancelled():
        task.exception()


__all__ = [
    'CacheEntry',
    'CacheBackend',
    'InMemoryCacheBackend',
    'FileCacheBackend',
    'StoryCache',
    'StoryCacheConfig',
    'CacheStats',
    'cache_key',
    'encode_entry',
    'decode_entry',
]

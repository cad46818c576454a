"""
Curation Orchestrator

This module provides the unified interface for generating, looking up and
invalidating narrative arcs while keeping every layer behind its contract.

LAYER FLOW:
===========
1. Store: scope -> immutable photo snapshot (fetched once per request)
2. Detection: snapshot -> CandidateArc per applicable detector
3. Scoring: CandidateArc -> confidence
4. Assembly: CandidateArc + confidence -> NarrativeArc
5. Cache: memoizes each (arc type, scope) outcome, tombstones included
6. Observability: records every step

DESIGN PRINCIPLES:
==================
1. One task per applicable detector, joined under a single deadline
2. A detector that times out or raises never takes its siblings down
3. Returned order depends only on confidence and arc type, never on
   completion order
4. The Story Cache is the only shared mutable state
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple
import asyncio
import logging
import os
import threading
import time

from .assembly import ArcAssembler, AssemblyConfig
from .cache import CacheEntry, StoryCache, StoryCacheConfig
from .contracts.base import (
    ArcType, CurationScope, Error, ErrorCode, Result, ScopeKind, Timestamp
)
from .contracts.errors import MetadataStoreUnavailable
from .contracts.events import AuditEventType, NarrativeArc, StoryResult
from .contracts.photos import Photo
from .detection import DetectionConfig, Detector, DetectorRegistry, default_registry
from .observability import ObservabilityConfig, ObservabilityEngine
from .scoring import ConfidenceScorer, ScoringConfig
from .store import MetadataStore, PhotoFilter

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class OrchestratorConfig:
    """Configuration for request handling."""
    deadline_seconds: float = 3.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.05


ENV_PREFIX = "STORY_ENGINE_"


@dataclass
class EngineConfig:
    """Unified configuration for the whole engine."""
    detection: DetectionConfig = None
    scoring: ScoringConfig = None
    assembly: AssemblyConfig = None
    cache: StoryCacheConfig = None
    orchestrator: OrchestratorConfig = None
    observability: ObservabilityConfig = None
    photos_file: Optional[str] = None

    def __post_init__(self):
        self.detection = self.detection or DetectionConfig()
        self.scoring = self.scoring or ScoringConfig()
        self.assembly = self.assembly or AssemblyConfig()
        self.cache = self.cache or StoryCacheConfig()
        self.orchestrator = self.orchestrator or OrchestratorConfig()
        self.observability = self.observability or ObservabilityConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """
        Build a config from STORY_ENGINE_* variables.

        Unset variables keep their defaults. Malformed numbers raise
        ValueError naming the variable.
        """
        env = os.environ if environ is None else environ

        def number(name: str, default: float, cast=float):
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")

        orchestrator = OrchestratorConfig(
            deadline_seconds=number("DEADLINE_SECONDS", 3.0),
            store_retry_attempts=number("STORE_RETRY_ATTEMPTS", 3, int),
            store_retry_backoff_seconds=number("STORE_RETRY_BACKOFF_SECONDS", 0.05),
        )
        cache = StoryCacheConfig(
            ttl_seconds=number("CACHE_TTL_SECONDS", 86400.0),
            backend_type=env.get(ENV_PREFIX + "CACHE_BACKEND", "memory"),
            cache_dir=env.get(ENV_PREFIX + "CACHE_DIR"),
        )
        observability = ObservabilityConfig(
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "INFO"),
        )
        return EngineConfig(
            cache=cache,
            orchestrator=orchestrator,
            observability=observability,
            photos_file=env.get(ENV_PREFIX + "PHOTOS_FILE"),
        )


# =============================================================================
# REQUEST HELPERS
# =============================================================================

class DetectionAbandoned(Exception):
    """A detector observed its cancel flag and stopped early."""


class _SnapshotLoader:
    """
    Fetches a scope's photos at most once per request.

    Detector tasks that miss the cache share the same fetch; tasks served
    from the cache never trigger it.
    """

    def __init__(self, fetch: Callable[[], Awaitable[Tuple[Photo, ...]]]):
        self._fetch = fetch
        self._task: Optional[asyncio.Future] = None

    async def get(self) -> Tuple[Photo, ...]:
        if self._task is None:
            self._task = asyncio.ensure_future(self._fetch())
            self._task.add_done_callback(_consume_exception)
        return await asyncio.shield(self._task)


def _consume_exception(task: asyncio.Future):
    if not task.cancelled():
        task.exception()


@dataclass
class _DetectorRun:
    """Bookkeeping for one detector within one request."""
    detector: Detector
    cancel_event: threading.Event = field(default_factory=threading.Event)
    computed: bool = False


def _ms_since(started: float) -> float:
    return (time.perf_counter() - started) * 1000


# =============================================================================
# ENGINE
# =============================================================================

class StoryCurationEngine:
    """
    Generates ranked narrative arcs for a scope on demand.

    Exposed operations: `generate_stories`, `get_story`, `invalidate`
    and the scheduled `refresh_stale`.
    """

    def __init__(
        self,
        store: MetadataStore,
        config: Optional[EngineConfig] = None,
        registry: Optional[DetectorRegistry] = None,
        clock: Callable[[], Timestamp] = Timestamp.now,
        cache: Optional[StoryCache] = None
    ):
        self._config = config or EngineConfig()
        self._store = store
        self._clock = clock
        self._registry = registry or default_registry(self._config.detection)
        self._scorer = ConfidenceScorer(self._config.scoring, self._config.detection)
        self._assembler = ArcAssembler(self._config.assembly, self._config.detection)
        self._cache = cache or StoryCache(self._config.cache, clock=clock)
        self._observability = ObservabilityEngine(self._config.observability)

        # Scopes served so far, for the refresh job
        self._scopes: Dict[str, CurationScope] = {}
        # Cancel flags of detector runs still in flight, per scope key
        self._active: Dict[str, Set[threading.Event]] = {}

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def cache(self) -> StoryCache:
        return self._cache

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def generate_stories(self, scope: CurationScope) -> StoryResult:
        """
        Ranked arcs for a scope.

        Partial on timeout or detector failure (the types are listed);
        a failure result only when the store cannot serve the scope.
        """
        started = time.perf_counter()
        deadline = started + self._config.orchestrator.deadline_seconds
        scope_key = scope.scope_key
        self._scopes[scope_key] = scope

        try:
            await asyncio.wait_for(
                self._invalidate_if_changed(scope_key),
                timeout=self._config.orchestrator.deadline_seconds
            )
        except MetadataStoreUnavailable as e:
            return self._unavailable(scope_key, e, started)
        except asyncio.TimeoutError:
            logger.warning("Change check for %s exceeded the deadline; serving cached outcomes", scope_key)

        loader = _SnapshotLoader(lambda: self._fetch_snapshot(scope))
        runs = {
            detector.arc_type: _DetectorRun(detector)
            for detector in self._registry.applicable(scope.kind)
        }
        if not runs:
            return StoryResult(scope_key=scope_key, success=True, execution_time_ms=_ms_since(started))

        tasks = {
            asyncio.ensure_future(self._run_detector(run, scope_key, loader)): arc_type
            for arc_type, run in runs.items()
        }
        done, pending = await asyncio.wait(
            tasks.keys(), timeout=max(0.0, deadline - time.perf_counter())
        )

        timed_out: List[ArcType] = []
        for task in pending:
            arc_type = tasks[task]
            runs[arc_type].cancel_event.set()
            task.cancel()
            timed_out.append(arc_type)
            self._record_timeout(arc_type, scope_key)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        arcs: List[NarrativeArc] = []
        failed: List[ArcType] = []
        store_error: Optional[MetadataStoreUnavailable] = None
        for task in done:
            arc_type = tasks[task]
            error = task.exception()
            if error is None:
                entry = task.result()
                self._record_lookup(arc_type, runs[arc_type].computed)
                if entry.arc is not None:
                    arcs.append(entry.arc)
            elif isinstance(error, MetadataStoreUnavailable):
                store_error = error
            elif isinstance(error, DetectionAbandoned):
                timed_out.append(arc_type)
                self._record_timeout(arc_type, scope_key)
            else:
                failed.append(arc_type)
                self._record_failure(arc_type, scope_key, error)

        if store_error is not None:
            return self._unavailable(scope_key, store_error, started)

        arcs.sort(key=lambda arc: (-arc.confidence, arc.arc_type.ordinal))
        for arc in arcs:
            self._observability.collect_metric(
                "stories_generated_total", 1.0, {"arc_type": arc.arc_type.value}
            )

        elapsed = _ms_since(started)
        self._observability.collect_metric("generation_duration_ms", elapsed)
        self._observability.log_audit(
            action="generate_stories",
            entity_id=scope_key,
            outcome="partial" if timed_out or failed else "success",
            details=f"arcs={len(arcs)} timed_out={len(timed_out)} failed={len(failed)}",
            layer="engine",
            event_type=AuditEventType.GENERATION
        )

        return StoryResult(
            scope_key=scope_key,
            success=True,
            arcs=tuple(arcs),
            timed_out=tuple(sorted(timed_out, key=lambda t: t.ordinal)),
            failed=tuple(sorted(failed, key=lambda t: t.ordinal)),
            execution_time_ms=elapsed
        )

    async def _run_detector(
        self,
        run: _DetectorRun,
        scope_key: str,
        loader: _SnapshotLoader
    ) -> CacheEntry:
        async def compute() -> CacheEntry:
            run.computed = True
            return await self._compute(run, scope_key, loader)

        return await self._cache.get_or_compute(run.detector.arc_type, scope_key, compute)

    async def _compute(
        self,
        run: _DetectorRun,
        scope_key: str,
        loader: _SnapshotLoader
    ) -> CacheEntry:
        """Detect, score and assemble one arc type for a scope."""
        detector = run.detector
        arc_type = detector.arc_type
        self._active.setdefault(scope_key, set()).add(run.cancel_event)
        try:
            photos = await loader.get()

            started = time.perf_counter()
            candidate = await asyncio.to_thread(detector.detect, photos, run.cancel_event)
            self._observability.collect_metric(
                "detector_duration_ms", _ms_since(started), {"arc_type": arc_type.value}
            )
            if run.cancel_event.is_set():
                raise DetectionAbandoned(f"{arc_type.value} abandoned for {scope_key}")
        finally:
            self._active.get(scope_key, set()).discard(run.cancel_event)

        generated_at = self._clock()
        expires_at = Timestamp(value=generated_at.value + self._cache.ttl)

        if candidate is None:
            self._observability.log_audit(
                action="detect",
                entity_id=scope_key,
                outcome=ErrorCode.INSUFFICIENT_DATA.name,
                details=arc_type.value,
                layer="detection",
                event_type=AuditEventType.DETECTION
            )
            return CacheEntry(
                arc_type=arc_type,
                scope_key=scope_key,
                generated_at=generated_at,
                expires_at=expires_at
            )

        confidence = self._scorer.score_candidate(candidate)
        arc = self._assembler.assemble(
            candidate, scope_key, confidence, generated_at, self._cache.ttl
        )
        self._observability.log_audit(
            action="detect",
            entity_id=arc.id,
            details=f"{arc_type.value} photos={len(arc.photo_ids)} confidence={confidence}",
            layer="detection",
            event_type=AuditEventType.DETECTION
        )
        return CacheEntry(
            arc_type=arc_type,
            scope_key=scope_key,
            generated_at=generated_at,
            expires_at=arc.expires_at,
            arc=arc
        )

    # =========================================================================
    # STORE ACCESS
    # =========================================================================

    async def _fetch_snapshot(self, scope: CurationScope) -> Tuple[Photo, ...]:
        if scope.kind == ScopeKind.EVENT:
            query, args = self._store.query_photos_by_event, (scope.value,)
        elif scope.kind == ScopeKind.ATHLETE:
            query, args = self._store.query_photos_by_athlete, (scope.value,)
        elif scope.kind == ScopeKind.SEASON:
            query, args = self._store.query_all_photos, (PhotoFilter(window=scope.window),)
        else:
            query, args = self._store.query_all_photos, ()

        photos = await self._call_store(query, *args)
        self._observability.log_audit(
            action="query_photos",
            entity_id=scope.scope_key,
            details=f"photos={len(photos)}",
            layer="store",
            event_type=AuditEventType.STORE
        )
        return tuple(photos)

    async def _call_store(self, query: Callable, *args):
        """Run a store query off the event loop, retrying with exponential backoff."""
        attempts = max(1, self._config.orchestrator.store_retry_attempts)
        backoff = self._config.orchestrator.store_retry_backoff_seconds

        for attempt in range(attempts):
            try:
                return await asyncio.to_thread(query, *args)
            except MetadataStoreUnavailable as e:
                if attempt == attempts - 1:
                    raise
                delay = backoff * (2 ** attempt)
                logger.warning(
                    "Metadata store unavailable (attempt %d/%d): %s; retrying in %.3fs",
                    attempt + 1, attempts, e.message, delay
                )
                self._observability.collect_metric("store_retries_total", 1.0)
                await asyncio.sleep(delay)

    async def _invalidate_if_changed(self, scope_key: str):
        entries = self._cache.entries_for(scope_key)
        if not entries:
            return

        oldest = min((entry.generated_at for entry in entries), key=lambda t: t.value)
        if await self._call_store(self._store.changed_since, scope_key, oldest):
            logger.debug("Photos changed for %s since %s", scope_key, oldest.to_iso())
            self._invalidate_key(scope_key, reason="changed")

    # =========================================================================
    # LOOKUP & INVALIDATION
    # =========================================================================

    def get_story(self, arc_id: str) -> Result:
        """The cached arc with this id, or a STORY_NOT_FOUND failure."""
        arc = self._cache.get_by_arc_id(arc_id)
        if arc is None:
            return Result.failure(Error(
                code=ErrorCode.STORY_NOT_FOUND,
                message=f"No cached story with id {arc_id}",
                timestamp=self._clock().value,
                context=(("arc_id", arc_id),)
            ))
        return Result.success(arc)

    def invalidate(self, scope: CurationScope):
        """Drop every cached outcome for a scope."""
        self._invalidate_key(scope.scope_key, reason="requested")

    def _invalidate_key(self, scope_key: str, reason: str):
        for cancel_event in self._active.pop(scope_key, set()):
            cancel_event.set()
        dropped = self._cache.invalidate(scope_key)
        self._observability.log_audit(
            action="invalidate",
            entity_id=scope_key,
            details=f"reason={reason} dropped={dropped}",
            layer="cache",
            event_type=AuditEventType.CACHE
        )

    # =========================================================================
    # SCHEDULED REFRESH
    # =========================================================================

    async def refresh_stale(self) -> List[StoryResult]:
        """
        Regenerate every known scope whose cached outcomes expired, are
        incomplete, or whose photos changed since they were generated.

        Scopes with nothing cached any more are forgotten rather than
        regenerated, and expired entries of scopes nobody asks for are
        swept from the cache.
        """
        results = []
        now = self._clock()
        for scope_key in sorted(self._scopes):
            scope = self._scopes[scope_key]
            entries = self._cache.entries_for(scope_key)
            if not entries:
                del self._scopes[scope_key]
                self._cache.release_scope(scope_key)
                continue
            expected = len(self._registry.applicable(scope.kind))

            stale = len(entries) < expected or any(e.is_expired(now) for e in entries)
            if not stale:
                oldest = min((e.generated_at for e in entries), key=lambda t: t.value)
                try:
                    stale = await self._call_store(self._store.changed_since, scope_key, oldest)
                except MetadataStoreUnavailable as e:
                    results.append(self._unavailable(scope_key, e, time.perf_counter()))
                    continue
            if stale:
                results.append(await self.generate_stories(scope))

        swept = self._cache.evict_expired()
        logger.info(
            "Refreshed %d of %d known scopes, swept %d expired entries",
            len(results), len(self._scopes), swept
        )
        return results

    # =========================================================================
    # OBSERVABILITY HELPERS
    # =========================================================================

    def _record_lookup(self, arc_type: ArcType, computed: bool):
        metric = "cache_misses_total" if computed else "cache_hits_total"
        self._observability.collect_metric(metric, 1.0, {"arc_type": arc_type.value})

    def _record_timeout(self, arc_type: ArcType, scope_key: str):
        logger.warning("%s detector timed out for %s", arc_type.value, scope_key)
        self._observability.collect_metric(
            "detector_timeouts_total", 1.0, {"arc_type": arc_type.value}
        )
        self._observability.log_audit(
            action="detect",
            entity_id=scope_key,
            outcome=ErrorCode.DETECTOR_TIMEOUT.name,
            details=arc_type.value,
            layer="detection",
            event_type=AuditEventType.ERROR
        )

    def _record_failure(self, arc_type: ArcType, scope_key: str, error: BaseException):
        logger.warning(
            "%s detector failed for %s: %r", arc_type.value, scope_key, error,
            exc_info=(type(error), error, error.__traceback__)
        )
        self._observability.collect_metric(
            "detector_failures_total", 1.0, {"arc_type": arc_type.value}
        )
        self._observability.log_audit(
            action="detect",
            entity_id=scope_key,
            outcome=ErrorCode.DETECTOR_FAILED.name,
            details=f"{arc_type.value}: {error}",
            layer="detection",
            event_type=AuditEventType.ERROR
        )

    def _unavailable(
        self,
        scope_key: str,
        error: MetadataStoreUnavailable,
        started: float
    ) -> StoryResult:
        logger.error("Metadata store unavailable for %s: %s", scope_key, error.message)
        self._observability.log_audit(
            action="generate_stories",
            entity_id=scope_key,
            outcome=ErrorCode.STORE_UNAVAILABLE.name,
            details=error.message,
            layer="engine",
            event_type=AuditEventType.ERROR
        )
        return StoryResult.unavailable(
            scope_key,
            error.to_error().with_context("scope_key", scope_key),
            execution_time_ms=_ms_since(started)
        )


__all__ = [
    'OrchestratorConfig',
    'EngineConfig',
    'StoryCurationEngine',
    'DetectionAbandoned',
]

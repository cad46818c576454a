"""
Story Curation Engine

Finds narrative arcs in a collection of AI-tagged sports photos and serves
them, ranked by confidence, to the gallery's story viewer. Each layer
communicates only through explicit contracts, never through shared
mutable state.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable Photo, CandidateArc, NarrativeArc, StoryResult, Error
   - Wire mapping shared by the cache and the API

2. METADATA STORE ADAPTER (store/)
   - Responsibility: Read-only photo queries, change tracking per scope
   - Outputs: Immutable, chronologically ordered photo snapshots
   - MUST NOT: Hand malformed records to any other layer

3. DETECTION (detection/)
   - Responsibility: Six independent narrative-pattern detectors
   - Outputs: CandidateArc or nothing
   - MUST NOT: Query the store, score, or order photos for display

4. SCORING & ASSEMBLY (scoring.py, assembly.py)
   - Responsibility: Confidence in [0, 1]; ordered photos + emotional curve
   - MUST NOT: Depend on wall-clock time or completion order

5. STORY CACHE (cache/)
   - Responsibility: TTL memoization per (arc type, scope), single-flight
   - MUST NOT: Cache failures or serve expired entries

6. ORCHESTRATION (engine.py)
   - Responsibility: Fan-out under a deadline, partial results, ranking

7. OBSERVABILITY (observability/)
   - Responsibility: Logging setup, audit trail, metrics
   - MUST NOT: Modify engine behavior

8. READ API (api/)
   - Responsibility: HTTP surface for the story viewer

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: contracts are frozen dataclasses
- Deterministic: identical photo sets produce identical ids, order and
  confidence
- Explicit errors: failures travel as Error records inside results
- Arcs reference photos by id only
"""

from .contracts import CurationScope, NarrativeArc, StoryResult
from .engine import EngineConfig, StoryCurationEngine

__all__ = [
    'CurationScope',
    'NarrativeArc',
    'StoryResult',
    'EngineConfig',
    'StoryCurationEngine',
]

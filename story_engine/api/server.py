"""
Story Curation Engine: Read API Server
======================================

Serves ranked narrative arcs to the gallery's story viewer.

Endpoints:
- GET  /health                     -> Service status
- GET  /api/v1/stories             -> Ranked arcs for one scope
- GET  /api/v1/stories/{arc_id}    -> One cached arc
- POST /api/v1/stories/invalidate  -> Drop cached arcs for one scope

Usage:
    uvicorn story_engine.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from ..contracts.base import CurationScope, TimeRange, Timestamp
from ..contracts.mapper import arc_to_dict
from ..engine import EngineConfig, StoryCurationEngine
from ..observability import configure_logging
from ..store import InMemoryMetadataStore, JsonlMetadataStore
from .mapper import map_result_to_dto

logger = logging.getLogger(__name__)


# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

# Global Engine Instance
engine_instance: Optional[StoryCurationEngine] = None


def build_engine(config: Optional[EngineConfig] = None) -> StoryCurationEngine:
    """Engine over the configured photo export, or an empty store."""
    config = config or EngineConfig.from_env()
    if config.photos_file:
        store = JsonlMetadataStore(config.photos_file)
    else:
        logger.warning("STORY_ENGINE_PHOTOS_FILE not set; serving an empty photo store")
        store = InMemoryMetadataStore()
    return StoryCurationEngine(store, config)


def create_app(engine: Optional[StoryCurationEngine] = None) -> FastAPI:
    """
    Build the API application.

    With no engine given, one is built from the environment on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        global engine_instance

        if engine is not None:
            engine_instance = engine
        else:
            config = EngineConfig.from_env()
            configure_logging(config.observability.log_level)
            engine_instance = build_engine(config)
        logger.info("Story engine initialized")

        yield

        logger.info("Shutting down story engine")
        engine_instance = None

    app = FastAPI(
        title="Story Curation Engine API",
        version="0.1.0",
        description="Narrative arcs over tagged sports photos",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_api_route("/health", health_check, methods=["GET"])
    app.add_api_route("/api/v1/stories", get_stories, methods=["GET"])
    app.add_api_route(
        "/api/v1/stories/invalidate", invalidate_stories, methods=["POST"], status_code=204
    )
    app.add_api_route("/api/v1/stories/{arc_id}", get_story, methods=["GET"])
    return app


def _engine() -> StoryCurationEngine:
    if not engine_instance:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine_instance


# =============================================================================
# REQUEST MODELS
# =============================================================================

class InvalidateRequest(BaseModel):
    """Exactly one of eventId, athleteId or global."""
    model_config = ConfigDict(populate_by_name=True)

    event_id: Optional[str] = Field(default=None, alias="eventId")
    athlete_id: Optional[str] = Field(default=None, alias="athleteId")
    global_scope: bool = Field(default=False, alias="global")


def resolve_scope(
    event_id: Optional[str] = None,
    athlete_id: Optional[str] = None,
    scope: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None
) -> CurationScope:
    """
    Resolve request parameters to exactly one scope.

    Raises HTTPException(400) when none or several are given.
    """
    chosen = [name for name, value in (
        ("event_id", event_id), ("athlete_id", athlete_id), ("scope", scope)
    ) if value]
    if len(chosen) != 1:
        raise HTTPException(
            status_code=400,
            detail="Specify exactly one of event_id, athlete_id or scope"
        )

    if event_id:
        return CurationScope.event(event_id)
    if athlete_id:
        return CurationScope.athlete(athlete_id)
    if scope == "global":
        return CurationScope.global_()
    if scope == "season":
        if not start or not end:
            raise HTTPException(status_code=400, detail="season scope requires start and end")
        try:
            window = TimeRange(start=Timestamp.from_iso(start), end=Timestamp.from_iso(end))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid season window: {e}")
        return CurationScope.season(window)
    raise HTTPException(status_code=400, detail=f"Unknown scope: {scope}")


# =============================================================================
# ENDPOINTS
# =============================================================================

async def health_check():
    """System status."""
    engine = _engine()
    return {"status": "online", "cachedScopes": len(engine.cache.scope_keys())}


async def get_stories(
    event_id: Optional[str] = None,
    athlete_id: Optional[str] = None,
    scope: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None
):
    """
    Ranked arcs for one scope.
    Partial results (timed-out or failed detectors) are still 200.
    """
    engine = _engine()
    curation_scope = resolve_scope(event_id, athlete_id, scope, start, end)

    result = await engine.generate_stories(curation_scope)
    if not result.success:
        raise HTTPException(
            status_code=503,
            detail=result.error.message if result.error else "Metadata store unavailable"
        )
    return map_result_to_dto(result)


async def get_story(arc_id: str):
    """One cached arc by id."""
    result = _engine().get_story(arc_id)
    if result.is_failure:
        raise HTTPException(status_code=404, detail=result.error.message)
    return arc_to_dict(result.value)


async def invalidate_stories(request: InvalidateRequest):
    """Drop every cached arc of one scope."""
    engine = _engine()
    curation_scope = resolve_scope(
        event_id=request.event_id,
        athlete_id=request.athlete_id,
        scope="global" if request.global_scope else None
    )
    engine.invalidate(curation_scope)
    return Response(status_code=204)


app = create_app()

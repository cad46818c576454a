"""
API Mapper
==========

Transforms engine results into response DTOs for the story viewer.
Arcs use the shared wire shape; nothing is smoothed or re-ranked here.
"""
from typing import Any, Dict

from ..contracts.events import StoryResult
from ..contracts.mapper import arc_to_dict


def map_result_to_dto(result: StoryResult) -> Dict[str, Any]:
    """Map a StoryResult to the StoriesResponse DTO."""
    return {
        "scopeKey": result.scope_key,
        "stories": [arc_to_dict(arc) for arc in result.arcs],
        "timedOut": [arc_type.value for arc_type in result.timed_out],
        "failed": [arc_type.value for arc_type in result.failed],
        "executionTimeMs": round(result.execution_time_ms, 3),
    }

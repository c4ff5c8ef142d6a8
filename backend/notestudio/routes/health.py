"""
NoteStudio Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and container probes.
How:   Probes the project store and the generation client, and reports how
       many generation tasks are in flight.

Status levels:
    - healthy:   store and Gemini reachable
    - degraded:  Gemini unavailable or circuit open (projects and drafts
                 still work, generation does not)
    - unhealthy: store unreachable
"""

import logging
import time

from fastapi import APIRouter, Depends

from notestudio import __version__
from notestudio.deps import get_generation_client, get_generation_manager, get_store
from notestudio.schemas.studio import HealthResponse
from notestudio.services.generation_manager import GenerationManager
from notestudio.services.llm_base import GenerationClient
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    store: ProjectStore = Depends(get_store),
    client: GenerationClient = Depends(get_generation_client),
    manager: GenerationManager = Depends(get_generation_manager),
) -> HealthResponse:
    """
    Runs lightweight checks only: SELECT 1 against the store and a model
    listing against Gemini. Neither spends generation quota.
    """
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    # ── Check Store ───────────────────────────────────────────────────────
    if not await store.health_check():
        db_status = "disconnected"
        overall = "unhealthy"

    # ── Check Gemini API ──────────────────────────────────────────────────
    breaker = getattr(client, "circuit_breaker", None)
    if breaker is not None and breaker.state == breaker.OPEN:
        gemini_status = "circuit_open"
    elif not await client.health_check():
        gemini_status = "unavailable"

    if gemini_status != "available" and overall != "unhealthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        running_tasks=manager.running_count,
        uptime_seconds=round(time.time() - _start_time, 2),
    )

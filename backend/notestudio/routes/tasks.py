"""
NoteStudio Backend — Generation Task Route Handlers
=====================================================

What:  HTTP face of the GenerationManager: start bulk/single tasks, cancel
       them, read the task list, and follow it live over server-sent events.
Who:   The studio screens. They start a task, keep the returned id, and
       re-render from the /api/tasks/stream snapshots.

Stream Protocol (GET /api/tasks/stream):
    event: tasks     data: {"tasks": [...]}   sent on connect and on every change
    : heartbeat                               comment line when idle
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from notestudio.config import settings
from notestudio.deps import get_generation_manager
from notestudio.exceptions import NotFoundError
from notestudio.schemas.studio import (
    ErrorResponse,
    RefineRequest,
    SingleTaskRequest,
    TaskListResponse,
    TaskResponse,
)
from notestudio.services.generation_manager import GenerationManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


def _task_list(tasks) -> TaskListResponse:
    return TaskListResponse(tasks=[task.to_response() for task in tasks])


def _require_task(manager: GenerationManager, task_id: str):
    task = manager.get(task_id)
    if task is None:
        raise NotFoundError(resource="task", resource_id=task_id)
    return task


@router.get("", response_model=TaskListResponse, summary="List all generation tasks")
async def list_tasks(
    manager: GenerationManager = Depends(get_generation_manager),
) -> TaskListResponse:
    return _task_list(manager.tasks)


@router.get("/stream", summary="Live task list over server-sent events")
async def stream_tasks(
    request: Request,
    manager: GenerationManager = Depends(get_generation_manager),
):
    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue()
        # Serialize at notification time; the task objects keep changing
        unsubscribe = manager.subscribe(
            lambda tasks: queue.put_nowait(_task_list(tasks).model_dump_json())
        )
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    payload = await asyncio.wait_for(
                        queue.get(), timeout=settings.sse_heartbeat_interval
                    )
                    yield {"event": "tasks", "data": payload}
                except asyncio.TimeoutError:
                    yield {"comment": "heartbeat"}
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())


@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    responses={404: {"description": "Unknown task", "model": ErrorResponse}},
    summary="Get one generation task",
)
async def get_task(
    task_id: str,
    manager: GenerationManager = Depends(get_generation_manager),
) -> TaskResponse:
    return _require_task(manager, task_id).to_response()


@router.post(
    "/bulk",
    status_code=202,
    response_model=TaskResponse,
    summary="Start a multi-style rewrite of a raw note",
)
async def start_bulk_task(
    body: RefineRequest,
    manager: GenerationManager = Depends(get_generation_manager),
) -> TaskResponse:
    task_id = manager.start_bulk_task(body.raw_note)
    return manager.get(task_id).to_response()


@router.post(
    "/single",
    status_code=202,
    response_model=TaskResponse,
    summary="Generate one more version into an existing project",
)
async def start_single_task(
    body: SingleTaskRequest,
    manager: GenerationManager = Depends(get_generation_manager),
) -> TaskResponse:
    task_id = manager.start_single_addition_task(body.core_note, body.project_id)
    return manager.get(task_id).to_response()


@router.post(
    "/{task_id}/cancel",
    response_model=TaskResponse,
    responses={404: {"description": "Unknown task", "model": ErrorResponse}},
    summary="Cancel a running task",
    description="Marks the task aborted immediately. Finished tasks are returned unchanged.",
)
async def cancel_task(
    task_id: str,
    manager: GenerationManager = Depends(get_generation_manager),
) -> TaskResponse:
    task = _require_task(manager, task_id)
    if manager.cancel(task_id):
        logger.info("Task %s cancelled by client", task_id)
    return task.to_response()

"""
NoteStudio Backend — Project Route Handlers
=============================================

What:  CRUD for saved projects plus the editor's "save all" and single
       version edits.
Who:   The studio's library and editor screens.

Write Semantics:
    POST /api/projects replaces the whole aggregate: versions missing from
    the payload are deleted. POST /api/projects/save goes through
    reconciliation, which swaps temporary version ids for permanent ones.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from notestudio.deps import get_store
from notestudio.exceptions import NotFoundError, ValidationError
from notestudio.schemas.studio import (
    ErrorResponse,
    SaveProjectRequest,
    SaveProjectResponse,
    StudioProject,
    SuccessResponse,
    VersionUpdate,
)
from notestudio.services.reconciliation import save_project_with_versions
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])


@router.get(
    "",
    response_model=List[StudioProject],
    summary="List saved projects, newest first",
)
async def list_projects(store: ProjectStore = Depends(get_store)) -> List[StudioProject]:
    return await store.list_projects()


@router.post(
    "",
    response_model=SuccessResponse,
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="Create or replace a project",
)
async def upsert_project(
    project: StudioProject,
    store: ProjectStore = Depends(get_store),
) -> SuccessResponse:
    await store.upsert_project(project)
    return SuccessResponse()


@router.post(
    "/save",
    status_code=201,
    response_model=SaveProjectResponse,
    responses={
        400: {"description": "No versions to save", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Save an editing session as a project",
    description=(
        "Persists the original note with all of its versions. Versions with "
        "temporary ids receive permanent ids; pass existing_project_id to "
        "overwrite a project instead of creating a new one."
    ),
)
async def save_project(
    body: SaveProjectRequest,
    store: ProjectStore = Depends(get_store),
) -> SaveProjectResponse:
    project = await save_project_with_versions(
        store,
        original_note=body.original_note,
        versions=body.versions,
        existing_project_id=body.existing_project_id,
    )
    logger.info("Saved project %s with %d version(s)", project.id, len(project.versions))
    return SaveProjectResponse(project_id=project.id)


@router.delete(
    "/{project_id}",
    response_model=SuccessResponse,
    summary="Delete a project and its versions",
)
async def delete_project(
    project_id: str,
    store: ProjectStore = Depends(get_store),
) -> SuccessResponse:
    await store.delete_project(project_id)
    return SuccessResponse()


@router.put(
    "/{project_id}/versions/{version_id}",
    response_model=SuccessResponse,
    responses={
        400: {"description": "Nothing to update", "model": ErrorResponse},
        404: {"description": "Version not found", "model": ErrorResponse},
    },
    summary="Edit the title or content of one version",
)
async def update_version(
    project_id: str,
    version_id: str,
    body: VersionUpdate,
    store: ProjectStore = Depends(get_store),
) -> SuccessResponse:
    """Empty strings count as "not provided"; at least one field must be set."""
    if not body.title and not body.content:
        raise ValidationError(message="Provide a title or content to update.")

    updated = await store.update_version_fields(
        project_id,
        version_id,
        title=body.title,
        content=body.content,
    )
    if not updated:
        raise NotFoundError(resource="version", resource_id=version_id)
    return SuccessResponse()

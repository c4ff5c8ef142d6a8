"""
NoteStudio Backend — Draft Route Handlers
===========================================

What:  Draft history for the capture screen: list, explicit save, autosave
       and delete.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from notestudio.deps import get_draft_service, get_store
from notestudio.schemas.studio import (
    AutosaveRequest,
    AutosaveResponse,
    Draft,
    SuccessResponse,
)
from notestudio.services.draft_service import DraftService
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drafts", tags=["Drafts"])


@router.get("", response_model=List[Draft], summary="List drafts, newest first")
async def list_drafts(store: ProjectStore = Depends(get_store)) -> List[Draft]:
    return await store.list_drafts()


@router.post("", response_model=SuccessResponse, summary="Create or replace a draft")
async def upsert_draft(
    draft: Draft,
    store: ProjectStore = Depends(get_store),
) -> SuccessResponse:
    await store.upsert_draft(draft)
    return SuccessResponse()


@router.post(
    "/autosave",
    response_model=AutosaveResponse,
    summary="Snapshot the current text unless it matches the latest draft",
)
async def autosave_draft(
    body: AutosaveRequest,
    drafts: DraftService = Depends(get_draft_service),
) -> AutosaveResponse:
    draft = await drafts.autosave(body.text)
    return AutosaveResponse(saved=draft is not None, draft=draft)


@router.delete("/{draft_id}", response_model=SuccessResponse, summary="Delete a draft")
async def delete_draft(
    draft_id: str,
    store: ProjectStore = Depends(get_store),
) -> SuccessResponse:
    await store.delete_draft(draft_id)
    return SuccessResponse()

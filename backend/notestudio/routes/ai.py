"""
NoteStudio Backend — Direct AI Route Handlers
===============================================

What:  Untracked proxies to the generation client: transcription, refine and
       single. The caller waits for the model's answer in the request.
Why:   Transcription is short and always awaited by the capture screen.
       Refine and single stay available for clients that do not use the
       task API (/api/tasks), which adds tracking and cancellation.
"""

import base64
import binascii
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from notestudio.deps import get_generation_client
from notestudio.exceptions import ValidationError
from notestudio.schemas.studio import (
    ContentVersion,
    ErrorResponse,
    RefineRequest,
    SingleRequest,
    TranscribeRequest,
    TranscribeResponse,
)
from notestudio.services.llm_base import GenerationClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI"])

_AI_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    503: {"description": "AI service unavailable", "model": ErrorResponse},
}


@router.post(
    "/transcribe",
    response_model=TranscribeResponse,
    responses=_AI_ERRORS,
    summary="Transcribe base64-encoded audio to text",
)
async def transcribe(
    body: TranscribeRequest,
    client: GenerationClient = Depends(get_generation_client),
) -> TranscribeResponse:
    try:
        audio = base64.b64decode(body.base64_data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(message="Audio data is not valid base64.", field="base64_data")

    text = await client.transcribe(audio, body.mime_type)
    return TranscribeResponse(text=text)


@router.post(
    "/refine",
    response_model=List[ContentVersion],
    responses=_AI_ERRORS,
    summary="Rewrite a note in several styles",
)
async def refine(
    body: RefineRequest,
    client: GenerationClient = Depends(get_generation_client),
) -> List[ContentVersion]:
    return await client.generate_batch(body.raw_note)


@router.post(
    "/single",
    response_model=Optional[ContentVersion],
    responses=_AI_ERRORS,
    summary="Generate one additional version",
)
async def single(
    body: SingleRequest,
    client: GenerationClient = Depends(get_generation_client),
) -> Optional[ContentVersion]:
    return await client.generate_one(body.core_note)

"""
NoteStudio Backend — Route Dependencies
=========================================

The store, the generation client and the generation manager are created in
the app lifespan and kept on app.state. Routes reach them through these
getters, and tests replace them by assigning fakes to app.state.
"""

from fastapi import Request

from notestudio.services.draft_service import DraftService
from notestudio.services.generation_manager import GenerationManager
from notestudio.services.llm_base import GenerationClient
from notestudio.services.store_base import ProjectStore


def get_store(request: Request) -> ProjectStore:
    return request.app.state.store


def get_generation_client(request: Request) -> GenerationClient:
    return request.app.state.generation_client


def get_generation_manager(request: Request) -> GenerationManager:
    return request.app.state.generation_manager


def get_draft_service(request: Request) -> DraftService:
    return DraftService(request.app.state.store)

"""
NoteStudio Backend — Draft Autosave
=====================================

What:  Snapshotting of the capture screen's free text.
How:   A snapshot is written only when its text differs from the newest
       stored draft; after each write, drafts beyond
       settings.draft_history_limit (oldest first) are deleted.
"""

import logging
from typing import Optional

from notestudio.config import settings
from notestudio.identifiers import new_draft_id, now_ms
from notestudio.schemas.studio import Draft
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)


class DraftService:

    def __init__(self, store: ProjectStore, history_limit: Optional[int] = None):
        self._store = store
        if history_limit is None:
            history_limit = settings.draft_history_limit
        # Same bound as the setting; the newest draft always survives
        if history_limit < 1:
            raise ValueError(f"history_limit must be at least 1, got {history_limit}")
        self._history_limit = history_limit

    async def autosave(self, text: str) -> Optional[Draft]:
        """
        Returns the new draft, or None when nothing was written (blank text,
        or the same text as the latest draft).
        """
        if not text.strip():
            return None

        drafts = await self._store.list_drafts()
        if drafts and drafts[0].text == text:
            logger.debug("Autosave skipped: text unchanged since draft %s", drafts[0].id)
            return None

        draft = Draft(id=new_draft_id(), text=text, timestamp=now_ms())
        await self._store.upsert_draft(draft)

        # drafts is newest first and does not include the one just written
        for stale in drafts[self._history_limit - 1:]:
            await self._store.delete_draft(stale.id)

        return draft

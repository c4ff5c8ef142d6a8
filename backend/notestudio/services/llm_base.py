"""
NoteStudio Backend — Abstract Generation Client Interface
===========================================================

What:  The contract between the generation manager / AI routes and the
       model provider.
Why:   The manager only needs "note in, tagged versions out". Keeping the
       provider behind an ABC lets tests drive the manager with scripted
       fakes and leaves room for another provider.
How:   GeminiService implements it; implementations own their retry logic
       and translate provider errors into LLMServiceError.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from notestudio.schemas.studio import ContentVersion
from notestudio.services.cancellation import CancellationToken


class GenerationClient(ABC):
    """
    Abstract interface for AI rewriting and transcription.

    Contract:
        - Returned versions are fully tagged: batch results carry fresh
          temporary ids (settings.temp_id_prefix), single results carry a
          permanent-looking id; both carry an image_url.
        - A client that notices `token.cancelled` raises
          GenerationCancelledError instead of returning.
        - Any other failure is raised as LLMServiceError or
          CircuitBreakerOpenError.
    """

    @abstractmethod
    async def generate_batch(
        self,
        raw_note: str,
        token: Optional[CancellationToken] = None,
    ) -> List[ContentVersion]:
        """
        Rewrites `raw_note` in several styles in one call.

        Returns:
            The versions in model order. May be empty when the model produced
            nothing usable; the manager treats that as a failed task.
        """
        ...

    @abstractmethod
    async def generate_one(
        self,
        context_note: str,
        token: Optional[CancellationToken] = None,
    ) -> Optional[ContentVersion]:
        """
        Produces one additional version from `context_note`.

        Returns:
            The version, or None when the model returned an empty response.
        """
        ...

    @abstractmethod
    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """Speech to text. Returns an empty string when nothing was recognised."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight connectivity test; must not consume generation quota."""
        ...

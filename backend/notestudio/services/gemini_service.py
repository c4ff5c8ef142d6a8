"""
NoteStudio Backend — Google Gemini Generation Client
======================================================

What:  GenerationClient implementation on Google Gemini: multi-style
       rewrites (refine), one extra version (single) and audio transcription.
How:   Prompts come from settings; refine/single ask for JSON matching a
       response schema, and the parsed items are validated into
       ContentVersion objects and tagged with ids and image URLs here, before
       they ever reach the generation manager.
Who:   The generation manager (tracked tasks) and the /api/ai routes.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter around the raw API call
    2. Circuit breaker shared by all calls on this instance
    3. Per-request timeout handed to the SDK
    4. Cancellation tokens checked before and after the call; an asyncio
       cancellation tears down the in-flight request itself
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from notestudio.activity import log_action
from notestudio.config import settings
from notestudio.exceptions import (
    CircuitBreakerOpenError,
    GenerationCancelledError,
    LLMServiceError,
)
from notestudio.identifiers import (
    image_url_for,
    new_generated_version_id,
    new_temp_version_id,
    now_ms,
)
from notestudio.schemas.studio import VERSION_STYLES, ContentVersion
from notestudio.services.cancellation import CancellationToken
from notestudio.services.llm_base import GenerationClient

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding the Gemini API.

    State Machine:
        CLOSED     → failures increment failure_count; at threshold → OPEN
        OPEN       → every call raises CircuitBreakerOpenError until
                     recovery_timeout seconds have passed → HALF_OPEN
        HALF_OPEN  → one call goes through; success → CLOSED, failure → OPEN

    Not thread-safe. All callers run on the single uvicorn event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            CircuitBreakerOpenError while OPEN and inside the recovery window.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Response Schemas
# ══════════════════════════════════════════════════════════════════════════

# Gemini is asked for the four generated styles; "standard" is reserved for
# versions written by hand.
_GENERATED_STYLES = [style for style in VERSION_STYLES if style != "standard"]

_VERSION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "content": {"type": "STRING"},
        "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
        "description": {"type": "STRING"},
        "style": {"type": "STRING", "format": "enum", "enum": _GENERATED_STYLES},
    },
    "required": ["title", "content", "tags", "description", "style"],
}

_BATCH_SCHEMA: Dict[str, Any] = {"type": "ARRAY", "items": _VERSION_SCHEMA}


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(GenerationClient):
    """
    Gemini-backed generation client.

    Error Handling Chain:
        API call fails → tenacity retries (settings.retry_max_attempts)
        → still failing → circuit breaker failure recorded → LLMServiceError
        → threshold reached → later calls fail fast with CircuitBreakerOpenError
        Unparseable or incomplete JSON → LLMServiceError (no retry; the model
        answered, it just answered badly)
    """

    def __init__(self):
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(settings.gemini_model)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    # ── GenerationClient API ──────────────────────────────────────────────

    async def generate_batch(
        self,
        raw_note: str,
        token: Optional[CancellationToken] = None,
    ) -> List[ContentVersion]:
        """
        Asks for several styled rewrites of `raw_note`.

        Each returned item gets a fresh temporary id and an image URL seeded
        by its style and position. An empty model response yields [].
        """
        text = await self._generate(
            contents=f"{settings.refine_prompt}{raw_note}",
            generation_config=genai.GenerationConfig(
                response_mime_type="application/json",
                response_schema=_BATCH_SCHEMA,
            ),
            token=token,
            operation="refine",
        )
        if not text:
            return []

        items = self._parse_json(text, operation="refine")
        if not isinstance(items, list):
            raise LLMServiceError(
                message="The AI service returned an unexpected response. Please try again.",
                context={"operation": "refine", "payload_type": type(items).__name__},
            )

        versions = []
        for index, item in enumerate(items):
            style = self._coerce_style(item)
            versions.append(
                self._build_version(
                    item,
                    version_id=new_temp_version_id(index),
                    image_url=image_url_for(f"{style}{index}"),
                    operation="refine",
                )
            )

        log_action("AI_REFINE", count=len(versions))
        return versions

    async def generate_one(
        self,
        context_note: str,
        token: Optional[CancellationToken] = None,
    ) -> Optional[ContentVersion]:
        """Asks for one extra version; None when the model returned nothing."""
        text = await self._generate(
            contents=f"{settings.single_prompt}{context_note}",
            generation_config=genai.GenerationConfig(
                response_mime_type="application/json",
                response_schema=_VERSION_SCHEMA,
            ),
            token=token,
            operation="single",
        )
        if not text:
            return None

        item = self._parse_json(text, operation="single")
        style = self._coerce_style(item)
        version = self._build_version(
            item,
            version_id=new_generated_version_id(style),
            image_url=image_url_for(f"{style}{now_ms()}"),
            operation="single",
        )

        log_action("AI_SINGLE", style=version.style)
        return version

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        text = await self._generate(
            contents=[
                {"mime_type": mime_type, "data": audio},
                settings.transcribe_prompt,
            ],
            generation_config=None,
            token=None,
            operation="transcribe",
        )
        log_action("AI_TRANSCRIBE", success=True, text_length=len(text))
        return text

    async def health_check(self) -> bool:
        """
        Lists models to verify API key and connectivity without spending
        generation quota.
        """
        try:
            models = genai.list_models()
            model_names = [m.name for m in models]
            target = f"models/{settings.gemini_model}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False

    # ── Internals ─────────────────────────────────────────────────────────

    async def _generate(
        self,
        contents: Any,
        generation_config: Optional[Any],
        token: Optional[CancellationToken],
        operation: str,
    ) -> str:
        """
        Circuit breaker + retry wrapper shared by every operation.

        Returns the stripped response text ("" when the model returned none).
        """
        request_id = str(uuid.uuid4())[:8]

        if token is not None:
            token.raise_if_cancelled()
        self.circuit_breaker.can_execute()

        logger.info("[%s] Starting Gemini %s call", request_id, operation)

        try:
            text = await self._call_gemini_with_retry(contents, generation_config, request_id)
            self.circuit_breaker.record_success()
        except (CircuitBreakerOpenError, GenerationCancelledError):
            raise
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Gemini %s failed after retries: %s",
                request_id,
                operation,
                str(e),
                exc_info=True,
            )
            raise LLMServiceError(
                message="AI generation failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "request_id": request_id,
                    "operation": operation,
                    "attempts": settings.retry_max_attempts,
                    "error_type": type(e).__name__,
                },
            )

        # The model may have answered after the task was cancelled
        if token is not None:
            token.raise_if_cancelled()
        return text

    @retry(
        retry=retry_if_exception_type((ConnectionError, TimeoutError, Exception)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(
        self,
        contents: Any,
        generation_config: Optional[Any],
        request_id: str,
    ) -> str:
        """
        The raw SDK call. Only this part is retried; the circuit breaker
        check and cancellation checks in _generate() are not.
        """
        start_time = time.time()

        try:
            response = await self.model.generate_content_async(
                contents,
                generation_config=generation_config,
                request_options={"timeout": settings.gemini_timeout},
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                duration_ms,
                str(e),
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        try:
            text = response.text.strip() if response.text else ""
        except ValueError:
            # .text raises when the candidate was blocked or empty
            text = ""

        logger.info(
            "[%s] Gemini call completed in %.0fms, %d chars",
            request_id,
            duration_ms,
            len(text),
        )
        return text

    @staticmethod
    def _parse_json(text: str, operation: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Gemini %s returned invalid JSON: %s", operation, str(e))
            raise LLMServiceError(
                message="The AI service returned an unreadable response. Please try again.",
                context={"operation": operation, "error_type": "JSONDecodeError"},
            )

    @staticmethod
    def _coerce_style(item: Any) -> str:
        style = item.get("style") if isinstance(item, dict) else None
        return style if style in VERSION_STYLES else "standard"

    def _build_version(
        self,
        item: Any,
        version_id: str,
        image_url: str,
        operation: str,
    ) -> ContentVersion:
        if not isinstance(item, dict):
            raise LLMServiceError(
                message="The AI service returned an unexpected response. Please try again.",
                context={"operation": operation, "payload_type": type(item).__name__},
            )
        try:
            return ContentVersion(
                id=version_id,
                title=item["title"],
                content=item["content"],
                description=item.get("description") or "",
                tags=item.get("tags") or [],
                image_url=image_url,
                style=self._coerce_style(item),
            )
        except (KeyError, PydanticValidationError) as e:
            logger.error("Gemini %s item is missing fields: %s", operation, str(e))
            raise LLMServiceError(
                message="The AI service returned an incomplete response. Please try again.",
                context={"operation": operation, "error_type": type(e).__name__},
            )


# ── Module-level instance ─────────────────────────────────────────────────
# Shared so that every caller trips the same circuit breaker
gemini_service = GeminiService()

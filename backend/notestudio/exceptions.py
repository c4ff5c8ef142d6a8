"""
NoteStudio Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for the store, the AI client and the
       generation manager.
How:   Each exception carries a user-facing message plus a context dict that
       is logged but never returned to the client. Global handlers in
       main.py turn them into JSON error responses.
Who:   Raised by services; caught by the manager (per task) or by the
       FastAPI exception handlers (per request).

Exception Hierarchy:
    NoteStudioError (base)
    ├── ValidationError          → 400 Bad Request
    ├── NotFoundError            → 404 Not Found
    ├── LLMServiceError          → 503 Service Unavailable
    ├── CircuitBreakerOpenError  → 503 Service Unavailable
    ├── GenerationCancelledError → task status 'aborted' (not an HTTP error)
    └── DatabaseError            → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class NoteStudioError(Exception):
    """
    Base exception for all NoteStudio application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteStudioError):
    """
    Raised when client input fails a business rule.

    When:    Empty note text, save-all with no versions, unknown version style.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoteStudioError):
    """
    Raised when a requested resource does not exist.

    When:    Unknown task id on GET/cancel, unknown project or version on edit.
    HTTP:    404 Not Found

    Note: the reconciliation path never raises this. A project that vanished
    between generation and merge is a benign race, not an error.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class LLMServiceError(NoteStudioError):
    """
    Raised when the Gemini service fails or returns unusable output.

    When:    Retries exhausted, malformed JSON, response missing required fields.
    HTTP:    503 Service Unavailable (direct AI routes); task status 'error'
             when raised inside a tracked generation task.
    """

    def __init__(
        self,
        message: str = "AI generation service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(NoteStudioError):
    """
    Raised when the circuit breaker is OPEN and calls are rejected instantly.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for the recovery window)
        → After the window → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures. "
            f"The service will automatically retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class GenerationCancelledError(NoteStudioError):
    """
    Raised by a generation client that observed its cancellation token.

    The generation manager classifies this as 'aborted', never as 'error'.
    """

    def __init__(
        self,
        task_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if task_id:
            ctx["task_id"] = task_id
        super().__init__(message="Generation was cancelled", context=ctx)
        self.task_id = task_id


class DatabaseError(NoteStudioError):
    """
    Raised when a store operation fails unexpectedly.

    HTTP:    500 Internal Server Error, with a generic message. Query text and
             driver errors go to the server log only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


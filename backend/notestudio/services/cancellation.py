"""
NoteStudio Backend — Cancellation Token
=========================================

What:  A one-shot "cancelled" flag shared between the generation manager
       and the generation client working on a task.
How:   cancel() flips the flag exactly once and runs the registered
       callbacks; the manager registers one that cancels the asyncio task
       so the in-flight HTTP call to Gemini is torn down. Clients may also
       poll the token and raise GenerationCancelledError themselves.
"""

import logging
from typing import Callable, List, Optional

from notestudio.exceptions import GenerationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal for one generation task."""

    def __init__(self, task_id: Optional[str] = None):
        self.task_id = task_id
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """
        Sets the flag. Returns False when the token was already cancelled,
        in which case no callback runs a second time.
        """
        if self._cancelled:
            return False
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed for task %s", self.task_id)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Runs `callback` on cancel(), or right away if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelledError(task_id=self.task_id)

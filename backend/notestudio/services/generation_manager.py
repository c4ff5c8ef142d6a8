"""
NoteStudio Backend — Generation Manager
=========================================

What:  The in-memory registry of AI generation tasks. It starts them, runs
       them in the background, cancels them on request and tells every
       subscriber about each state change.
Why:   Rewrites take seconds to minutes. Screens start a task, move on, and
       learn the outcome from notifications instead of holding a request open.
How:   Each task is an asyncio.Task on the server's event loop paired with a
       CancellationToken. Single-addition results are merged into their
       project through the reconciliation module before the task completes.
Who:   Built once in the app lifespan (main.py) and handed to routes through
       app.state; tests build their own with fake collaborators.

Task Lifecycle:
    running ──► completed   result present (BulkResult or SingleResult)
            ├─► error       client failed, or returned nothing
            └─► aborted     cancel() was called, or the call was cancelled

    Only a running task can move; the first terminal write wins. cancel()
    marks the task aborted at once, so a response that arrives afterwards
    is discarded and a merge that has not committed yet writes nothing.

Notifications:
    Listeners get the full task list on subscribe() and again after every
    mutation, in registration order, on the event loop thread. All listeners
    of one notification receive the same list object and must not mutate it.
    A listener that raises is logged and skipped.

Tasks are kept for the life of the process and are not persisted.
"""

import asyncio
import functools
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from notestudio.exceptions import GenerationCancelledError, NoteStudioError
from notestudio.schemas.studio import ContentVersion, TaskResponse
from notestudio.services.cancellation import CancellationToken
from notestudio.services.llm_base import GenerationClient
from notestudio.services.reconciliation import merge_versions_into_project
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)


class TaskKind(str, Enum):
    BULK_REFINE = "bulk_refine"
    SINGLE_ADDITION = "single_addition"


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass(frozen=True)
class BulkResult:
    versions: Tuple[ContentVersion, ...]


@dataclass(frozen=True)
class SingleResult:
    version: ContentVersion


TaskResult = Union[BulkResult, SingleResult]


@dataclass
class GenerationTask:
    """One tracked generation request. Mutated only by GenerationManager."""

    id: str
    kind: TaskKind
    token: CancellationToken = field(repr=False)
    status: TaskStatus = TaskStatus.RUNNING
    project_id: Optional[str] = None
    result: Optional[TaskResult] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    # Set when a single-addition result could not be written to its project.
    # The generation itself succeeded, so the task still completes.
    persistence_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not TaskStatus.RUNNING

    def to_response(self) -> TaskResponse:
        versions = None
        version = None
        if isinstance(self.result, BulkResult):
            versions = list(self.result.versions)
        elif isinstance(self.result, SingleResult):
            version = self.result.version

        return TaskResponse(
            id=self.id,
            kind=self.kind.value,
            status=self.status.value,
            project_id=self.project_id,
            created_at=self.created_at,
            finished_at=self.finished_at,
            error_message=self.error_message,
            persistence_error=self.persistence_error,
            versions=versions,
            version=version,
        )


TaskListener = Callable[[List[GenerationTask]], None]
CompletionListener = Callable[[GenerationTask], None]
Unsubscribe = Callable[[], None]


class GenerationManager:
    """
    Registry and runner for generation tasks.

    Args:
        client: Produces the versions (GeminiService in production).
        store: Where single-addition results are merged.

    start_* methods must be called from a running event loop; they return
    the new task id before any generation work happens.
    """

    def __init__(self, client: GenerationClient, store: ProjectStore):
        self._client = client
        self._store = store
        self._tasks: Dict[str, GenerationTask] = {}
        self._runners: Dict[str, asyncio.Task] = {}
        self._merges: Set[asyncio.Future] = set()
        self._listeners: Dict[int, TaskListener] = {}
        self._handles = itertools.count(1)

    # ── Queries ───────────────────────────────────────────────────────────

    @property
    def tasks(self) -> List[GenerationTask]:
        """All tasks in creation order."""
        return list(self._tasks.values())

    def get(self, task_id: str) -> Optional[GenerationTask]:
        return self._tasks.get(task_id)

    @property
    def running_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.is_terminal)

    # ── Subscriptions ─────────────────────────────────────────────────────

    def subscribe(self, listener: TaskListener) -> Unsubscribe:
        """
        Registers `listener` and calls it right away with the current tasks.

        Returns:
            A callable that removes the listener. Calling it more than once
            is harmless, and it may be called from inside a notification.
        """
        handle = next(self._handles)
        self._listeners[handle] = listener
        self._deliver(handle, listener, self.tasks)

        def unsubscribe() -> None:
            self._listeners.pop(handle, None)

        return unsubscribe

    def subscribe_completions(
        self,
        callback: CompletionListener,
        kind: Optional[TaskKind] = None,
        project_id: Optional[str] = None,
        include_existing: bool = False,
    ) -> Unsubscribe:
        """
        Calls `callback(task)` once per task that reaches a terminal state.

        Each subscription remembers the ids it has reported, so a task is
        never reported twice no matter how many later notifications list it.
        `kind` and `project_id` narrow the tasks reported. Tasks already
        terminal at subscription time are skipped unless `include_existing`.
        """
        reported = set()
        if not include_existing:
            reported.update(task.id for task in self._tasks.values() if task.is_terminal)

        def on_tasks(tasks: List[GenerationTask]) -> None:
            for task in tasks:
                if not task.is_terminal or task.id in reported:
                    continue
                if kind is not None and task.kind is not kind:
                    continue
                if project_id is not None and task.project_id != project_id:
                    continue
                reported.add(task.id)
                callback(task)

        return self.subscribe(on_tasks)

    # ── Commands ──────────────────────────────────────────────────────────

    def start_bulk_task(self, raw_note: str) -> str:
        task = self._register(TaskKind.BULK_REFINE)
        self._launch(task, self._run_bulk(task, raw_note))
        return task.id

    def start_single_addition_task(self, core_note: str, project_id: str) -> str:
        task = self._register(TaskKind.SINGLE_ADDITION, project_id=project_id)
        self._launch(task, self._run_single(task, core_note))
        return task.id

    def cancel(self, task_id: str) -> bool:
        """
        Signals the task's token and marks it aborted right away.

        Returns:
            True if the task was running and is now aborted; False for an
            unknown or already finished task.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.token.cancel()
        return self._finish(task, TaskStatus.ABORTED)

    async def shutdown(self) -> None:
        """Cancels running tasks and waits for their runners and merges to unwind."""
        for task in self.tasks:
            if not task.is_terminal:
                self.cancel(task.id)
        runners = [*self._runners.values(), *self._merges]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        logger.info("Generation manager stopped (%d task(s) tracked)", len(self._tasks))

    # ── Internals ─────────────────────────────────────────────────────────

    def _register(self, kind: TaskKind, project_id: Optional[str] = None) -> GenerationTask:
        prefix = "bulk" if kind is TaskKind.BULK_REFINE else "single"
        task_id = f"{prefix}-{uuid.uuid4()}"
        task = GenerationTask(
            id=task_id,
            kind=kind,
            token=CancellationToken(task_id),
            project_id=project_id,
        )
        self._tasks[task_id] = task
        logger.info("Task %s started (kind=%s, project=%s)", task_id, kind.value, project_id)
        self._notify()
        return task

    def _launch(self, task: GenerationTask, work: Awaitable[None]) -> None:
        runner = asyncio.ensure_future(work)
        self._runners[task.id] = runner
        task.token.add_callback(runner.cancel)
        runner.add_done_callback(lambda _: self._runners.pop(task.id, None))

    async def _run_bulk(self, task: GenerationTask, raw_note: str) -> None:
        ok, versions = await self._generate(
            task, self._client.generate_batch(raw_note, token=task.token)
        )
        if not ok:
            return
        if not versions:
            self._finish(task, TaskStatus.ERROR, error_message="The AI service returned no versions.")
            return
        self._finish(task, TaskStatus.COMPLETED, result=BulkResult(tuple(versions)))

    async def _run_single(self, task: GenerationTask, core_note: str) -> None:
        ok, version = await self._generate(
            task, self._client.generate_one(core_note, token=task.token)
        )
        if not ok:
            return
        if version is None:
            self._finish(task, TaskStatus.ERROR, error_message="The AI service returned no version.")
            return
        if task.is_terminal:
            return

        # The store checks the token right before commit, so a cancel that
        # lands during the merge discards the write. The merge runs shielded
        # so the transaction itself is never interrupted halfway.
        merge = asyncio.ensure_future(
            merge_versions_into_project(
                self._store,
                [version],
                task.project_id,
                is_cancelled=lambda: task.token.cancelled,
            )
        )
        merge.add_done_callback(functools.partial(_log_detached_merge, task))
        self._merges.add(merge)
        merge.add_done_callback(self._merges.discard)
        try:
            await asyncio.shield(merge)
        except GenerationCancelledError:
            self._finish(task, TaskStatus.ABORTED)
            return
        except asyncio.CancelledError:
            self._finish(task, TaskStatus.ABORTED)
            if not task.token.cancelled:
                raise
            return
        except Exception as e:
            logger.error(
                "Task %s: could not merge version %s into project %s: %s",
                task.id,
                version.id,
                task.project_id,
                str(e),
                exc_info=True,
            )
            task.persistence_error = _describe(e, "The new version could not be saved.")

        self._finish(task, TaskStatus.COMPLETED, result=SingleResult(version))

    async def _generate(self, task: GenerationTask, call: Awaitable) -> Tuple[bool, object]:
        """
        Awaits the client call and settles the failure branches.

        Returns (True, outcome) when the call returned; otherwise the task
        has already been moved to aborted or error and (False, None) is
        returned.
        """
        try:
            return True, await call
        except GenerationCancelledError:
            self._finish(task, TaskStatus.ABORTED)
        except asyncio.CancelledError:
            self._finish(task, TaskStatus.ABORTED)
            # Not our cancel (event loop shutting down): let it propagate
            if not task.token.cancelled:
                raise
        except Exception as e:
            logger.warning("Task %s failed: %s", task.id, str(e))
            self._finish(
                task,
                TaskStatus.ERROR,
                error_message=_describe(e, "AI generation failed. Please try again."),
            )
        return False, None

    def _finish(
        self,
        task: GenerationTask,
        status: TaskStatus,
        result: Optional[TaskResult] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        if task.is_terminal:
            logger.debug(
                "Task %s already %s; ignoring %s", task.id, task.status.value, status.value
            )
            return False

        task.status = status
        task.result = result if status is TaskStatus.COMPLETED else None
        task.error_message = error_message
        task.finished_at = datetime.now(timezone.utc)

        elapsed = (task.finished_at - task.created_at).total_seconds()
        logger.info("Task %s %s after %.1fs", task.id, status.value, elapsed)
        self._notify()
        return True

    def _notify(self) -> None:
        snapshot = self.tasks
        for handle, listener in list(self._listeners.items()):
            # Removed by an earlier listener during this round
            if handle not in self._listeners:
                continue
            self._deliver(handle, listener, snapshot)

    @staticmethod
    def _deliver(handle: int, listener: TaskListener, snapshot: List[GenerationTask]) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("Task listener %d raised; continuing", handle)


def _describe(error: Exception, fallback: str) -> str:
    if isinstance(error, NoteStudioError):
        return error.message
    return fallback


def _log_detached_merge(task: GenerationTask, merge: asyncio.Future) -> None:
    """
    Collects the outcome of a merge whose runner was cancelled and stopped
    waiting for it. Without this, a failed merge would surface as an
    unretrieved task exception.
    """
    if merge.cancelled():
        return
    error = merge.exception()
    if not task.token.cancelled:
        return
    if isinstance(error, GenerationCancelledError):
        logger.info("Task %s: merge into project %s discarded after cancel", task.id, task.project_id)
    elif error is not None:
        logger.warning(
            "Task %s: merge into project %s failed after cancel: %s", task.id, task.project_id, str(error)
        )
    else:
        logger.info("Task %s: merge into project %s committed before cancel", task.id, task.project_id)

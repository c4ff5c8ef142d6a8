"""
NoteStudio Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared fixtures and in-memory collaborators for the test suite.
How:   Environment overrides are applied before any notestudio import so the
       module-level settings object is built from them.

Fixture Hierarchy (all function-scoped):
    ├── fake_store:    in-memory ProjectStore
    ├── fake_client:   scripted GenerationClient
    ├── manager:       GenerationManager wired to both fakes
    └── test_client:   httpx AsyncClient on a fresh app with the fakes on app.state
"""

import asyncio
import os
import tempfile

# Before any notestudio import: settings are read once at import time
os.environ["DATABASE_URL"] = (
    "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="notestudio_test_"), "test.db")
)
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_MAX_ATTEMPTS"] = "1"

from typing import Awaitable, Callable, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from notestudio.exceptions import DatabaseError, GenerationCancelledError  # noqa: E402
from notestudio.identifiers import image_url_for, new_temp_version_id, now_ms  # noqa: E402
from notestudio.schemas.studio import ContentVersion, Draft, StudioProject  # noqa: E402
from notestudio.services.generation_manager import GenerationManager  # noqa: E402
from notestudio.services.llm_base import GenerationClient  # noqa: E402
from notestudio.services.store_base import ProjectStore  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Builders
# ══════════════════════════════════════════════════════════════════════════

def make_version(version_id: str, style: str = "standard", title: Optional[str] = None) -> ContentVersion:
    return ContentVersion(
        id=version_id,
        title=title or f"Title {version_id}",
        content=f"Content of {version_id}",
        description="A short summary",
        tags=["idea"],
        image_url=image_url_for(f"{style}{version_id}"),
        style=style,
    )


def make_project(project_id: str, version_ids: List[str], timestamp: int = 1000) -> StudioProject:
    return StudioProject(
        id=project_id,
        title=f"Project {project_id}",
        original_note="original note",
        versions=[make_version(vid) for vid in version_ids],
        tags=["idea"],
        timestamp=timestamp,
        main_image_url=None,
    )


async def wait_until_terminal(manager: GenerationManager, task_id: str, rounds: int = 200):
    """Yields to the event loop until the task leaves 'running'."""
    for _ in range(rounds):
        task = manager.get(task_id)
        if task.is_terminal:
            return task
        await asyncio.sleep(0)
    raise AssertionError(f"task {task_id} still running after {rounds} loop turns")


# ══════════════════════════════════════════════════════════════════════════
# In-memory Collaborators
# ══════════════════════════════════════════════════════════════════════════

class FakeStore(ProjectStore):
    """
    Dict-backed store. Set fail_writes to make project writes raise.

    `before_append` is awaited at the start of add_versions(), standing in
    for database latency; tests use it to interleave other work. The rest
    of add_versions() runs without yielding, like one transaction.
    """

    def __init__(self):
        self.projects: Dict[str, StudioProject] = {}
        self.drafts: Dict[str, Draft] = {}
        self.project_writes: List[StudioProject] = []
        self.fail_writes = False
        self.before_append: Optional[Callable[[], Awaitable[None]]] = None
        self.healthy = True

    async def list_projects(self) -> List[StudioProject]:
        return sorted(self.projects.values(), key=lambda p: p.timestamp, reverse=True)

    async def upsert_project(self, project: StudioProject) -> None:
        if self.fail_writes:
            raise DatabaseError(message="Could not save the project. Please try again.")
        self.project_writes.append(project)
        self.projects[project.id] = project

    async def add_versions(self, project_id, versions, is_cancelled=None) -> Optional[StudioProject]:
        if self.before_append is not None:
            await self.before_append()
        project = self.projects.get(project_id)
        if project is None:
            return None
        stored_ids = project.version_ids()
        additions = [v for v in versions if v.id not in stored_ids]
        if is_cancelled is not None and is_cancelled():
            raise GenerationCancelledError(context={"project_id": project_id})
        if self.fail_writes:
            raise DatabaseError(message="Could not save the project. Please try again.")
        updated = project.model_copy(
            update={"versions": [*project.versions, *additions], "timestamp": now_ms()}
        )
        self.project_writes.append(updated)
        self.projects[project_id] = updated
        return updated

    async def delete_project(self, project_id: str) -> None:
        self.projects.pop(project_id, None)

    async def update_version_fields(self, project_id, version_id, title=None, content=None) -> bool:
        project = self.projects.get(project_id)
        if project is None:
            return False
        for index, version in enumerate(project.versions):
            if version.id == version_id:
                changes = {}
                if title:
                    changes["title"] = title
                if content:
                    changes["content"] = content
                project.versions[index] = version.model_copy(update=changes)
                return True
        return False

    async def list_drafts(self) -> List[Draft]:
        return sorted(self.drafts.values(), key=lambda d: d.timestamp, reverse=True)

    async def upsert_draft(self, draft: Draft) -> None:
        self.drafts[draft.id] = draft

    async def delete_draft(self, draft_id: str) -> None:
        self.drafts.pop(draft_id, None)

    async def health_check(self) -> bool:
        return self.healthy


class ScriptedClient(GenerationClient):
    """
    GenerationClient whose answers are set by the test.

    batch_result / single_result may be a value or an exception instance.
    When `gate` is set, calls wait on it before answering. A `stubborn`
    client ignores asyncio cancellation and answers anyway, like a call
    that resolves after the task was aborted.
    """

    def __init__(self):
        self.batch_result = [make_version(new_temp_version_id(i), style="detailed") for i in range(4)]
        self.single_result: Optional[ContentVersion] = make_version("v-story-1", style="story")
        self.transcript = "hello from audio"
        self.gate: Optional[asyncio.Event] = None
        self.stubborn = False
        self.calls: List[tuple] = []
        self.healthy = True

    async def _answer(self, result):
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                if not self.stubborn:
                    raise
        if isinstance(result, BaseException):
            raise result
        return result

    async def generate_batch(self, raw_note, token=None):
        self.calls.append(("batch", raw_note))
        return await self._answer(self.batch_result)

    async def generate_one(self, context_note, token=None):
        self.calls.append(("single", context_note))
        return await self._answer(self.single_result)

    async def transcribe(self, audio, mime_type):
        self.calls.append(("transcribe", mime_type))
        return self.transcript

    async def health_check(self) -> bool:
        return self.healthy


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_client():
    return ScriptedClient()


@pytest.fixture
def manager(fake_client, fake_store):
    return GenerationManager(client=fake_client, store=fake_store)


@pytest_asyncio.fixture
async def test_client(fake_store, fake_client, manager):
    """
    HTTPX AsyncClient on a fresh app. ASGITransport does not run the
    lifespan, so app.state is filled with the fakes here.
    """
    from notestudio.main import create_app

    app = create_app()
    app.state.store = fake_store
    app.state.generation_client = fake_client
    app.state.generation_manager = manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

"""
NoteStudio Backend — Abstract Project Store Interface
=======================================================

What:  The persistence contract the generation manager, the reconciliation
       logic and the routes depend on.
How:   SqlProjectStore (async SQLAlchemy) implements it in production;
       tests substitute an in-memory fake.

Contract:
    - Whole-aggregate writes: upsert_project() replaces a project's version
      set. Versions stored for the project but missing from the payload are
      deleted (that is how a version gets explicitly removed); payload
      versions are inserted or updated.
    - Append-only writes: add_versions() inserts versions into an existing
      project and never deletes or recreates anything. Background merges
      use it so a stale read cannot undo another writer's work.
    - Reads return schema objects, never ORM rows.
    - Failures surface as DatabaseError.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from notestudio.schemas.studio import ContentVersion, Draft, StudioProject


class ProjectStore(ABC):
    """Persistence for studio projects and drafts."""

    @abstractmethod
    async def list_projects(self) -> List[StudioProject]:
        """All projects with their versions, newest first."""
        ...

    async def get_project(self, project_id: str) -> Optional[StudioProject]:
        """Single project lookup; None when absent."""
        for project in await self.list_projects():
            if project.id == project_id:
                return project
        return None

    @abstractmethod
    async def upsert_project(self, project: StudioProject) -> None:
        """Inserts or replaces the whole project aggregate."""
        ...

    @abstractmethod
    async def add_versions(
        self,
        project_id: str,
        versions: Sequence[ContentVersion],
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> Optional[StudioProject]:
        """
        Appends the versions whose ids the project does not hold yet and
        refreshes its timestamp, in one transaction.

        `is_cancelled` is checked after the read, right before the write;
        when it returns True nothing is written.

        Returns:
            The project after the write, or None when it does not exist.

        Raises:
            GenerationCancelledError: `is_cancelled` returned True.
            DatabaseError: The write failed.
        """
        ...

    @abstractmethod
    async def delete_project(self, project_id: str) -> None:
        """Deletes the project and its versions. Unknown ids are ignored."""
        ...

    @abstractmethod
    async def update_version_fields(
        self,
        project_id: str,
        version_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> bool:
        """
        Edits title and/or content of one version in place.

        Empty or missing values leave the field untouched.
        Returns False when the version does not exist in that project.
        """
        ...

    @abstractmethod
    async def list_drafts(self) -> List[Draft]:
        """All drafts, newest first."""
        ...

    @abstractmethod
    async def upsert_draft(self, draft: Draft) -> None:
        ...

    @abstractmethod
    async def delete_draft(self, draft_id: str) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the backing database answers a trivial query."""
        ...

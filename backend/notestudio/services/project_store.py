"""
NoteStudio Backend — SQLAlchemy Project Store
===============================================

What:  ProjectStore implementation on top of the async SQLAlchemy engine.
Who:   Routes (CRUD), reconciliation (merge / save-all) and the generation
       manager (single-addition merges) all share one instance.
When:  Created in the app lifespan and kept on app.state.

Session Strategy:
    Every operation opens its own session from the factory and commits it
    before returning. Generation tasks write long after the request that
    started them has finished, so request-scoped sessions would not fit.

Error Handling:
    SQLAlchemy errors are logged with context and re-raised as DatabaseError,
    whose message is safe to show to API clients.
"""

import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notestudio.activity import log_action
from notestudio.database import async_session_factory
from notestudio.exceptions import DatabaseError, GenerationCancelledError
from notestudio.identifiers import now_ms
from notestudio.models.studio import Draft as DraftRow
from notestudio.models.studio import Project, Version
from notestudio.schemas.studio import ContentVersion, Draft, StudioProject
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)


class SqlProjectStore(ProjectStore):
    """
    Relational store for projects, versions and drafts.

    Args:
        session_factory: Callable returning a new AsyncSession. Defaults to
            the application-wide factory; tests pass one bound to a
            temporary SQLite database.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_factory):
        self._session_factory = session_factory

    # ── Projects ──────────────────────────────────────────────────────────

    async def list_projects(self) -> List[StudioProject]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Project).order_by(Project.timestamp.desc())
                )
                projects = [StudioProject.model_validate(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("Database error listing projects: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve projects. Please try again.",
                context={"error_type": type(e).__name__},
            )

        log_action("FETCH_PROJECTS", count=len(projects))
        return projects

    async def get_project(self, project_id: str) -> Optional[StudioProject]:
        try:
            async with self._session_factory() as session:
                row = await session.get(Project, project_id)
                return StudioProject.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("Database error fetching project %s: %s", project_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the project. Please try again.",
                context={"project_id": project_id},
            )

    async def upsert_project(self, project: StudioProject) -> None:
        """
        Writes the project row and makes its stored version set equal to
        `project.versions`.

        Versions keep the payload order through `position`. Rows for
        versions absent from the payload are removed by the relationship's
        delete-orphan cascade.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(Project, project.id)
                    if row is None:
                        row = Project(id=project.id, versions=[])
                        session.add(row)

                    row.title = project.title
                    row.original_note = project.original_note
                    row.tags = list(project.tags)
                    row.timestamp = project.timestamp
                    row.main_image_url = project.main_image_url

                    existing = {version.id: version for version in row.versions}
                    updated: List[Version] = []
                    for position, version in enumerate(project.versions):
                        version_row = existing.get(version.id) or Version(id=version.id)
                        version_row.position = position
                        version_row.title = version.title
                        version_row.content = version.content
                        version_row.description = version.description
                        version_row.tags = list(version.tags)
                        version_row.image_url = version.image_url
                        version_row.style = version.style
                        version_row.is_recommended = version.is_recommended
                        updated.append(version_row)
                    row.versions = updated
        except SQLAlchemyError as e:
            logger.error("Database error saving project %s: %s", project.id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the project. Please try again.",
                context={"project_id": project.id, "error_type": type(e).__name__},
            )

        log_action(
            "SAVE_PROJECT",
            id=project.id,
            title=project.title,
            version_count=len(project.versions),
        )

    async def add_versions(
        self,
        project_id: str,
        versions: Sequence[ContentVersion],
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> Optional[StudioProject]:
        """
        Inserts the versions the project does not hold yet after its last
        stored version. Existing rows are never touched, and a missing
        project is never recreated.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # Row lock: a concurrent delete either lands first (we see
                    # None) or waits for this commit
                    row = await session.get(Project, project_id, with_for_update=True)
                    if row is None:
                        return None

                    stored_ids = {version.id for version in row.versions}
                    position = max((version.position for version in row.versions), default=-1)
                    added = 0
                    for version in versions:
                        if version.id in stored_ids:
                            continue
                        stored_ids.add(version.id)
                        position += 1
                        added += 1
                        row.versions.append(_version_row(version, position))
                    row.timestamp = now_ms()
                    project = StudioProject.model_validate(row)

                    # Last check before commit; raising rolls the transaction back
                    if is_cancelled is not None and is_cancelled():
                        raise GenerationCancelledError(context={"project_id": project_id})
        except SQLAlchemyError as e:
            logger.error(
                "Database error adding versions to project %s: %s", project_id, str(e), exc_info=True
            )
            raise DatabaseError(
                message="Could not save the project. Please try again.",
                context={"project_id": project_id, "error_type": type(e).__name__},
            )

        log_action("ADD_VERSIONS", id=project_id, added=added, version_count=len(project.versions))
        return project

    async def delete_project(self, project_id: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(Project, project_id)
                    if row is None:
                        return
                    await session.delete(row)
        except SQLAlchemyError as e:
            logger.error("Database error deleting project %s: %s", project_id, str(e))
            raise DatabaseError(
                message="Could not delete the project. Please try again.",
                context={"project_id": project_id},
            )

        log_action("DELETE_PROJECT", id=project_id)

    async def update_version_fields(
        self,
        project_id: str,
        version_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Version).where(
                            Version.id == version_id,
                            Version.project_id == project_id,
                        )
                    )
                    version_row = result.scalar_one_or_none()
                    if version_row is None:
                        return False
                    # Empty strings count as "not provided"
                    if title:
                        version_row.title = title
                    if content:
                        version_row.content = content
        except SQLAlchemyError as e:
            logger.error(
                "Database error updating version %s of project %s: %s",
                version_id,
                project_id,
                str(e),
            )
            raise DatabaseError(
                message="Could not update the version. Please try again.",
                context={"project_id": project_id, "version_id": version_id},
            )

        log_action(
            "UPDATE_VERSION",
            project_id=project_id,
            version_id=version_id,
            fields=[name for name, value in (("title", title), ("content", content)) if value],
        )
        return True

    # ── Drafts ────────────────────────────────────────────────────────────

    async def list_drafts(self) -> List[Draft]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(DraftRow).order_by(DraftRow.timestamp.desc())
                )
                return [Draft.model_validate(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("Database error listing drafts: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve drafts. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def upsert_draft(self, draft: Draft) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(DraftRow, draft.id)
                    if row is None:
                        session.add(DraftRow(id=draft.id, text=draft.text, timestamp=draft.timestamp))
                    else:
                        row.text = draft.text
                        row.timestamp = draft.timestamp
        except SQLAlchemyError as e:
            logger.error("Database error saving draft %s: %s", draft.id, str(e))
            raise DatabaseError(
                message="Could not save the draft. Please try again.",
                context={"draft_id": draft.id},
            )

        log_action("SAVE_DRAFT", id=draft.id)

    async def delete_draft(self, draft_id: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(DraftRow, draft_id)
                    if row is not None:
                        await session.delete(row)
        except SQLAlchemyError as e:
            logger.error("Database error deleting draft %s: %s", draft_id, str(e))
            raise DatabaseError(
                message="Could not delete the draft. Please try again.",
                context={"draft_id": draft_id},
            )

        log_action("DELETE_DRAFT", id=draft_id)

    # ── Health ────────────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("Store health check failed: %s", str(e))
            return False


def _version_row(version: ContentVersion, position: int) -> Version:
    return Version(
        id=version.id,
        position=position,
        title=version.title,
        content=version.content,
        description=version.description,
        tags=list(version.tags),
        image_url=version.image_url,
        style=version.style,
        is_recommended=version.is_recommended,
    )

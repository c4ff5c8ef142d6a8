"""
NoteStudio Backend — Project Reconciliation
=============================================

What:  Merging generated versions into persisted projects, and the
       "save all" path that turns an editing session into a project.
Who:   GenerationManager (single-addition results) and POST /api/projects/save.

Rules:
    - Version ids are unique within a project. A new version whose id is
      already present is dropped, never overwritten, so repeating a merge
      changes nothing.
    - A project that disappeared between read and write (deleted by another
      client) turns the merge into a no-op.
    - Merges go through the store's append-only add_versions(); save-all
      uses the whole-aggregate upsert.
    - Versions carrying the temporary id prefix get a permanent id when saved.
"""

import logging
from typing import Callable, List, Optional, Sequence

from notestudio.exceptions import ValidationError
from notestudio.identifiers import (
    is_temporary_id,
    new_permanent_version_id,
    new_project_id,
    now_ms,
)
from notestudio.schemas.studio import ContentVersion, StudioProject
from notestudio.services.store_base import ProjectStore

logger = logging.getLogger(__name__)


async def merge_versions_into_project(
    store: ProjectStore,
    new_versions: Sequence[ContentVersion],
    project_id: str,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> Optional[StudioProject]:
    """
    Appends the versions of `new_versions` that the project does not already
    hold and refreshes the project's timestamp.

    The write is the store's append-only add_versions(), so versions other
    writers committed meanwhile are kept and a deleted project stays deleted.

    Returns:
        The project as written, or None when the project does not exist.

    Raises:
        GenerationCancelledError: `is_cancelled` returned True before commit.
        DatabaseError: The store rejected the write.
    """
    additions: List[ContentVersion] = []
    seen = set()
    for version in new_versions:
        if version.id in seen:
            continue
        seen.add(version.id)
        additions.append(version)

    merged = await store.add_versions(project_id, additions, is_cancelled=is_cancelled)
    if merged is None:
        logger.info("Merge skipped: project %s no longer exists", project_id)
        return None

    logger.info(
        "Offered %d version(s) to project %s; it now holds %d",
        len(additions),
        project_id,
        len(merged.versions),
    )
    return merged


def assign_permanent_ids(versions: Sequence[ContentVersion]) -> List[ContentVersion]:
    """Returns copies of `versions` with temporary ids swapped for permanent ones."""
    return [
        version.model_copy(update={"id": new_permanent_version_id()})
        if is_temporary_id(version.id)
        else version
        for version in versions
    ]


async def save_project_with_versions(
    store: ProjectStore,
    original_note: str,
    versions: Sequence[ContentVersion],
    existing_project_id: Optional[str] = None,
) -> StudioProject:
    """
    Persists an editing session as one project.

    The project takes its title, tags and image from the first version.
    With `existing_project_id` the stored project is replaced; otherwise a
    new project id is minted.

    Raises:
        ValidationError: `versions` is empty or repeats an id.
        DatabaseError: The store rejected the write.
    """
    if not versions:
        raise ValidationError(
            message="A project needs at least one version.",
            field="versions",
        )

    permanent = assign_permanent_ids(versions)
    if len({version.id for version in permanent}) != len(permanent):
        raise ValidationError(
            message="Version ids must be unique within a project.",
            field="versions",
        )

    first = permanent[0]
    project = StudioProject(
        id=existing_project_id or new_project_id(),
        title=first.title,
        original_note=original_note,
        versions=permanent,
        tags=list(first.tags),
        timestamp=now_ms(),
        main_image_url=first.image_url or None,
    )
    await store.upsert_project(project)
    return project

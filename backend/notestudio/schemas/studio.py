"""
NoteStudio Backend — Pydantic Schemas
=======================================

What:  Domain objects (ContentVersion, StudioProject, Draft) and the
       request/response bodies of the HTTP API.
Why:   The same models travel through the store, the Gemini client, the
       generation manager and the routes, so every layer validates against
       one definition.
How:   Pydantic v2 models; `from_attributes` lets the store build them
       straight from ORM rows.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# Fixed enumeration of rewrite styles. Gemini is asked for the last four;
# "standard" marks hand-written or imported versions.
VersionStyle = Literal["standard", "detailed", "story", "analysis", "minimalist"]
VERSION_STYLES = ("standard", "detailed", "story", "analysis", "minimalist")


# ══════════════════════════════════════════════════════════════════════════
# Domain Models
# ══════════════════════════════════════════════════════════════════════════


class ContentVersion(BaseModel):
    """
    One generated rewrite of a note.

    Ids that start with the temporary prefix (settings.temp_id_prefix) have
    never been persisted; save-all swaps them for permanent ids.
    """
    id: str = Field(description="Version id (temporary ids start with the temp prefix)")
    title: str = Field(description="Headline of the rewrite")
    content: str = Field(description="Full rewritten text")
    description: str = Field(default="", description="One-line summary")
    tags: List[str] = Field(default_factory=list)
    image_url: str = Field(default="", description="Illustrative image URL")
    style: VersionStyle = Field(default="standard")
    is_recommended: Optional[bool] = Field(default=None)

    model_config = {"from_attributes": True}


class StudioProject(BaseModel):
    """
    A persisted aggregate: the original note and its versions.

    Version ids are unique within a project; see the validator below.
    """
    id: str
    title: str = ""
    original_note: str = ""
    versions: List[ContentVersion] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    timestamp: int = Field(description="Last modification time (epoch milliseconds)")
    main_image_url: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("versions")
    @classmethod
    def validate_unique_version_ids(cls, v: List[ContentVersion]) -> List[ContentVersion]:
        """Rejects a project whose version list repeats an id."""
        seen = set()
        for version in v:
            if version.id in seen:
                raise ValueError(f"Duplicate version id '{version.id}' in project")
            seen.add(version.id)
        return v

    def version_ids(self) -> set:
        return {version.id for version in self.versions}


class Draft(BaseModel):
    """An autosaved snapshot of free-text input."""
    id: str
    text: str
    timestamp: int = Field(description="Save time (epoch milliseconds)")

    model_config = {"from_attributes": True}


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


def _require_text(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Note text must not be empty")
    return v


class RefineRequest(BaseModel):
    """Body of POST /api/ai/refine and POST /api/tasks/bulk."""
    raw_note: str = Field(description="Raw captured note to rewrite in several styles")

    @field_validator("raw_note")
    @classmethod
    def validate_raw_note(cls, v: str) -> str:
        return _require_text(v)


class SingleRequest(BaseModel):
    """Body of POST /api/ai/single."""
    core_note: str = Field(description="Context text the new version is based on")

    @field_validator("core_note")
    @classmethod
    def validate_core_note(cls, v: str) -> str:
        return _require_text(v)


class SingleTaskRequest(SingleRequest):
    """Body of POST /api/tasks/single: the new version lands in `project_id`."""
    project_id: str = Field(min_length=1)


class TranscribeRequest(BaseModel):
    """Body of POST /api/ai/transcribe. Audio arrives base64-encoded."""
    base64_data: str = Field(min_length=1)
    mime_type: str = Field(default="audio/webm")


class SaveProjectRequest(BaseModel):
    """Body of POST /api/projects/save (the editor's "save all")."""
    original_note: str = ""
    versions: List[ContentVersion] = Field(min_length=1)
    existing_project_id: Optional[str] = None


class VersionUpdate(BaseModel):
    """Body of PUT /api/projects/{project_id}/versions/{version_id}."""
    title: Optional[str] = None
    content: Optional[str] = None


class AutosaveRequest(BaseModel):
    """Body of POST /api/drafts/autosave."""
    text: str


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class TranscribeResponse(BaseModel):
    text: str = ""


class SaveProjectResponse(BaseModel):
    success: bool = True
    project_id: str


class AutosaveResponse(BaseModel):
    """
    saved=False means the text matched the latest draft and nothing was written.
    """
    saved: bool
    draft: Optional[Draft] = None


class SuccessResponse(BaseModel):
    success: bool = True


class TaskResponse(BaseModel):
    """
    Read-only view of one generation task.

    Exactly one of `versions` (bulk_refine) or `version` (single_addition)
    is set, and only when status is 'completed'.
    """
    id: str
    kind: Literal["bulk_refine", "single_addition"]
    status: Literal["running", "completed", "error", "aborted"]
    project_id: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    persistence_error: Optional[str] = None
    versions: Optional[List[ContentVersion]] = None
    version: Optional[ContentVersion] = None


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint."""
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected | disconnected")
    gemini: str = Field(description="available | unavailable | circuit_open")
    running_tasks: int = Field(description="Generation tasks currently in flight")
    uptime_seconds: float

"""
NoteStudio Backend — Ids and Timestamps
=========================================

What:  Minting of project, version and draft ids plus the epoch-millisecond
       clock used for every `timestamp` field.

Id formats:
    project-<ms>                 new project (save-all without an existing id)
    v-<ms>-<rand>                permanent id assigned when a temp version is saved
    v-<style>-<ms>-<rand>        single version returned by the AI client
    <temp prefix>v-<idx>-<ms>-<rand>   batch version, not yet persisted
    <ms>                         draft

The random suffix keeps ids distinct when several tasks finish within the
same millisecond.
"""

import time
import uuid

from notestudio.config import settings


def now_ms() -> int:
    return int(time.time() * 1000)


def _suffix() -> str:
    return uuid.uuid4().hex[:9]


def new_project_id() -> str:
    return f"project-{now_ms()}"


def new_permanent_version_id() -> str:
    return f"v-{now_ms()}-{_suffix()}"


def new_generated_version_id(style: str) -> str:
    return f"v-{style}-{now_ms()}-{_suffix()}"


def new_temp_version_id(index: int) -> str:
    return f"{settings.temp_id_prefix}v-{index}-{now_ms()}-{_suffix()}"


def new_draft_id() -> str:
    return str(now_ms())


def is_temporary_id(version_id: str) -> bool:
    return version_id.startswith(settings.temp_id_prefix)


def image_url_for(seed: str) -> str:
    """Illustrative image URL derived from a seed string (style + index or time)."""
    return settings.image_url_template.format(seed=seed)

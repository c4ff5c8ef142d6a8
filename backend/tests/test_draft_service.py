"""
NoteStudio Backend — Draft Autosave Tests
"""

import pytest

from notestudio.schemas.studio import Draft
from notestudio.services.draft_service import DraftService


@pytest.mark.asyncio
async def test_first_autosave_writes_a_draft(fake_store):
    draft = await DraftService(fake_store).autosave("buy milk")

    assert draft is not None
    assert draft.text == "buy milk"
    assert list(fake_store.drafts) == [draft.id]


@pytest.mark.asyncio
async def test_unchanged_text_is_not_saved_again(fake_store):
    service = DraftService(fake_store)
    await service.autosave("buy milk")

    assert await service.autosave("buy milk") is None
    assert len(fake_store.drafts) == 1


@pytest.mark.asyncio
async def test_changed_text_is_saved(fake_store):
    fake_store.drafts["1"] = Draft(id="1", text="buy milk", timestamp=1)

    draft = await DraftService(fake_store).autosave("buy milk and eggs")

    assert draft is not None
    assert len(fake_store.drafts) == 2


@pytest.mark.asyncio
async def test_only_the_latest_draft_counts_as_unchanged(fake_store):
    fake_store.drafts["1"] = Draft(id="1", text="same", timestamp=1)
    fake_store.drafts["2"] = Draft(id="2", text="other", timestamp=2)

    assert await DraftService(fake_store).autosave("same") is not None


@pytest.mark.asyncio
async def test_blank_text_is_ignored(fake_store):
    assert await DraftService(fake_store).autosave("   ") is None
    assert fake_store.drafts == {}


@pytest.mark.asyncio
async def test_history_is_pruned_oldest_first(fake_store):
    for i in range(1, 4):
        fake_store.drafts[str(i)] = Draft(id=str(i), text=f"text {i}", timestamp=i)

    draft = await DraftService(fake_store, history_limit=3).autosave("text 4")

    remaining = await fake_store.list_drafts()
    assert [d.id for d in remaining] == [draft.id, "3", "2"]


@pytest.mark.asyncio
async def test_explicit_limit_of_one_keeps_only_the_newest(fake_store):
    fake_store.drafts["1"] = Draft(id="1", text="older", timestamp=1)

    draft = await DraftService(fake_store, history_limit=1).autosave("newer")

    assert list(fake_store.drafts) == [draft.id]


def test_limit_below_one_is_rejected_not_defaulted(fake_store):
    with pytest.raises(ValueError):
        DraftService(fake_store, history_limit=0)

from datetime import timedelta

import pytest

from livefeed.core.entities import UpdateKind
from livefeed.core.errors import ConfirmationRequiredError
from livefeed.processing.summarizer import minimal_narrative, story_from_item
from livefeed.services.story_history import StoryHistory

from conftest import NOW, FixedClock, make_item


def story(item_id: str, title: str, body: str = "", *, agent_type: str = "host", completed_offset: int = 0, priority: float = 0.5):
    item = make_item(item_id, title, body, priority=priority)
    return story_from_item(
        item,
        story_id=f"archived_{item_id}",
        agent_type=agent_type,
        narrative=minimal_narrative(item.raw),
        completed_at=NOW + timedelta(minutes=completed_offset),
    )


class TestLiveItems:
    @pytest.mark.asyncio
    async def test_upsert_roundtrip_keeps_signals_and_lineage(self, database):
        item = make_item("a", "Title", "Body", priority=0.7, categories=("technology", "science"))
        item.thread_id, item.is_update, item.update_kind = "t1", True, UpdateKind.CORRECTION

        await database.upsert_live_item(item)
        [loaded] = await database.get_live_items()

        assert loaded.raw == item.raw
        assert loaded.signals == item.signals
        assert loaded.thread_id == "t1"
        assert loaded.update_kind == UpdateKind.CORRECTION
        assert loaded.added_at == item.added_at

    @pytest.mark.asyncio
    async def test_delete_reports_whether_a_row_existed(self, database):
        await database.upsert_live_item(make_item("a"))

        assert await database.delete_live_item("a") is True
        assert await database.delete_live_item("a") is False
        assert await database.count_live_items() == 0


class TestStories:
    @pytest.mark.asyncio
    async def test_add_story_is_idempotent(self, database):
        assert await database.add_story(story("a", "First")) is True
        assert await database.add_story(story("a", "First")) is False
        assert await database.count_stories() == 1

    @pytest.mark.asyncio
    async def test_search_matches_every_word(self, database):
        await database.add_story(story("a", "Rocket launch delayed", "Weather over the pad"))
        await database.add_story(story("b", "Rocket engine test", "Static fire went well"))

        assert [s.title for s in await database.search_stories("rocket weather")] == ["Rocket launch delayed"]
        assert len(await database.search_stories("ROCKET")) == 2
        assert await database.search_stories("   ") == []

    @pytest.mark.asyncio
    async def test_query_by_field_is_whitelisted(self, database):
        await database.add_story(story("a", "One", agent_type="editor"))
        await database.add_story(story("b", "Two"))

        editors = await database.query_stories("agent_type", "editor")
        assert [s.story_id for s in editors] == ["archived_a"]

        with pytest.raises(ValueError):
            await database.query_stories("title; DROP TABLE story_history", "x")

    @pytest.mark.asyncio
    async def test_clear_requires_confirmation(self, database):
        await database.add_story(story("a", "One"))

        with pytest.raises(ConfirmationRequiredError):
            await database.clear_history()
        assert await database.count_stories() == 1

        assert await database.clear_history(confirm=True) == 1
        assert await database.count_stories() == 0


class TestStoryHistory:
    @pytest.mark.asyncio
    async def test_recent_and_stats(self, database):
        history = StoryHistory(database, clock=FixedClock(NOW + timedelta(hours=2)))
        await history.initialize()
        await history.add(story("old", "Old story", completed_offset=-60 * 30))
        await history.add(story("new", "New story words here", agent_type="editor"))

        recent = await history.get_recent(hours=24)
        assert [s.story_id for s in recent] == ["archived_new"]

        newest_first = await history.get_stories(limit=10)
        assert [s.story_id for s in newest_first] == ["archived_new", "archived_old"]

        stats = await history.stats()
        assert stats["total_stories"] == 2
        assert stats["stories_last_24h"] == 1
        assert stats["by_agent"] == {"host": 1, "editor": 1}
        assert stats["by_priority"] == {"low": 2}
        assert stats["average_word_count"] == 3

    @pytest.mark.asyncio
    async def test_clear_all_without_confirm_deletes_nothing(self, database):
        history = StoryHistory(database)
        await history.add(story("a", "One"))

        with pytest.raises(ConfirmationRequiredError):
            await history.clear_all()
        assert len(await history.get_stories()) == 1

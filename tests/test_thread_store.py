from datetime import timedelta

import pytest

from livefeed.core.entities import DecisionType, Thread, UpdateKind
from livefeed.core.errors import ThreadArchivedError
from livefeed.processing.matcher import ThreadMatcher
from livefeed.services.live_feed import LiveFeedSlot
from livefeed.services.thread_store import ThreadStore

from conftest import NOW, FixedClock, make_item


def singleton(item_id: str = "a", thread_id: str = "t1") -> Thread:
    return Thread(
        id=thread_id,
        title="Original",
        summary="Original summary",
        tone="analysis",
        priority="low",
        created_at=NOW,
        last_update_at=NOW,
        last_published_at=NOW,
        member_ids=[item_id],
        priority_total=0.5,
    )


class TestThreadStore:
    @pytest.mark.asyncio
    async def test_append_is_ordered_and_refreshes_update_time(self):
        clock = FixedClock()
        store = ThreadStore(clock=clock)
        await store.register(singleton())

        clock.advance(minutes=3)
        await store.append("t1", make_item("b", priority=0.9), UpdateKind.FOLLOW_UP)
        clock.advance(minutes=3)
        await store.append("t1", make_item("c", priority=0.3), UpdateKind.CLARIFICATION)

        thread = store.get("t1")
        assert thread.member_ids == ["a", "b", "c"]
        assert thread.last_update_at == NOW + timedelta(minutes=6)
        assert thread.average_priority == pytest.approx((0.5 + 0.9 + 0.3) / 3)
        assert store.thread_for("c") is thread

    @pytest.mark.asyncio
    async def test_duplicate_member_is_ignored(self):
        store = ThreadStore()
        await store.register(singleton())
        await store.append("t1", make_item("b"), UpdateKind.FOLLOW_UP)
        await store.append("t1", make_item("b"), UpdateKind.FOLLOW_UP)

        assert store.get("t1").member_ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_summary_only_replaced_when_given(self):
        store = ThreadStore()
        await store.register(singleton())

        await store.append("t1", make_item("b"), UpdateKind.FOLLOW_UP)
        assert store.get("t1").summary == "Original summary"

        await store.append("t1", make_item("c"), UpdateKind.CORRECTION, title="Fixed", summary="Fixed summary")
        assert store.get("t1").title == "Fixed"
        assert store.get("t1").summary == "Fixed summary"

    @pytest.mark.asyncio
    async def test_archived_thread_rejects_members(self):
        store = ThreadStore()
        await store.register(singleton())

        assert await store.archive("t1") is True
        assert await store.archive("t1") is False

        with pytest.raises(ThreadArchivedError):
            await store.append("t1", make_item("b"), UpdateKind.FOLLOW_UP)
        assert store.get("t1").member_ids == ["a"]
        assert store.active() == []
        assert [t.id for t in store.archived()] == ["t1"]

    @pytest.mark.asyncio
    async def test_register_twice_fails(self):
        store = ThreadStore()
        await store.register(singleton())
        with pytest.raises(ValueError):
            await store.register(singleton())

    @pytest.mark.asyncio
    async def test_stale_and_stats(self):
        clock = FixedClock()
        store = ThreadStore(clock=clock)
        await store.register(singleton("a", "old"))
        await store.register(singleton("b", "fresh"))
        clock.advance(hours=30)
        await store.append("fresh", make_item("c"), UpdateKind.FOLLOW_UP)

        stale = store.stale(NOW + timedelta(hours=1))
        assert [t.id for t in stale] == ["old"]

        stats = store.stats()
        assert stats["active_threads"] == 2
        assert stats["threaded_items"] == 3
        assert stats["update_items"] == 1

    @pytest.mark.asyncio
    async def test_archive_skips_threads_updated_since_they_went_stale(self):
        clock = FixedClock()
        store = ThreadStore(clock=clock)
        await store.register(singleton())
        clock.advance(hours=30)
        await store.append("t1", make_item("b"), UpdateKind.FOLLOW_UP)

        assert await store.archive("t1", stale_before=NOW + timedelta(hours=1)) is False
        assert store.get("t1").is_active


class TestPruning:
    @pytest.mark.asyncio
    async def test_prune_forgets_archived_threads_without_live_members(self):
        store = ThreadStore(forget_window=1)
        await store.register(singleton("a", "gone"))
        await store.register(singleton("b", "kept"))
        await store.register(singleton("c", "active"))
        await store.archive("gone")
        await store.archive("kept")

        assert store.prune({"b", "c"}) == 1
        assert store.get("gone") is None
        assert store.thread_for("a") is None
        assert store.known_thread_id("a") == "gone"
        assert "gone" not in store._locks
        assert store.get("kept") is not None
        assert store.get("active") is not None

        assert store.prune(set()) == 1
        assert [t.id for t in store.active()] == ["active"]
        # Only the most recent pruned id fits the window
        assert store.known_thread_id("b") == "kept"
        assert store.known_thread_id("a") is None

    @pytest.mark.asyncio
    async def test_pruned_items_still_match_as_duplicates(self):
        store = ThreadStore()
        await store.register(singleton("a", "gone"))
        await store.archive("gone")
        store.prune(set())

        decision = await ThreadMatcher(store).match(make_item("a", "Original"))

        assert decision.decision == DecisionType.DUPLICATE
        assert decision.thread_id == "gone"
        assert store.active() == []


class TestLiveFeedSlot:
    @pytest.mark.asyncio
    async def test_item_lock_is_dropped_once_the_item_leaves(self):
        slot = LiveFeedSlot()
        await slot.add(make_item("a"))
        assert "a" in slot._locks

        await slot.remove("a")

        assert "a" not in slot
        assert slot._locks == {}

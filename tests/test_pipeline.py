import asyncio
from datetime import timedelta

import pytest

from livefeed.core.entities import UpdateKind
from livefeed.delivery.base import CallbackObserver
from livefeed.ingestion.queue import IngestionQueue
from livefeed.processing.enrichment import Enricher
from livefeed.processing.matcher import ThreadMatcher
from livefeed.services.config import PipelineConfig
from livefeed.services.live_feed import LiveFeedSlot
from livefeed.services.thread_store import ThreadStore
from livefeed.workflows.pipeline import LiveFeedPipeline

from conftest import NOW, ConstantScoringModel, FakeSource, make_item, make_raw

A = make_raw("a", "AI Breakthrough Announced", score=300, created_at=NOW)
B = make_raw(
    "b",
    "AI Breakthrough Follow-up: Implementation Details Released",
    "Following up on the AI breakthrough announced earlier, the team released implementation details.",
    score=200,
    created_at=NOW + timedelta(minutes=5),
)
C = make_raw("c", "AI Breakthrough Announced!", score=100, created_at=NOW + timedelta(minutes=6))
NSFW = make_raw("n", "Something else entirely", score=1000, over_18=True)


def make_pipeline(source, database) -> LiveFeedPipeline:
    store = ThreadStore()
    return LiveFeedPipeline(
        source=source,
        database=database,
        slot=LiveFeedSlot(),
        enricher=Enricher(ConstantScoringModel()),
        matcher=ThreadMatcher(store),
    )


def fast_config(**kwargs) -> PipelineConfig:
    kwargs.setdefault("origins", ["technology"])
    return PipelineConfig(publishing_interval_ms=0, fetch_interval_seconds=60, stop_grace_seconds=0.2, **kwargs)


async def wait_for(condition, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_new_thread_update_and_duplicate(self, database):
        source = FakeSource({"technology": [A, B, C, NSFW]})
        pipeline = make_pipeline(source, database)
        published, errors, loading = [], [], []

        started = await pipeline.start(published.append, errors.append, loading.append, fast_config())
        assert started
        await wait_for(lambda: len(published) == 2 and pipeline.duplicates == 1)
        assert await pipeline.stop() is True

        assert [item.id for item in published] == ["a", "b"]
        a, b = published
        assert not a.is_update
        assert b.is_update and b.update_kind == UpdateKind.FOLLOW_UP
        assert b.thread_id == a.thread_id
        assert pipeline.matcher.store.get(a.thread_id).member_ids == ["a", "b"]

        assert "n" not in pipeline.slot
        assert "c" not in pipeline.slot
        assert await database.count_live_items() == 2
        assert errors == []
        assert loading[:2] == [True, False]
        assert source.calls[0] == ("technology", "new", 10)

    @pytest.mark.asyncio
    async def test_no_origins_is_a_reported_no_op(self, database):
        pipeline = make_pipeline(FakeSource(), database)
        errors = []

        started = await pipeline.start(on_error=errors.append, config=PipelineConfig(origins=[]))

        assert started is False
        assert not pipeline.is_running
        assert len(errors) == 1
        assert await pipeline.stop() is True

    @pytest.mark.asyncio
    async def test_source_failure_is_reported_and_pipeline_keeps_running(self, database):
        pipeline = make_pipeline(FakeSource(failing=("technology",)), database)
        errors = []

        await pipeline.start(on_error=errors.append, config=fast_config())
        await wait_for(lambda: errors)

        assert pipeline.is_running
        assert "rate limited" in errors[0]
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_unexpected_source_error_does_not_stop_fetching(self, database):
        class BrokenSource(FakeSource):
            async def fetch(self, origin, sort="hot", limit=10):
                self.calls.append((origin, sort, limit))
                raise RuntimeError("unexpected payload")

        source = BrokenSource()
        pipeline = make_pipeline(source, database)
        errors = []
        config = PipelineConfig(
            origins=["technology"], publishing_interval_ms=0, fetch_interval_seconds=0.01, stop_grace_seconds=0.2
        )

        await pipeline.start(on_error=errors.append, config=config)
        await wait_for(lambda: len(source.calls) >= 3)

        assert pipeline.is_running
        assert len(errors) >= 2
        assert all("unexpected payload" not in message for message in errors)
        assert await pipeline.stop() is True

    @pytest.mark.asyncio
    async def test_stop_gives_up_on_stuck_callback(self, database):
        pipeline = make_pipeline(FakeSource({"technology": [A]}), database)
        entered = asyncio.Event()

        async def on_item(item):
            entered.set()
            await asyncio.Event().wait()

        await pipeline.start(on_item, config=fast_config())
        await asyncio.wait_for(entered.wait(), timeout=2)

        assert await pipeline.stop() is False
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_origins_rotate_round_robin(self, database):
        source = FakeSource()
        pipeline = make_pipeline(source, database)
        pipeline.config = fast_config(origins=["one", "two"], sorts=["new", "hot"])
        pipeline.queue = IngestionQueue()

        for _ in range(4):
            await pipeline.fetch_once()

        assert [(o, s) for o, s, _ in source.calls] == [
            ("one", "new"), ("two", "new"), ("one", "hot"), ("two", "hot"),
        ]


class TestProcess:
    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_item_in_memory(self, database):
        async def broken_upsert(item):
            raise RuntimeError("database is locked")

        database.upsert_live_item = broken_upsert
        pipeline = make_pipeline(FakeSource(), database)
        errors = []
        pipeline.observer = CallbackObserver(on_error=errors.append)

        item = await pipeline.process(A)

        assert item is not None
        assert "a" in pipeline.slot
        assert pipeline.persist_failures == 1
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_observer_failure_leaves_item_live(self, database):
        def on_item(item):
            raise RuntimeError("render failed")

        pipeline = make_pipeline(FakeSource(), database)
        pipeline.observer = CallbackObserver(on_item=on_item)

        with pytest.raises(RuntimeError):
            await pipeline.process(A)

        assert "a" in pipeline.slot
        assert pipeline.published == 1
        assert await database.count_live_items() == 1

    @pytest.mark.asyncio
    async def test_restore_loads_live_items_and_threads(self, database):
        first = make_item("a", "AI Breakthrough Announced", added_at=NOW)
        first.thread_id = "saved"
        await database.upsert_live_item(first)

        pipeline = make_pipeline(FakeSource(), database)
        assert await pipeline.restore() == 1

        assert "a" in pipeline.slot
        assert pipeline.matcher.store.get("saved").member_ids == ["a"]

        # A near copy of a restored item is a duplicate
        assert await pipeline.process(C) is None

import asyncio

import pytest

from livefeed.ingestion.queue import IngestionQueue

from conftest import make_raw


class FakeTimer:
    """Monotonic clock advanced only by the queue's own sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_queue(**kwargs) -> IngestionQueue:
    kwargs.setdefault("interval_ms", 0)
    return IngestionQueue(**kwargs)


class TestEnqueue:
    def test_preserves_order_across_calls(self):
        queue = make_queue()
        queue.enqueue([make_raw("a"), make_raw("b")])
        queue.enqueue([make_raw("c")])

        assert len(queue) == 3
        assert [e.item.id for e in queue._buffer] == ["a", "b", "c"]

    def test_duplicates_in_buffer_are_dropped(self):
        queue = make_queue()
        accepted = queue.enqueue([make_raw("a"), make_raw("a"), make_raw("b")])
        accepted += queue.enqueue([make_raw("b")])

        assert accepted == 2
        assert len(queue) == 2

    def test_overflow_trims_newest(self):
        queue = make_queue(max_size=3)
        accepted = queue.enqueue([make_raw(str(i)) for i in range(5)])

        assert accepted == 3
        assert [e.item.id for e in queue._buffer] == ["0", "1", "2"]
        # Trimmed ids are not remembered
        assert not queue.is_known("3")


class TestDelivery:
    @pytest.mark.asyncio
    async def test_no_duplicate_delivery_within_window(self):
        queue = make_queue()
        delivered = []
        queue.set_on_ready(lambda item: delivered.append(item.id))

        queue.enqueue([make_raw("a"), make_raw("b")])
        await queue.process_next()
        # "a" was delivered, "b" is buffered: both are rejected
        queue.enqueue([make_raw("a"), make_raw("b"), make_raw("c")])
        while len(queue):
            await queue.process_next()

        assert delivered == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_reset_window_allows_redelivery(self):
        queue = make_queue()
        delivered = []
        queue.set_on_ready(lambda item: delivered.append(item.id))

        queue.enqueue([make_raw("a")])
        await queue.process_next()
        queue.reset_window()
        queue.enqueue([make_raw("a")])
        await queue.process_next()

        assert delivered == ["a", "a"]

    @pytest.mark.asyncio
    async def test_failing_callback_drops_entry_and_continues(self):
        queue = make_queue()
        delivered = []

        async def on_ready(item):
            if item.id == "bad":
                raise RuntimeError("boom")
            delivered.append(item.id)

        queue.set_on_ready(on_ready)
        queue.enqueue([make_raw("bad"), make_raw("good")])
        await queue.process_next()
        await queue.process_next()

        assert delivered == ["good"]
        assert queue.failed_count == 1
        assert queue.delivered_count == 1
        # Not retried
        assert queue.enqueue([make_raw("bad")]) == 0

    @pytest.mark.asyncio
    async def test_dequeue_empty_returns_none(self):
        queue = make_queue()
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_dequeue_is_rate_limited(self):
        timer = FakeTimer()
        queue = IngestionQueue(interval_ms=2000, clock=timer.clock, sleep=timer.sleep)
        queue.enqueue([make_raw("a"), make_raw("b"), make_raw("c")])

        first = await queue.dequeue()
        second = await queue.dequeue()
        third = await queue.dequeue()

        assert [first.id, second.id, third.id] == ["a", "b", "c"]
        assert timer.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_run_loop_delivers_until_stopped(self):
        queue = make_queue()
        delivered = []
        queue.set_on_ready(lambda item: delivered.append(item.id))

        task = asyncio.create_task(queue.run())
        queue.enqueue([make_raw("a"), make_raw("b")])
        for _ in range(50):
            if len(delivered) == 2:
                break
            await asyncio.sleep(0.01)

        queue.stop()
        await asyncio.wait_for(task, timeout=1)

        assert delivered == ["a", "b"]
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_drain_times_out_on_stuck_callback(self):
        queue = make_queue()
        release = asyncio.Event()

        async def on_ready(item):
            await release.wait()

        queue.set_on_ready(on_ready)
        queue.enqueue([make_raw("a")])
        task = asyncio.create_task(queue.process_next())
        await asyncio.sleep(0.01)

        assert await queue.drain(0.05) is False
        release.set()
        await task
        assert await queue.drain(0.05) is True

    def test_clear_empties_buffer_and_window(self):
        queue = make_queue()
        queue.enqueue([make_raw("a"), make_raw("b")])

        assert queue.clear() == 2
        assert len(queue) == 0
        assert queue.status()["queue_length"] == 0

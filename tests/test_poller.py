"""Tests for the background poller and its single-slot snapshot channel."""

import threading
import time
from unittest.mock import MagicMock

from dstui.errors import TransportError
from dstui.models import Snapshot, Task, TaskStatus
from dstui.poller import FAILURE_THRESHOLD, LatestSnapshot, Poller


def _task(task_id: str) -> Task:
    return Task(id=task_id, name=task_id, status=TaskStatus.DOWNLOADING, size_total=10, size_downloaded=5, transfer_rate=1)


class TestLatestSnapshot:
    def test_take_returns_each_snapshot_once(self):
        channel = LatestSnapshot()
        assert channel.take() is None

        first = Snapshot(sequence=1)
        channel.publish(first)
        assert channel.take() is first
        assert channel.take() is None
        assert channel.peek() is first

    def test_publish_overwrites_unread_snapshot(self):
        channel = LatestSnapshot()
        channel.publish(Snapshot(sequence=1))
        channel.publish(Snapshot(sequence=2))
        assert channel.take().sequence == 2


class TestPollOnce:
    def test_success_replaces_snapshot(self):
        source = MagicMock()
        source.list_tasks.return_value = [_task("a"), _task("b")]
        channel = LatestSnapshot()
        poller = Poller(source, channel)

        snapshot = poller.poll_once()

        assert channel.take() is snapshot
        assert [t.id for t in snapshot.tasks] == ["a", "b"]
        assert snapshot.fetch_error is None
        assert snapshot.fetched_at is not None

    def test_failures_keep_last_list_until_recovery(self):
        source = MagicMock()
        source.list_tasks.side_effect = [
            [_task("a")],
            TransportError("timed out"),
            TransportError("timed out"),
            TransportError("timed out"),
            [_task("a"), _task("b")],
        ]
        channel = LatestSnapshot()
        poller = Poller(source, channel)

        good = poller.poll_once()
        for attempt in range(1, 4):
            failed = poller.poll_once()
            assert failed.tasks == good.tasks
            assert failed.fetched_at == good.fetched_at
            assert failed.fetch_error == "timed out"
            assert failed.consecutive_failures == attempt
        assert failed.consecutive_failures >= FAILURE_THRESHOLD

        recovered = poller.poll_once()
        assert recovered.fetch_error is None
        assert recovered.consecutive_failures == 0
        assert [t.id for t in recovered.tasks] == ["a", "b"]

    def test_unexpected_error_still_publishes_a_failure(self):
        source = MagicMock()
        source.list_tasks.side_effect = OverflowError("cannot convert float infinity to integer")
        channel = LatestSnapshot()
        poller = Poller(source, channel)

        snapshot = poller.poll_once()

        assert channel.take() is snapshot
        assert snapshot.fetch_error.startswith("Unexpected error")
        assert snapshot.consecutive_failures == 1

    def test_listeners_are_called_after_publish(self):
        source = MagicMock()
        source.list_tasks.return_value = []
        channel = LatestSnapshot()
        poller = Poller(source, channel)
        seen = []
        poller.add_listener(lambda s: seen.append(channel.peek() is s))

        poller.poll_once()

        assert seen == [True]

    def test_refresh_during_fetch_is_coalesced(self):
        release = threading.Event()
        started = threading.Event()

        def slow_list():
            started.set()
            release.wait(timeout=5)
            return [_task("a")]

        source = MagicMock()
        source.list_tasks.side_effect = slow_list
        poller = Poller(source, LatestSnapshot())

        worker = threading.Thread(target=poller.poll_once)
        worker.start()
        assert started.wait(timeout=5)

        assert poller.fetching
        assert poller.request_refresh() is False
        assert poller.poll_once() is None

        release.set()
        worker.join(timeout=5)
        assert source.list_tasks.call_count == 1
        assert poller.request_refresh() is True


class TestPollingThread:
    def test_polls_until_stopped(self):
        source = MagicMock()
        source.list_tasks.return_value = [_task("a")]
        channel = LatestSnapshot()
        poller = Poller(source, channel, interval=1.0)
        published = threading.Event()
        poller.add_listener(lambda s: published.set())

        poller.start()
        try:
            assert published.wait(timeout=5)
            published.clear()
            poller.request_refresh()
            assert published.wait(timeout=5)
        finally:
            poller.stop()

        assert source.list_tasks.call_count >= 2
        assert channel.peek().tasks[0].id == "a"

    def test_refresh_requested_right_after_a_fetch_is_kept(self):
        source = MagicMock()
        source.list_tasks.return_value = [_task("a")]
        poller = Poller(source, LatestSnapshot(), interval=60.0)
        second = threading.Event()

        def on_snapshot(snapshot):
            if source.list_tasks.call_count == 1:
                poller.request_refresh()
            else:
                second.set()

        poller.add_listener(on_snapshot)
        poller.start()
        try:
            assert second.wait(timeout=5)
        finally:
            poller.stop()

    def test_interval_has_a_floor(self):
        poller = Poller(MagicMock(), LatestSnapshot())
        poller.interval = 0.01
        assert poller.interval == 1.0

    def test_stop_does_not_wait_for_fetch(self):
        release = threading.Event()
        source = MagicMock()
        source.list_tasks.side_effect = lambda: release.wait(timeout=5) and []
        channel = LatestSnapshot()
        poller = Poller(source, channel)

        poller.start()
        started = time.monotonic()
        poller.stop()
        assert time.monotonic() - started < 1
        release.set()

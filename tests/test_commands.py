"""Tests for the background command dispatcher."""

import threading
from unittest.mock import MagicMock

import pytest

from dstui.commands import REFRESH_IN_FLIGHT, CommandDispatcher
from dstui.errors import ApiError, AuthError, AuthErrorKind, CommandError
from dstui.models import Command, CommandKind, Credentials


class _Collector:
    """Collects outcomes; register before submitting."""

    def __init__(self, dispatcher: CommandDispatcher, count: int = 1):
        self.count = count
        self.outcomes = []
        self.done = threading.Event()
        dispatcher.add_listener(self._on_outcome)

    def _on_outcome(self, outcome):
        self.outcomes.append(outcome)
        if len(self.outcomes) >= self.count:
            self.done.set()

    def wait(self, timeout: float = 5.0) -> list:
        assert self.done.wait(timeout=timeout)
        return self.outcomes


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.session.credentials = Credentials(host="nas", scheme="https", username="admin", secret="s")
    return client


class TestCommandDispatcher:
    def test_pause_then_resume_on_one_task_run_in_order(self, client):
        release = threading.Event()
        order = []

        def pause(task_id):
            order.append("pause-start")
            release.wait(timeout=5)
            order.append("pause-end")

        client.pause.side_effect = pause
        client.resume.side_effect = lambda task_id: order.append("resume")
        dispatcher = CommandDispatcher(client)
        finished = threading.Event()
        outcomes = []

        def collect(outcome):
            outcomes.append(outcome)
            if len(outcomes) == 2:
                finished.set()

        dispatcher.add_listener(collect)

        assert dispatcher.submit(Command(CommandKind.PAUSE, task_id="7")) is True
        assert dispatcher.submit(Command(CommandKind.RESUME, task_id="7")) is False
        assert dispatcher.pending_for("7") == 2

        release.set()
        assert finished.wait(timeout=5)
        dispatcher.shutdown()

        assert order == ["pause-start", "pause-end", "resume"]
        assert [o.command.kind for o in outcomes] == [CommandKind.PAUSE, CommandKind.RESUME]
        assert all(o.ok for o in outcomes)

    def test_commands_for_other_tasks_are_not_held_back(self, client):
        release = threading.Event()
        client.pause.side_effect = lambda task_id: release.wait(timeout=5) if task_id == "1" else None
        dispatcher = CommandDispatcher(client)
        done = threading.Event()
        dispatcher.add_listener(lambda o: done.set() if o.command.task_id == "2" else None)

        dispatcher.submit(Command(CommandKind.PAUSE, task_id="1"))
        assert dispatcher.submit(Command(CommandKind.PAUSE, task_id="2")) is True

        assert done.wait(timeout=5)
        release.set()
        dispatcher.shutdown()

    def test_failed_delete_reports_not_found(self, client):
        client.delete.side_effect = CommandError("delete", "7", ApiError.from_code(404))
        request_refresh = MagicMock()
        dispatcher = CommandDispatcher(client, request_refresh=request_refresh)
        collector = _Collector(dispatcher)

        dispatcher.submit(Command(CommandKind.DELETE, task_id="7", task_name="seven"))
        outcomes = collector.wait()
        dispatcher.shutdown()

        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert not outcome.ok
        assert "Delete failed for 7" in outcome.message
        request_refresh.assert_not_called()

    def test_successful_mutation_requests_refresh(self, client):
        request_refresh = MagicMock()
        dispatcher = CommandDispatcher(client, request_refresh=request_refresh)
        collector = _Collector(dispatcher)

        dispatcher.submit(Command(CommandKind.RESUME, task_id="3", task_name="movie"))
        outcomes = collector.wait()
        dispatcher.shutdown()

        assert outcomes[0].ok
        assert outcomes[0].message == "Resumed movie"
        request_refresh.assert_called_once()

    def test_refresh_goes_straight_to_the_poller(self, client):
        request_refresh = MagicMock()
        dispatcher = CommandDispatcher(client, request_refresh=request_refresh)

        dispatcher.submit(Command(CommandKind.REFRESH))

        request_refresh.assert_called_once()
        assert dispatcher.drain() == []
        dispatcher.shutdown()

    def test_refresh_while_poller_is_busy_reports_it(self, client):
        dispatcher = CommandDispatcher(client, request_refresh=MagicMock(return_value=False))

        dispatcher.submit(Command(CommandKind.REFRESH))

        (outcome,) = dispatcher.drain()
        assert outcome.ok
        assert outcome.message == REFRESH_IN_FLIGHT
        dispatcher.shutdown()

    def test_authenticate_outcome(self, client):
        credentials = Credentials(host="nas", scheme="https", username="admin", secret="s")
        dispatcher = CommandDispatcher(client)
        collector = _Collector(dispatcher)

        dispatcher.submit(Command(CommandKind.AUTHENTICATE, credentials=credentials))
        outcomes = collector.wait()
        dispatcher.shutdown()

        client.session.authenticate.assert_called_once_with(credentials)
        assert outcomes[0].ok
        assert outcomes[0].message == "Logged in as admin"

    def test_rejected_login_outcome_carries_the_error(self, client):
        error = AuthError(AuthErrorKind.INVALID_CREDENTIALS, "No such account or incorrect password", 400)
        client.session.authenticate.side_effect = error
        dispatcher = CommandDispatcher(client)
        collector = _Collector(dispatcher)

        dispatcher.submit(Command(CommandKind.AUTHENTICATE))
        outcomes = collector.wait()
        dispatcher.shutdown()

        assert outcomes[0].error is error
        assert not outcomes[0].ok

    def test_unexpected_exception_still_produces_an_outcome(self, client):
        client.pause.side_effect = RuntimeError("boom")
        dispatcher = CommandDispatcher(client)
        collector = _Collector(dispatcher, count=2)

        dispatcher.submit(Command(CommandKind.PAUSE, task_id="1"))
        dispatcher.submit(Command(CommandKind.RESUME, task_id="1"))
        outcomes = collector.wait()
        dispatcher.shutdown()

        assert [o.ok for o in outcomes] == [False, True]
        assert "boom" in outcomes[0].message

    def test_submit_after_shutdown_is_ignored(self, client):
        dispatcher = CommandDispatcher(client)
        dispatcher.shutdown()
        assert dispatcher.submit(Command(CommandKind.PAUSE, task_id="1")) is False
        client.pause.assert_not_called()

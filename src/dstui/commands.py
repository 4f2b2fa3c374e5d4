"""Runs UI commands in the background and reports their outcomes."""

import logging
import queue
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .api import DownloadStationClient
from .errors import DstuiError
from .models import Command, CommandKind, CommandOutcome

logger = logging.getLogger(__name__)

REFRESH_IN_FLIGHT = "Refresh already in progress"

_PAST_TENSE = {
    CommandKind.PAUSE: "Paused",
    CommandKind.RESUME: "Resumed",
    CommandKind.DELETE: "Deleted",
}


class CommandDispatcher:
    """Executes commands on a thread pool without blocking the UI loop.

    Mutating commands (pause/resume/delete) for the same task id run one at a
    time in submission order: the next one is only dispatched after the
    previous one's outcome has been published. Both are applied, nothing is
    coalesced.
    """

    def __init__(
        self,
        client: DownloadStationClient,
        request_refresh: Callable[[], object] | None = None,
        max_workers: int = 4,
    ):
        self._client = client
        self._request_refresh = request_refresh
        self._listeners: list[Callable[[CommandOutcome], None]] = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dstui-cmd")
        self._outcomes: queue.SimpleQueue[CommandOutcome] = queue.SimpleQueue()
        self._lock = threading.Lock()
        self._per_task: dict[str, deque[Command]] = {}
        self._closed = False

    def add_listener(self, listener: Callable[[CommandOutcome], None]) -> None:
        """Register a callback run (on a worker thread) after each outcome."""
        self._listeners.append(listener)

    def submit(self, command: Command) -> bool:
        """Queue a command. Returns True if it was dispatched right away."""
        if self._closed:
            return False

        if command.kind is CommandKind.REFRESH:
            if self._request_refresh is not None and self._request_refresh() is False:
                # The poller is mid-fetch; its result will serve this request
                self._publish(CommandOutcome(command, True, REFRESH_IN_FLIGHT))
            return True

        if command.kind.mutates and command.task_id:
            with self._lock:
                pending = self._per_task.setdefault(command.task_id, deque())
                pending.append(command)
                if len(pending) > 1:
                    logger.debug("Queued %s behind %d pending command(s)", command.describe(), len(pending) - 1)
                    return False

        self._dispatch(command)
        return True

    def pending_for(self, task_id: str) -> int:
        """Number of mutating commands queued or running for a task."""
        with self._lock:
            return len(self._per_task.get(task_id, ()))

    def drain(self) -> list[CommandOutcome]:
        """Return every outcome published since the last drain."""
        outcomes = []
        while True:
            try:
                outcomes.append(self._outcomes.get_nowait())
            except queue.Empty:
                return outcomes

    def shutdown(self) -> None:
        """Abandon queued and running commands without waiting for them."""
        with self._lock:
            self._closed = True
            self._per_task.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _dispatch(self, command: Command) -> None:
        try:
            self._executor.submit(self._run, command)
        except RuntimeError:
            logger.debug("Executor closed, dropping %s", command.describe())

    def _run(self, command: Command) -> None:
        try:
            outcome = self._execute(command)
        except Exception as exc:
            logger.exception("Command %s crashed", command.describe())
            outcome = CommandOutcome(command, False, f"{command.describe()} failed: {exc}", error=exc)
        self._publish(outcome)

        if command.kind.mutates and command.task_id:
            with self._lock:
                pending = self._per_task.get(command.task_id)
                if pending:
                    pending.popleft()
                next_command = pending[0] if pending else None
                if pending is not None and not pending:
                    del self._per_task[command.task_id]
                if self._closed:
                    next_command = None
            if next_command is not None:
                self._dispatch(next_command)

    def _publish(self, outcome: CommandOutcome) -> None:
        self._outcomes.put(outcome)
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.debug("Outcome listener failed", exc_info=True)

    def _execute(self, command: Command) -> CommandOutcome:
        kind = command.kind
        label = command.task_name or command.task_id or ""
        try:
            if kind is CommandKind.AUTHENTICATE:
                token = self._client.session.authenticate(command.credentials)
                self._refresh()
                username = self._client.session.credentials.username
                return CommandOutcome(command, True, f"Logged in as {username}", result=token)
            if kind is CommandKind.FETCH_DETAIL:
                detail = self._client.task_detail(command.task_id)
                return CommandOutcome(command, True, f"Loaded {label}", result=detail)
            if kind is CommandKind.FETCH_SERVER_INFO:
                info = self._client.server_info()
                return CommandOutcome(command, True, "Loaded server settings", result=info)
            if kind is CommandKind.PAUSE:
                self._client.pause(command.task_id)
            elif kind is CommandKind.RESUME:
                self._client.resume(command.task_id)
            elif kind is CommandKind.DELETE:
                self._client.delete(command.task_id)
            else:
                raise ValueError(f"Unsupported command: {kind}")
        except DstuiError as exc:
            logger.warning("Command %s failed: %s", command.describe(), exc)
            return CommandOutcome(command, False, str(exc), error=exc)

        self._refresh()
        return CommandOutcome(command, True, f"{_PAST_TENSE[kind]} {label}")

    def _refresh(self) -> None:
        if self._request_refresh is not None:
            self._request_refresh()

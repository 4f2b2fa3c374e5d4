"""Background polling of the task list."""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Protocol

from .errors import DstuiError
from .models import Snapshot, Task

logger = logging.getLogger(__name__)

# Consecutive failed polls after which the operator is alerted
FAILURE_THRESHOLD = 3


class TaskSource(Protocol):
    def list_tasks(self) -> list[Task]: ...


class LatestSnapshot:
    """Single-slot channel that always holds the most recent Snapshot.

    Publishing overwrites whatever the reader has not taken yet.
    """

    def __init__(self, initial: Snapshot | None = None):
        self._lock = threading.Lock()
        self._value = initial or Snapshot()
        self._fresh = False

    def publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._value = snapshot
            self._fresh = True

    def take(self) -> Snapshot | None:
        """Return the latest snapshot if it has not been taken yet, else None."""
        with self._lock:
            if not self._fresh:
                return None
            self._fresh = False
            return self._value

    def peek(self) -> Snapshot:
        with self._lock:
            return self._value


class Poller:
    """Fetches the task list every ``interval`` seconds on its own thread.

    A manual refresh requested while a fetch is in flight is folded into that
    fetch. A failed fetch republishes the previous tasks with ``fetch_error``
    set, so the list never blanks out on a transient error.
    """

    def __init__(
        self,
        source: TaskSource,
        channel: LatestSnapshot,
        interval: float = 5.0,
    ):
        self._source = source
        self._channel = channel
        self._interval = interval
        self._listeners: list[Callable[[Snapshot], None]] = []
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._fetching = False
        self._started_seq = 0
        self._published_seq = 0
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, seconds: float) -> None:
        self._interval = max(1.0, seconds)

    def add_listener(self, listener: Callable[[Snapshot], None]) -> None:
        """Register a callback run (on the poller thread) after each publish."""
        self._listeners.append(listener)

    @property
    def fetching(self) -> bool:
        return self._fetching

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="dstui-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling. Does not wait for an in-flight fetch."""
        self._stopped.set()
        self._wake.set()

    def request_refresh(self) -> bool:
        """Ask for a fetch now. Returns False if one is already in flight."""
        with self._lock:
            if self._fetching:
                return False
        self._wake.set()
        return True

    def _run(self) -> None:
        while not self._stopped.is_set():
            # Cleared before the fetch so a request_refresh() during it is kept
            self._wake.clear()
            try:
                self.poll_once()
            except Exception:
                logger.exception("Unexpected error while polling")  # keep polling
            self._wake.wait(timeout=self._interval)

    def poll_once(self) -> Snapshot | None:
        """Run one poll cycle and publish its snapshot.

        Returns the published snapshot, or None when the fetch was coalesced
        into one already running or its result was superseded.
        """
        with self._lock:
            if self._fetching:
                return None
            self._fetching = True
            self._started_seq += 1
            seq = self._started_seq

        try:
            try:
                tasks = self._source.list_tasks()
                error: str | None = None
            except DstuiError as exc:
                tasks = None
                error = str(exc)
                logger.warning("Task refresh failed: %s", exc)
            except Exception as exc:
                tasks = None
                error = f"Unexpected error: {exc}"
                logger.exception("Task refresh crashed")
        finally:
            with self._lock:
                self._fetching = False

        if self._stopped.is_set():
            return None
        return self._publish(seq, tasks, error)

    def _publish(self, seq: int, tasks: list[Task] | None, error: str | None) -> Snapshot | None:
        with self._lock:
            if seq <= self._published_seq:
                logger.debug("Dropping superseded poll result %d", seq)
                return None
            self._published_seq = seq
            previous = self._channel.peek()
            if tasks is not None:
                snapshot = Snapshot(
                    tasks=tuple(tasks),
                    fetched_at=datetime.now(),
                    sequence=seq,
                )
            else:
                snapshot = replace(
                    previous,
                    fetch_error=error,
                    consecutive_failures=previous.consecutive_failures + 1,
                    sequence=seq,
                )
            self._channel.publish(snapshot)

        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.debug("Snapshot listener failed", exc_info=True)
        return snapshot

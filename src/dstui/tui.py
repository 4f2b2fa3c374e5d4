"""Terminal loop for dstui: keys in, frames out."""

import logging
import sys
import threading
from typing import Callable

from rich.console import Console, RenderableType
from rich.live import Live

from .commands import CommandDispatcher
from .models import Command, CommandKind, CommandOutcome, Credentials, Snapshot
from .poller import LatestSnapshot, Poller
from .render import render_frame
from .state import UIStateMachine, View

logger = logging.getLogger(__name__)

# How long the loop sleeps when nothing happens
IDLE_WAIT = 0.05


class KeyReader:
    """Non-blocking keyboard reader for Unix systems."""

    def __init__(self):
        self._old_settings = None
        self._fd = sys.stdin.fileno()

    def __enter__(self):
        import termios
        import tty

        self._old_settings = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        return self

    def __exit__(self, *args):
        import termios

        if self._old_settings:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._old_settings)

    def read_key(self) -> str | None:
        """Read a key if available, return None if no input."""
        import select

        if select.select([sys.stdin], [], [], 0)[0]:
            char = sys.stdin.read(1)
            # Arrow keys arrive as ESC [ A..D; a lone ESC is the Esc key
            if char == "\x1b":
                if select.select([sys.stdin], [], [], 0.05)[0]:
                    char += sys.stdin.read(2)
            return char
        return None


class TUI:
    """Drives the UI state machine from the keyboard, the poller and the command workers.

    Everything that touches UIState runs on the calling thread. Background
    threads only publish into their channels and set ``_refresh_event``.
    """

    def __init__(
        self,
        machine: UIStateMachine,
        poller: Poller,
        dispatcher: CommandDispatcher,
        channel: LatestSnapshot,
        console: Console | None = None,
        on_credentials_accepted: Callable[[Credentials, float], None] | None = None,
    ):
        self.machine = machine
        self.poller = poller
        self.dispatcher = dispatcher
        self.channel = channel
        self.console = console or Console()
        self.on_credentials_accepted = on_credentials_accepted
        self._refresh_event = threading.Event()

        poller.add_listener(self._on_snapshot)
        dispatcher.add_listener(self._on_outcome)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        self._refresh_event.set()

    def _on_outcome(self, outcome: CommandOutcome) -> None:
        self._refresh_event.set()

    def submit(self, commands: list[Command]) -> None:
        for command in commands:
            logger.debug("Submitting %s", command.describe())
            self.dispatcher.submit(command)

    def handle_key(self, key: str) -> bool:
        """Feed one key to the state machine. Returns True if a redraw is needed."""
        before = self.machine.state
        commands = self.machine.handle_key(key)
        self.submit(commands)
        return bool(commands) or self.machine.state is not before

    def pump(self) -> bool:
        """Apply the latest snapshot and every finished command. Returns True if anything arrived."""
        changed = False
        snapshot = self.channel.take()
        if snapshot is not None:
            self.machine.apply_snapshot(snapshot)
            changed = True
        for outcome in self.dispatcher.drain():
            self.machine.apply_outcome(outcome)
            self._after_outcome(outcome)
            changed = True
        return changed

    def _after_outcome(self, outcome: CommandOutcome) -> None:
        command = outcome.command
        if command.kind is not CommandKind.AUTHENTICATE:
            return
        if self.machine.state.view is View.CONFIG_ENTRY:
            # Rejected before ever being accepted: wait for the form
            return

        if command.poll_interval:
            self.poller.interval = command.poll_interval
        self.poller.start()
        if outcome.ok and command.credentials is not None and self.on_credentials_accepted is not None:
            self.on_credentials_accepted(command.credentials, self.poller.interval)

    def render(self) -> RenderableType:
        return render_frame(self.machine.state, self.machine.snapshot)

    def run(self, startup_commands: list[Command] | None = None) -> None:
        """Run until the operator quits."""
        self.submit(startup_commands or [])

        with KeyReader() as keys:
            with Live(
                self.render(),
                console=self.console,
                auto_refresh=False,
                screen=True,
                vertical_overflow="crop",
            ) as live:
                size = self.console.size
                while self.machine.running:
                    dirty = False
                    key = keys.read_key()
                    if key:
                        dirty = self.handle_key(key)
                        if not self.machine.running:
                            break

                    dirty = self.pump() or dirty
                    if self.console.size != size:
                        size = self.console.size
                        dirty = True
                    if dirty:
                        live.update(self.render(), refresh=True)

                    self._refresh_event.wait(timeout=IDLE_WAIT)
                    self._refresh_event.clear()

    def stop(self) -> None:
        """Stop background work without waiting for in-flight requests."""
        self.poller.stop()
        self.dispatcher.shutdown()

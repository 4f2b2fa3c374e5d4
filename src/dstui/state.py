"""UI state machine.

Every transition replaces the UIState; nothing here blocks or touches the
network. Work for the background threads is handed back as Command values.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from .config import DEFAULT_POLL_INTERVAL, parse_server_address
from .errors import AuthError
from .models import (
    Command,
    CommandKind,
    CommandOutcome,
    Credentials,
    ServerInfo,
    Snapshot,
    Task,
    TaskDetail,
    TaskStatus,
)
from .poller import FAILURE_THRESHOLD

logger = logging.getLogger(__name__)


class View(Enum):
    MAIN_LIST = "main_list"
    TASK_DETAIL = "task_detail"
    HELP = "help"
    CONFIG_ENTRY = "config_entry"
    SERVER_INFO = "server_info"


DETAIL_TABS = ("General", "Transfer", "Trackers", "Peers", "Files")

# Raw key strings as delivered by the terminal in cbreak mode
KEY_UP = "\x1b[A"
KEY_DOWN = "\x1b[B"
KEY_RIGHT = "\x1b[C"
KEY_LEFT = "\x1b[D"
KEY_ESC = "\x1b"
KEY_TAB = "\t"
KEY_SPACE = " "
KEY_ENTER = ("\r", "\n")
KEY_BACKSPACE = ("\x7f", "\x08")
CTRL_C = "\x03"

FORM_FIELDS = ("address", "username", "password", "interval")
FORM_LABELS = {
    "address": "Server address",
    "username": "Username",
    "password": "Password",
    "interval": "Refresh interval (s)",
}


@dataclass(frozen=True)
class ConfigForm:
    """Contents of the ConfigEntry form."""

    address: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    interval: str = str(int(DEFAULT_POLL_INTERVAL))
    active: int = 0
    error: str | None = None

    @classmethod
    def prefilled(cls, credentials: Credentials | None, poll_interval: float | None = None) -> "ConfigForm":
        """A form holding everything but the password, focused on the password."""
        interval = str(int(poll_interval or DEFAULT_POLL_INTERVAL))
        if credentials is None:
            return cls(interval=interval)
        return cls(
            address=credentials.base_url,
            username=credentials.username,
            interval=interval,
            active=FORM_FIELDS.index("password"),
        )

    @property
    def active_field(self) -> str:
        return FORM_FIELDS[self.active]

    @property
    def on_last_field(self) -> bool:
        return self.active == len(FORM_FIELDS) - 1

    def value(self, name: str) -> str:
        return getattr(self, name)

    def type(self, text: str) -> "ConfigForm":
        name = self.active_field
        if name == "interval" and not text.isdigit():
            return self
        return replace(self, error=None, **{name: self.value(name) + text})

    def backspace(self) -> "ConfigForm":
        name = self.active_field
        return replace(self, error=None, **{name: self.value(name)[:-1]})

    def move(self, step: int) -> "ConfigForm":
        active = max(0, min(len(FORM_FIELDS) - 1, self.active + step))
        return replace(self, active=active, error=None)

    def parse(self) -> tuple[Credentials, float]:
        """Validate the form.

        Raises:
            ValueError: With a message fit for the operator.
        """
        try:
            scheme, host = parse_server_address(self.address)
        except ValueError as exc:
            raise ValueError(f"Invalid server address: {exc}") from exc
        if not self.username:
            raise ValueError("Username is required")
        if not self.password:
            raise ValueError("Password is required")
        if not self.interval.isdigit() or int(self.interval) < 1:
            raise ValueError("Refresh interval must be a whole number of seconds, at least 1")
        credentials = Credentials(host=host, scheme=scheme, username=self.username, secret=self.password)
        return credentials, float(int(self.interval))


@dataclass(frozen=True)
class UIState:
    """Everything the renderer needs besides the snapshot."""

    view: View = View.MAIN_LIST
    selected_index: int = 0
    pending_command: Command | None = None
    status_message: str | None = None
    prior_view: View = View.MAIN_LIST
    detail_task_id: str | None = None
    detail: TaskDetail | None = None
    detail_tab: int = 0
    server_info: ServerInfo | None = None
    form: ConfigForm | None = None
    credentials_accepted: bool = False
    pending_delete: Task | None = None  # awaiting y/n
    running: bool = True


def _task_label(task: Task) -> str:
    return task.name or task.id


def _is_failure_status(message: str | None) -> bool:
    return bool(message) and message.startswith(("Refresh failed", "Connection lost"))


class UIStateMachine:
    """Turns keys, snapshots and command outcomes into new UIStates."""

    def __init__(self, state: UIState | None = None, snapshot: Snapshot | None = None):
        self._state = state or UIState()
        self._snapshot = snapshot or Snapshot()

    @property
    def state(self) -> UIState:
        return self._state

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._state.running

    def selected_task(self) -> Task | None:
        tasks = self._snapshot.tasks
        if not tasks:
            return None
        return tasks[self._state.selected_index]

    def startup(
        self,
        credentials: Credentials | None,
        poll_interval: float | None = None,
        form: ConfigForm | None = None,
    ) -> list[Command]:
        """Enter the first view: ConfigEntry without credentials, else log in."""
        if credentials is None:
            self._state = replace(
                self._state,
                view=View.CONFIG_ENTRY,
                form=form or ConfigForm.prefilled(None, poll_interval),
                status_message="Enter the server address and your account",
            )
            return []
        command = Command(CommandKind.AUTHENTICATE, credentials=credentials, poll_interval=poll_interval)
        return self._emit(command, f"Logging in to {credentials.host} as {credentials.username}...")

    # --- Keys ---

    def handle_key(self, key: str) -> list[Command]:
        """Apply one key press and return the commands it produced."""
        if key == CTRL_C:
            self._state = replace(self._state, running=False)
            return []

        view = self._state.view
        if view is View.MAIN_LIST:
            return self._main_list_key(key)
        if view is View.TASK_DETAIL:
            return self._detail_key(key)
        if view is View.HELP:
            # Any key closes help
            self._state = replace(self._state, view=self._state.prior_view)
            return []
        if view is View.SERVER_INFO:
            if key in ("q", "i", KEY_ESC, *KEY_ENTER, *KEY_BACKSPACE):
                self._state = replace(self._state, view=View.MAIN_LIST, server_info=None)
            return []
        return self._config_key(key)

    def _emit(self, command: Command, message: str, **changes) -> list[Command]:
        self._state = replace(self._state, pending_command=command, status_message=message, **changes)
        return [command]

    def _select(self, index: int) -> list[Command]:
        last = max(0, len(self._snapshot.tasks) - 1)
        self._state = replace(self._state, selected_index=max(0, min(index, last)))
        return []

    def _main_list_key(self, key: str) -> list[Command]:
        if self._state.pending_delete is not None:
            return self._confirm_delete_key(key)
        index = self._state.selected_index
        if key in ("j", KEY_DOWN):
            return self._select(index + 1)
        if key in ("k", KEY_UP):
            return self._select(index - 1)
        if key == "g":
            return self._select(0)
        if key == "G":
            return self._select(len(self._snapshot.tasks) - 1)
        if key == "q":
            self._state = replace(self._state, running=False)
            return []
        if key == "?":
            self._state = replace(self._state, view=View.HELP, prior_view=View.MAIN_LIST)
            return []
        if key == "r":
            return self._emit(Command(CommandKind.REFRESH), "Refreshing...")
        if key == "i":
            return self._emit(
                Command(CommandKind.FETCH_SERVER_INFO),
                "Loading server settings...",
                view=View.SERVER_INFO,
                server_info=None,
            )

        task = self.selected_task()
        if key in ("o", *KEY_ENTER):
            if task is None:
                return []
            command = Command(CommandKind.FETCH_DETAIL, task_id=task.id, task_name=task.name)
            return self._emit(
                command,
                f"Loading {_task_label(task)}...",
                view=View.TASK_DETAIL,
                detail_task_id=task.id,
                detail=None,
                detail_tab=0,
            )

        kind = None
        if key == "p":
            kind = CommandKind.PAUSE
        elif key == "u":
            kind = CommandKind.RESUME
        elif key == KEY_SPACE:
            kind = CommandKind.RESUME if task is not None and task.status is TaskStatus.PAUSED else CommandKind.PAUSE
        elif key == "d":
            kind = CommandKind.DELETE
        if kind is None:
            return []
        if task is None:
            self._state = replace(self._state, status_message="No task selected")
            return []

        if kind is CommandKind.DELETE:
            self._state = replace(
                self._state,
                pending_delete=task,
                status_message=f"Delete {_task_label(task)}? (y/n)",
            )
            return []
        verb = "Pausing" if kind is CommandKind.PAUSE else "Resuming"
        command = Command(kind, task_id=task.id, task_name=task.name)
        return self._emit(command, f"{verb} {_task_label(task)}...")

    def _confirm_delete_key(self, key: str) -> list[Command]:
        task = self._state.pending_delete
        if key in ("y", "Y"):
            command = Command(CommandKind.DELETE, task_id=task.id, task_name=task.name)
            return self._emit(command, f"Deleting {_task_label(task)}...", pending_delete=None)
        if key in ("n", "N", "q", KEY_ESC):
            self._state = replace(self._state, pending_delete=None, status_message="Delete cancelled")
        return []

    def _detail_key(self, key: str) -> list[Command]:
        tab = self._state.detail_tab
        if key in ("l", KEY_RIGHT, KEY_TAB):
            self._state = replace(self._state, detail_tab=(tab + 1) % len(DETAIL_TABS))
        elif key in ("h", KEY_LEFT):
            self._state = replace(self._state, detail_tab=(tab - 1) % len(DETAIL_TABS))
        elif key in ("q", KEY_ESC, *KEY_BACKSPACE):
            self._state = replace(self._state, view=View.MAIN_LIST, detail=None, detail_task_id=None)
        elif key == "?":
            self._state = replace(self._state, view=View.HELP, prior_view=View.TASK_DETAIL)
        return []

    def _config_key(self, key: str) -> list[Command]:
        form = self._state.form or ConfigForm()
        if key == KEY_ESC:
            self._state = replace(self._state, running=False)
            return []
        if key in KEY_BACKSPACE:
            form = form.backspace()
        elif key in (KEY_TAB, KEY_DOWN) or (key in KEY_ENTER and not form.on_last_field):
            form = form.move(1)
        elif key == KEY_UP:
            form = form.move(-1)
        elif key in KEY_ENTER:
            return self._submit_form(form)
        elif len(key) == 1 and key.isprintable():
            form = form.type(key)
        self._state = replace(self._state, form=form)
        return []

    def _submit_form(self, form: ConfigForm) -> list[Command]:
        try:
            credentials, interval = form.parse()
        except ValueError as exc:
            self._state = replace(self._state, form=replace(form, error=str(exc)))
            return []
        command = Command(CommandKind.AUTHENTICATE, credentials=credentials, poll_interval=interval)
        return self._emit(
            command,
            f"Logging in to {credentials.host} as {credentials.username}...",
            view=View.MAIN_LIST,
            form=replace(form, error=None),
        )

    # --- Background results ---

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the snapshot, keeping the selection on the same task when possible."""
        previous = self._snapshot
        state = self._state

        selected_id = None
        if previous.tasks and state.selected_index < len(previous.tasks):
            selected_id = previous.tasks[state.selected_index].id
        index = snapshot.index_of(selected_id) if selected_id is not None else None
        if index is None:
            index = max(0, min(state.selected_index, len(snapshot.tasks) - 1))

        message = state.status_message
        accepted = state.credentials_accepted
        pending = state.pending_command
        refreshing = pending is not None and pending.kind is CommandKind.REFRESH
        if refreshing:
            pending = None
        if snapshot.fetch_error:
            if snapshot.consecutive_failures >= FAILURE_THRESHOLD:
                message = f"Connection lost ({snapshot.consecutive_failures} failed refreshes): {snapshot.fetch_error}"
            else:
                message = f"Refresh failed: {snapshot.fetch_error}"
        else:
            accepted = accepted or snapshot.fetched_at is not None
            if _is_failure_status(message):
                message = "Connection restored"
            elif refreshing:
                message = "Task list refreshed"

        self._snapshot = snapshot
        self._state = replace(
            state,
            selected_index=index,
            pending_command=pending,
            status_message=message,
            credentials_accepted=accepted,
        )

    def apply_outcome(self, outcome: CommandOutcome) -> None:
        """Fold a finished command into the state. Always updates the status message."""
        state = self._state
        command = outcome.command
        kind = command.kind
        # A manual refresh stays pending until its snapshot arrives
        if state.pending_command == command and kind is not CommandKind.REFRESH:
            state = replace(state, pending_command=None)

        if kind is CommandKind.AUTHENTICATE:
            state = self._authenticated(state, outcome)
        elif kind is CommandKind.FETCH_DETAIL:
            current = state.view is View.TASK_DETAIL and state.detail_task_id == command.task_id
            if current and outcome.ok:
                state = replace(state, detail=outcome.result, status_message=outcome.message)
            elif current:
                state = replace(
                    state,
                    view=View.MAIN_LIST,
                    detail=None,
                    detail_task_id=None,
                    status_message=f"Could not load task: {outcome.message}",
                )
            else:
                state = replace(state, status_message=outcome.message)
        elif kind is CommandKind.FETCH_SERVER_INFO:
            current = state.view is View.SERVER_INFO
            if current and outcome.ok:
                state = replace(state, server_info=outcome.result, status_message=outcome.message)
            elif current:
                state = replace(
                    state,
                    view=View.MAIN_LIST,
                    status_message=f"Could not load server settings: {outcome.message}",
                )
            else:
                state = replace(state, status_message=outcome.message)
        else:
            # Tasks are never removed or patched locally; the next poll shows the effect
            state = replace(state, status_message=outcome.message)

        self._state = state

    def _authenticated(self, state: UIState, outcome: CommandOutcome) -> UIState:
        if outcome.ok:
            return replace(state, credentials_accepted=True, status_message=outcome.message)

        error = outcome.error
        rejected = isinstance(error, AuthError) and error.is_invalid_credentials
        if rejected and not state.credentials_accepted:
            command = outcome.command
            form = state.form or ConfigForm.prefilled(command.credentials, command.poll_interval)
            form = replace(form, password="", active=FORM_FIELDS.index("password"), error=outcome.message)
            logger.info("Login rejected, asking for credentials again")
            return replace(state, view=View.CONFIG_ENTRY, form=form, status_message=outcome.message)
        return replace(state, status_message=f"Login failed: {outcome.message}")

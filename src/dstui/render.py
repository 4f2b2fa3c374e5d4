"""Frame rendering. Pure: the same state and snapshot always give the same frame."""

from rich.console import Group, RenderableType
from rich.markup import escape as markup_escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import ServerInfo, Snapshot, Task, TaskDetail, TaskStatus
from .poller import FAILURE_THRESHOLD
from .state import DETAIL_TABS, FORM_FIELDS, FORM_LABELS, ConfigForm, UIState, View
from .utils import (
    format_bytes,
    format_rate,
    format_seconds,
    format_timestamp,
    render_progress_bar,
    truncate,
)

HELP_LINES = [
    ("Task list", ""),
    ("j / ↓", "Move down"),
    ("k / ↑", "Move up"),
    ("g / G", "First / last task"),
    ("Enter / o", "Open task details"),
    ("p", "Pause task"),
    ("u", "Resume task"),
    ("Space", "Toggle pause / resume"),
    ("d", "Delete task (asks y/n)"),
    ("r", "Refresh now"),
    ("i", "Server settings"),
    ("?", "This help"),
    ("q", "Quit"),
    ("Delete prompt", ""),
    ("y", "Delete the task"),
    ("n / Esc", "Keep the task"),
    ("Task details", ""),
    ("h / l", "Previous / next tab"),
    ("q / Esc", "Back to the task list"),
    ("Anywhere", ""),
    ("Ctrl+C", "Quit"),
]

STATUS_STYLES = {
    TaskStatus.WAITING: "dim",
    TaskStatus.DOWNLOADING: "cyan",
    TaskStatus.PAUSED: "yellow",
    TaskStatus.FINISHED: "green",
    TaskStatus.SEEDING: "#5fd787",
    TaskStatus.ERROR: "bold red",
}

_HINTS = {
    View.MAIN_LIST: "[dim]\\[j/k] move  \\[enter] details  \\[p/u] pause/resume  \\[d] delete  \\[r] refresh  \\[?] help  \\[q] quit[/dim]",
    View.TASK_DETAIL: "[dim]\\[h/l] switch tab  \\[q] back  \\[?] help[/dim]",
    View.HELP: "[dim]Press any key to close[/dim]",
    View.SERVER_INFO: "[dim]\\[q] back[/dim]",
    View.CONFIG_ENTRY: "[dim]\\[tab/enter] next field  \\[enter on last field] connect  \\[esc] quit[/dim]",
}

_CONFIRM_HINTS = "[dim]\\[y] delete  \\[n/esc] cancel[/dim]"


def _status_text(task: Task) -> Text:
    label = task.status_label or task.status.value
    if task.status is TaskStatus.ERROR and task.error_detail and task.error_detail != label:
        label = f"{label}: {task.error_detail}"
    return Text(label, style=STATUS_STYLES[task.status])


def render_header(snapshot: Snapshot) -> Text:
    down = sum(t.transfer_rate for t in snapshot.tasks)
    up = sum(t.upload_rate for t in snapshot.tasks)
    header = Text()
    header.append("dstui", style="bold cyan")
    header.append(f"  {len(snapshot.tasks)} tasks", style="dim")
    header.append(f"  ↓ {format_rate(down)}  ↑ {format_rate(up)}")
    if snapshot.fetched_at is not None:
        header.append(f"  updated {snapshot.fetched_at.strftime('%H:%M:%S')}", style="dim")
    return header


def render_task_table(snapshot: Snapshot, selected_index: int) -> Table | Panel:
    """The main list: one row per task, the selected row highlighted."""
    if not snapshot.tasks:
        message = "[dim]No tasks[/dim]" if snapshot.fetched_at else "[dim]Waiting for the first refresh...[/dim]"
        return Panel(message, border_style="dim")

    table = Table(expand=True, border_style="cyan", header_style="bold")
    table.add_column("Name", ratio=1, no_wrap=True, overflow="ellipsis")
    table.add_column("Size", justify="right")
    table.add_column("Done", justify="right")
    table.add_column("Progress", no_wrap=True)
    table.add_column("↓", justify="right")
    table.add_column("↑", justify="right")
    table.add_column("Status", no_wrap=True)

    for i, task in enumerate(snapshot.tasks):
        table.add_row(
            markup_escape(task.name or task.id),
            format_bytes(task.size_total),
            format_bytes(task.size_downloaded),
            render_progress_bar(task.progress),
            format_rate(task.transfer_rate),
            format_rate(task.upload_rate),
            _status_text(task),
            style="reverse" if i == selected_index else None,
        )
    return table


def _key_value_table(rows: list[tuple[str, str]]) -> Table:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    for key, value in rows:
        table.add_row(key, markup_escape(value))
    return table


def _general_tab(detail: TaskDetail) -> RenderableType:
    task = detail.task
    return _key_value_table([
        ("Name", task.name),
        ("ID", task.id),
        ("Type", task.task_type or "-"),
        ("Owner", task.username or "-"),
        ("Status", task.status_label or task.status.value),
        ("Error", task.error_detail or "-"),
        ("Size", format_bytes(task.size_total)),
        ("Destination", detail.destination or "-"),
        ("URI", truncate(detail.uri, 120) or "-"),
        ("Created", format_timestamp(detail.created_at)),
        ("Started", format_timestamp(detail.started_at)),
        ("Completed", format_timestamp(detail.completed_at)),
        ("Waiting", format_seconds(detail.waiting_seconds)),
    ])


def _transfer_tab(detail: TaskDetail) -> RenderableType:
    task = detail.task
    return _key_value_table([
        ("Progress", render_progress_bar(task.progress, width=30)),
        ("Downloaded", f"{format_bytes(task.size_downloaded)} of {format_bytes(task.size_total)}"),
        ("Uploaded", format_bytes(task.size_uploaded)),
        ("Ratio", f"{task.ratio:.2f}"),
        ("Download speed", format_rate(task.transfer_rate)),
        ("Upload speed", format_rate(task.upload_rate)),
        ("Pieces", f"{detail.downloaded_pieces} / {detail.total_pieces}"),
        ("Peers", f"{detail.connected_peers} connected / {detail.total_peers} total"),
        ("Seeders / leechers", f"{detail.connected_seeders} / {detail.connected_leechers}"),
        ("Seeding for", format_seconds(detail.seed_elapsed)),
    ])


def _trackers_tab(detail: TaskDetail) -> RenderableType:
    if not detail.trackers:
        return Text("No trackers", style="dim")
    table = Table(expand=True, border_style="dim")
    table.add_column("URL", ratio=1, overflow="ellipsis")
    table.add_column("Status")
    table.add_column("Next update", justify="right")
    table.add_column("Seeds", justify="right")
    table.add_column("Peers", justify="right")
    for tracker in detail.trackers:
        table.add_row(
            markup_escape(tracker.url),
            markup_escape(tracker.status or "-"),
            format_seconds(tracker.next_update),
            str(tracker.seeds),
            str(tracker.peers),
        )
    return table


def _peers_tab(detail: TaskDetail) -> RenderableType:
    if not detail.peers:
        return Text("No peers", style="dim")
    table = Table(expand=True, border_style="dim")
    table.add_column("Address")
    table.add_column("Client", ratio=1, overflow="ellipsis")
    table.add_column("Progress", no_wrap=True)
    table.add_column("↓", justify="right")
    table.add_column("↑", justify="right")
    for peer in detail.peers:
        table.add_row(
            markup_escape(peer.address),
            markup_escape(peer.agent or "-"),
            render_progress_bar(peer.progress),
            format_rate(peer.download_rate),
            format_rate(peer.upload_rate),
        )
    return table


def _files_tab(detail: TaskDetail) -> RenderableType:
    if not detail.files:
        return Text("No files", style="dim")
    table = Table(expand=True, border_style="dim")
    table.add_column("File", ratio=1, overflow="ellipsis")
    table.add_column("Size", justify="right")
    table.add_column("Progress", no_wrap=True)
    table.add_column("Priority")
    for entry in detail.files:
        table.add_row(
            markup_escape(entry.path),
            format_bytes(entry.size),
            render_progress_bar(entry.downloaded_fraction),
            markup_escape(entry.priority or "-"),
        )
    return table


_TAB_RENDERERS = {
    "General": _general_tab,
    "Transfer": _transfer_tab,
    "Trackers": _trackers_tab,
    "Peers": _peers_tab,
    "Files": _files_tab,
}


def render_detail(state: UIState) -> Panel:
    tabs = Text()
    for i, name in enumerate(DETAIL_TABS):
        if i:
            tabs.append(" │ ", style="dim")
        tabs.append(f" {name} ", style="bold reverse" if i == state.detail_tab else "dim")

    if state.detail is None:
        body: RenderableType = Text("Loading...", style="dim")
        title = state.detail_task_id or ""
    else:
        body = _TAB_RENDERERS[DETAIL_TABS[state.detail_tab]](state.detail)
        title = state.detail.task.name or state.detail.task.id
    return Panel(
        Group(tabs, Text(""), body),
        title=f"[bold]{markup_escape(title)}[/bold]",
        title_align="left",
        border_style="cyan",
    )


def render_server_info(info: ServerInfo | None) -> Panel:
    if info is None:
        body: RenderableType = Text("Loading...", style="dim")
    else:
        def limit(kbps: int) -> str:
            return "unlimited" if kbps <= 0 else f"{kbps} KB/s"

        body = _key_value_table([
            ("BT download limit", limit(info.bt_max_download)),
            ("BT upload limit", limit(info.bt_max_upload)),
            ("HTTP download limit", limit(info.http_max_download)),
            ("FTP download limit", limit(info.ftp_max_download)),
            ("NZB download limit", limit(info.nzb_max_download)),
            ("eMule", "enabled" if info.emule_enabled else "disabled"),
            ("eMule download limit", limit(info.emule_max_download)),
            ("eMule upload limit", limit(info.emule_max_upload)),
            ("Auto unzip", "enabled" if info.unzip_service_enabled else "disabled"),
            ("Default destination", info.default_destination or "-"),
            ("eMule destination", info.emule_default_destination or "-"),
        ])
    return Panel(body, title="[bold]Server settings[/bold]", title_align="left", border_style="cyan")


def render_help() -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    for key, description in HELP_LINES:
        if not description:
            table.add_row(Text(key, style="bold underline"), "")
        else:
            table.add_row(key, description)
    return Panel(table, title="[bold]Help[/bold]", title_align="left", border_style="cyan")


def render_config_form(form: ConfigForm) -> Panel:
    """The credential form. The password is masked."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    for i, name in enumerate(FORM_FIELDS):
        value = form.value(name)
        if name == "password":
            value = "*" * len(value)
        active = i == form.active
        marker = "›" if active else " "
        table.add_row(f"{marker} {FORM_LABELS[name]}", Text(value + ("_" if active else ""), style="reverse" if active else ""))

    parts: list[RenderableType] = [table]
    if form.error:
        parts.extend([Text(""), Text(form.error, style="bold red")])
    return Panel(Group(*parts), title="[bold]Connect to Download Station[/bold]", border_style="cyan", padding=(1, 2))


def render_footer(state: UIState, snapshot: Snapshot) -> RenderableType:
    confirming = state.view is View.MAIN_LIST and state.pending_delete is not None
    hints = Text.from_markup(_CONFIRM_HINTS if confirming else _HINTS[state.view])
    if not state.status_message:
        return hints
    style = "yellow"
    if confirming or (snapshot.fetch_error and snapshot.consecutive_failures >= FAILURE_THRESHOLD):
        style = "bold red"
    return Group(Text(state.status_message, style=style), hints)


def render_frame(state: UIState, snapshot: Snapshot) -> RenderableType:
    """Build the whole screen for one state and snapshot."""
    if state.view is View.CONFIG_ENTRY:
        body: RenderableType = render_config_form(state.form or ConfigForm())
    elif state.view is View.TASK_DETAIL:
        body = render_detail(state)
    elif state.view is View.HELP:
        body = render_help()
    elif state.view is View.SERVER_INFO:
        body = render_server_info(state.server_info)
    else:
        body = render_task_table(snapshot, state.selected_index)

    return Group(render_header(snapshot), body, render_footer(state, snapshot))

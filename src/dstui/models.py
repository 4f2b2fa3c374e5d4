"""Data models for dstui."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ApiError


@dataclass(frozen=True)
class Credentials:
    """Where and as whom to log in."""

    host: str  # host[:port]
    scheme: str
    username: str
    secret: str = field(repr=False)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


@dataclass(frozen=True)
class SessionToken:
    """A session id issued by SYNO.API.Auth."""

    value: str = field(repr=False)
    issued_at: datetime = field(default_factory=datetime.now)


class TaskStatus(Enum):
    """Coarse task state shown to the operator."""
    WAITING = "waiting"
    DOWNLOADING = "downloading"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"
    SEEDING = "seeding"


# Numeric status codes reported by Download Station. The server sometimes
# sends the label instead of the code, so both are resolved through this table.
STATUS_LABELS: dict[int, str] = {
    1: "waiting",
    2: "downloading",
    3: "paused",
    4: "finishing",
    5: "finished",
    6: "hash_checking",
    7: "preseeding",
    8: "seeding",
    9: "filehost_waiting",
    10: "extracting",
    11: "preprocessing",
    12: "preprocesspass",
    13: "downloaded",
    14: "postprocessing",
    15: "captcha_needed",
    101: "error",
    102: "broken_link",
    103: "dest_not_exists",
    104: "dest_deny",
    105: "disk_full",
    106: "quota_reached",
    107: "timeout",
    108: "exceed_max_fs_size",
    109: "exceed_max_temp_fs_size",
    110: "exceed_max_dest_fs_size",
    111: "name_too_long_encryption",
    112: "name_too_long",
    113: "duplicate_torrent",
    114: "file_does_not_exist",
    115: "premium_required",
    116: "not_supported_type",
    117: "ftp_encrypt_not_supported",
    118: "extract_failed",
    119: "extract_wrong_password",
    120: "extract_invalid_archive",
    121: "extract_quota_reached",
    122: "extract_disk_full",
    123: "invalid_torrent",
    124: "account_required",
    125: "try_it_later",
    126: "encryption_error",
    127: "missing_python_executable",
    128: "private_video",
    129: "extract_folder_does_not_exist",
    130: "nzb_missing_article",
    131: "duplicate_edonkey_link",
    132: "duplicate_dest_file",
    133: "archive_repair_failed",
    134: "invalid_account_password",
}

_LABEL_TO_STATUS: dict[str, TaskStatus] = {
    "waiting": TaskStatus.WAITING,
    "downloading": TaskStatus.DOWNLOADING,
    "paused": TaskStatus.PAUSED,
    "finishing": TaskStatus.DOWNLOADING,
    "finished": TaskStatus.FINISHED,
    "hash_checking": TaskStatus.WAITING,
    "preseeding": TaskStatus.SEEDING,
    "seeding": TaskStatus.SEEDING,
    "filehost_waiting": TaskStatus.WAITING,
    "extracting": TaskStatus.DOWNLOADING,
    "preprocessing": TaskStatus.WAITING,
    "preprocesspass": TaskStatus.WAITING,
    "downloaded": TaskStatus.FINISHED,
    "postprocessing": TaskStatus.DOWNLOADING,
    "captcha_needed": TaskStatus.WAITING,
}


def resolve_status(raw: Any) -> tuple[TaskStatus, str, str | None]:
    """Resolve a raw status (code or label) to (status, label, error_detail)."""
    if isinstance(raw, bool):
        raise ApiError.malformed(f"status has unexpected type {type(raw).__name__}")
    if isinstance(raw, int):
        label = STATUS_LABELS.get(raw, "unknown")
    elif isinstance(raw, str):
        label = raw
    else:
        raise ApiError.malformed(f"status has unexpected type {type(raw).__name__}")

    status = _LABEL_TO_STATUS.get(label)
    if status is None:
        return TaskStatus.ERROR, label, label
    return status, label, None


# --- Decoding helpers. The WebAPI is loosely documented, so every field is checked. ---


def _as_dict(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ApiError.malformed(f"{what} is not an object")
    return value


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ApiError.malformed(f"{what} is not a list")
    return value


def _int(data: dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        # Some firmwares send numbers as strings
        if isinstance(value, str) and value.isdigit():
            return int(value)
        raise ApiError.malformed(f"field '{key}' is not a number")
    try:
        return int(value)
    except (OverflowError, ValueError):
        # json accepts Infinity and NaN
        raise ApiError.malformed(f"field '{key}' is out of range")


def _float(data: dict[str, Any], key: str, default: float = 0.0) -> float:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ApiError.malformed(f"field '{key}' is not a number")
    try:
        result = float(value)
    except OverflowError:
        raise ApiError.malformed(f"field '{key}' is out of range")
    if not math.isfinite(result):
        raise ApiError.malformed(f"field '{key}' is out of range")
    return result


def _str(data: dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, (str, int)):
        raise ApiError.malformed(f"field '{key}' is not a string")
    return str(value)


def _timestamp(data: dict[str, Any], key: str) -> datetime | None:
    value = _int(data, key)
    if value <= 0:
        return None
    try:
        return datetime.fromtimestamp(value)
    except (OverflowError, OSError, ValueError):
        raise ApiError.malformed(f"field '{key}' is not a valid timestamp")


@dataclass(frozen=True)
class Task:
    """A download job as reported by one poll cycle."""

    id: str
    name: str
    status: TaskStatus
    size_total: int
    size_downloaded: int
    transfer_rate: int  # bytes/s down
    error_detail: str | None = None
    status_label: str = ""
    size_uploaded: int = 0
    upload_rate: int = 0
    task_type: str = ""
    username: str = ""

    @property
    def progress(self) -> float:
        """Fraction downloaded, 0.0 when the size is not known yet."""
        if self.size_total <= 0:
            return 0.0
        return min(1.0, self.size_downloaded / self.size_total)

    @property
    def ratio(self) -> float:
        if self.size_downloaded <= 0:
            return 0.0
        return self.size_uploaded / self.size_downloaded

    @classmethod
    def from_api(cls, data: Any) -> "Task":
        """Create a Task from one entry of a task list/getinfo response."""
        data = _as_dict(data, "task")
        task_id = data.get("id")
        if not isinstance(task_id, str) or not task_id:
            raise ApiError.malformed("task without an id")
        if "status" not in data:
            raise ApiError.malformed(f"task {task_id} has no status")

        status, label, error_detail = resolve_status(data["status"])
        additional = _as_dict(data.get("additional"), "additional")
        transfer = _as_dict(additional.get("transfer"), "transfer")
        status_extra = _as_dict(data.get("status_extra"), "status_extra")
        if status is TaskStatus.ERROR and status_extra.get("error_detail"):
            error_detail = _str(status_extra, "error_detail")

        return cls(
            id=task_id,
            name=_str(data, "title"),
            status=status,
            size_total=_int(data, "size"),
            size_downloaded=_int(transfer, "size_downloaded"),
            transfer_rate=_int(transfer, "speed_download"),
            error_detail=error_detail,
            status_label=label,
            size_uploaded=_int(transfer, "size_uploaded"),
            upload_rate=_int(transfer, "speed_upload"),
            task_type=_str(data, "type"),
            username=_str(data, "username"),
        )


@dataclass(frozen=True)
class TaskFileEntry:
    """One file inside a task."""

    path: str
    size: int
    downloaded_fraction: float
    priority: str = ""

    @classmethod
    def from_api(cls, data: Any) -> "TaskFileEntry":
        data = _as_dict(data, "file")
        size = _int(data, "size")
        downloaded = _int(data, "size_downloaded")
        fraction = min(1.0, downloaded / size) if size > 0 else 0.0
        return cls(
            path=_str(data, "filename"),
            size=size,
            downloaded_fraction=fraction,
            priority=_str(data, "priority"),
        )


@dataclass(frozen=True)
class PeerEntry:
    """A peer connected to a BitTorrent task."""

    address: str
    agent: str
    progress: float
    download_rate: int
    upload_rate: int

    @classmethod
    def from_api(cls, data: Any) -> "PeerEntry":
        data = _as_dict(data, "peer")
        return cls(
            address=_str(data, "address"),
            agent=_str(data, "agent"),
            progress=_float(data, "progress"),
            download_rate=_int(data, "speed_download"),
            upload_rate=_int(data, "speed_upload"),
        )


@dataclass(frozen=True)
class TrackerEntry:
    """A tracker of a BitTorrent task."""

    url: str
    status: str
    next_update: int  # seconds
    seeds: int
    peers: int

    @classmethod
    def from_api(cls, data: Any) -> "TrackerEntry":
        data = _as_dict(data, "tracker")
        return cls(
            url=_str(data, "url"),
            status=_str(data, "status"),
            next_update=_int(data, "update_timer"),
            seeds=_int(data, "seeds"),
            peers=_int(data, "peers"),
        )


@dataclass(frozen=True)
class TaskDetail:
    """Everything getinfo returns for a single task."""

    task: Task
    destination: str = ""
    uri: str = ""
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    waiting_seconds: int = 0
    connected_peers: int = 0
    total_peers: int = 0
    connected_seeders: int = 0
    connected_leechers: int = 0
    total_pieces: int = 0
    downloaded_pieces: int = 0
    seed_elapsed: int = 0
    files: tuple[TaskFileEntry, ...] = ()
    peers: tuple[PeerEntry, ...] = ()
    trackers: tuple[TrackerEntry, ...] = ()

    @classmethod
    def from_api(cls, data: Any) -> "TaskDetail":
        task = Task.from_api(data)
        additional = _as_dict(data.get("additional"), "additional")
        detail = _as_dict(additional.get("detail"), "detail")
        transfer = _as_dict(additional.get("transfer"), "transfer")
        return cls(
            task=task,
            destination=_str(detail, "destination"),
            uri=_str(detail, "uri"),
            created_at=_timestamp(detail, "create_time"),
            started_at=_timestamp(detail, "started_time"),
            completed_at=_timestamp(detail, "completed_time"),
            waiting_seconds=_int(detail, "waiting_seconds"),
            connected_peers=_int(detail, "connected_peers"),
            total_peers=_int(detail, "total_peers"),
            connected_seeders=_int(detail, "connected_seeders"),
            connected_leechers=_int(detail, "connected_leechers"),
            total_pieces=_int(detail, "total_pieces"),
            downloaded_pieces=_int(transfer, "downloaded_pieces"),
            seed_elapsed=_int(detail, "seedelapsed"),
            files=tuple(TaskFileEntry.from_api(f) for f in _as_list(additional.get("file"), "file")),
            peers=tuple(PeerEntry.from_api(p) for p in _as_list(additional.get("peer"), "peer")),
            trackers=tuple(TrackerEntry.from_api(t) for t in _as_list(additional.get("tracker"), "tracker")),
        )


@dataclass(frozen=True)
class ServerInfo:
    """Download Station settings from SYNO.DownloadStation.Info getconfig (KB/s limits)."""

    bt_max_download: int = 0
    bt_max_upload: int = 0
    http_max_download: int = 0
    ftp_max_download: int = 0
    nzb_max_download: int = 0
    emule_enabled: bool = False
    emule_max_download: int = 0
    emule_max_upload: int = 0
    unzip_service_enabled: bool = False
    default_destination: str | None = None
    emule_default_destination: str | None = None

    @classmethod
    def from_api(cls, data: Any) -> "ServerInfo":
        data = _as_dict(data, "config")
        return cls(
            bt_max_download=_int(data, "bt_max_download"),
            bt_max_upload=_int(data, "bt_max_upload"),
            http_max_download=_int(data, "http_max_download"),
            ftp_max_download=_int(data, "ftp_max_download"),
            nzb_max_download=_int(data, "nzb_max_download"),
            emule_enabled=bool(data.get("emule_enabled", False)),
            emule_max_download=_int(data, "emule_max_download"),
            emule_max_upload=_int(data, "emule_max_upload"),
            unzip_service_enabled=bool(data.get("unzip_service_enabled", False)),
            default_destination=_str(data, "default_destination") or None,
            emule_default_destination=_str(data, "emule_default_destination") or None,
        )


@dataclass(frozen=True)
class Snapshot:
    """All known tasks at one point in time. Always replaced, never patched."""

    tasks: tuple[Task, ...] = ()
    fetched_at: datetime | None = None
    fetch_error: str | None = None
    consecutive_failures: int = 0
    sequence: int = 0

    def find(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def index_of(self, task_id: str) -> int | None:
        for i, task in enumerate(self.tasks):
            if task.id == task_id:
                return i
        return None


class CommandKind(Enum):
    """Things the UI asks the background workers to do."""
    AUTHENTICATE = "authenticate"
    FETCH_DETAIL = "fetch_detail"
    FETCH_SERVER_INFO = "fetch_server_info"
    PAUSE = "pause"
    RESUME = "resume"
    DELETE = "delete"
    REFRESH = "refresh"

    @property
    def mutates(self) -> bool:
        return self in (CommandKind.PAUSE, CommandKind.RESUME, CommandKind.DELETE)


@dataclass(frozen=True)
class Command:
    """A unit of work emitted by the UI state machine."""

    kind: CommandKind
    task_id: str | None = None
    task_name: str = ""
    credentials: Credentials | None = None
    poll_interval: float | None = None

    def describe(self) -> str:
        target = self.task_name or self.task_id or ""
        return f"{self.kind.value} {target}".strip()


@dataclass(frozen=True)
class CommandOutcome:
    """Result of a Command, delivered back to the UI loop."""

    command: Command
    ok: bool
    message: str
    result: Any = None
    error: Exception | None = None

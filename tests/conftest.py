"""Shared fakes: an in-memory Download Station behind a Transport-shaped object."""

import json
import threading

import pytest

from dstui.models import Credentials
from dstui.session import AUTH_API, INFO_API, STATION_INFO_API, TASK_API
from dstui.transport import RawResponse


def ok(data=None) -> RawResponse:
    return RawResponse(200, json.dumps({"success": True, "data": data}))


def fail(code: int) -> RawResponse:
    return RawResponse(200, json.dumps({"success": False, "error": {"code": code}}))


def task_json(task_id: str, title: str = "", status=2, size: int = 1000, downloaded: int = 500) -> dict:
    return {
        "id": task_id,
        "title": title or f"task {task_id}",
        "status": status,
        "size": size,
        "type": "bt",
        "username": "admin",
        "additional": {
            "transfer": {
                "size_downloaded": downloaded,
                "size_uploaded": 0,
                "speed_download": 100,
                "speed_upload": 10,
            }
        },
    }


class FakeServer:
    """Speaks just enough of the WebAPI for the client: login, list, getinfo, actions."""

    def __init__(self, password: str = "secret"):
        self.password = password
        self.tasks: list[dict] = [task_json("dbid_1"), task_json("dbid_2", status=3)]
        self.valid_sids: set[str] = set()
        self.logins = 0
        self.requests: list[tuple[str, dict]] = []
        self.action_errors: dict[str, int] = {}  # task id -> per-task error code
        self.login_delay: threading.Event | None = None
        self._lock = threading.Lock()

    def expire_sessions(self) -> None:
        with self._lock:
            self.valid_sids.clear()

    def count(self, api: str, method: str) -> int:
        return sum(1 for _, p in self.requests if p.get("api") == api and p.get("method") == method)

    def handle(self, path: str, params: dict) -> RawResponse:
        with self._lock:
            self.requests.append((path, dict(params)))
        api = params.get("api")
        method = params.get("method")

        if api == INFO_API:
            return ok({
                AUTH_API: {"path": "auth.cgi", "minVersion": 1, "maxVersion": 2},
                TASK_API: {"path": "DownloadStation/task.cgi", "minVersion": 1, "maxVersion": 1},
                STATION_INFO_API: {"path": "DownloadStation/info.cgi", "minVersion": 1, "maxVersion": 1},
            })

        if api == AUTH_API:
            if method == "logout":
                return ok()
            if self.login_delay is not None:
                self.login_delay.wait(timeout=1)
            if params.get("passwd") != self.password:
                return fail(400)
            with self._lock:
                self.logins += 1
                sid = f"sid-{self.logins}"
                self.valid_sids.add(sid)
            return ok({"sid": sid})

        with self._lock:
            if params.get("_sid") not in self.valid_sids:
                return fail(119)

        if api == STATION_INFO_API:
            return ok({"bt_max_download": 500, "default_destination": "downloads", "emule_enabled": False})

        if method == "list":
            return ok({"total": len(self.tasks), "offset": 0, "tasks": self.tasks})
        if method == "getinfo":
            found = [t for t in self.tasks if t["id"] == params.get("id")]
            return ok({"tasks": found})
        if method in ("pause", "resume", "delete"):
            task_id = params["id"]
            code = self.action_errors.get(task_id, 0)
            if code == 0 and not any(t["id"] == task_id for t in self.tasks):
                code = 404
            return ok([{"id": task_id, "error": code}])
        return fail(103)


class FakeTransport:
    """Stands in for Transport; routes every request to a FakeServer."""

    def __init__(self, server: FakeServer, base_url: str | None = "https://nas:5001"):
        self.server = server
        self.base_url = base_url
        self.closed = False

    def rebase(self, base_url: str) -> None:
        self.base_url = base_url

    def send(self, method: str, path: str, params: dict | None = None) -> RawResponse:
        return self.server.handle(path, params or {})

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def transport(server: FakeServer) -> FakeTransport:
    return FakeTransport(server)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(host="nas:5001", scheme="https", username="admin", secret="secret")

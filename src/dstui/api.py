"""Typed Download Station operations on top of the session manager."""

import logging
from typing import Any

from .envelope import decode_envelope
from .errors import ApiError, ApiErrorKind, CommandError, DstuiError
from .models import ServerInfo, SessionToken, Task, TaskDetail, TaskFileEntry
from .session import STATION_INFO_API, TASK_API, SessionManager

logger = logging.getLogger(__name__)

LIST_ADDITIONAL = "detail,transfer"
DETAIL_ADDITIONAL = "detail,transfer,file,peer,tracker"


def _task_entries(data: Any) -> list[Any]:
    """Pull the ``tasks`` list out of a list/getinfo payload."""
    if not isinstance(data, dict):
        raise ApiError.malformed("task payload is not an object")
    tasks = data.get("tasks")
    if not isinstance(tasks, list):
        raise ApiError.malformed("task payload has no 'tasks' list")
    return tasks


def _check_action_results(data: Any, task_id: str) -> None:
    """Raise for a failure reported against task_id in a pause/resume/delete result."""
    if not isinstance(data, list):
        raise ApiError.malformed("action result is not a list")
    for entry in data:
        if not isinstance(entry, dict):
            raise ApiError.malformed("action result entry is not an object")
        entry_id = entry.get("id")
        if entry_id is not None and str(entry_id) != task_id:
            continue
        code = entry.get("error", 0)
        if isinstance(code, bool) or not isinstance(code, int):
            raise ApiError.malformed("action result error is not a number")
        if code != 0:
            raise ApiError.from_code(code)


class DownloadStationClient:
    """SYNO.DownloadStation.* operations. Every call runs through SessionManager.with_session."""

    def __init__(self, session: SessionManager):
        self._session = session

    @property
    def session(self) -> SessionManager:
        return self._session

    def _call(self, api: str, method: str, **params: str) -> Any:
        def call(token: SessionToken) -> Any:
            info = self._session.api_info(api)
            query = {"api": api, "version": str(info.max_version), "method": method}
            query.update(params)
            query["_sid"] = token.value
            raw = self._session.transport.send("GET", f"webapi/{info.path}", query)
            return decode_envelope(raw)

        return self._session.with_session(call)

    def list_tasks(self) -> list[Task]:
        """Fetch every task with its transfer figures."""
        data = self._call(TASK_API, "list", additional=LIST_ADDITIONAL)
        tasks = [Task.from_api(entry) for entry in _task_entries(data)]
        logger.debug("Listed %d tasks", len(tasks))
        return tasks

    def _get_info(self, task_id: str, additional: str) -> dict[str, Any]:
        data = self._call(TASK_API, "getinfo", id=task_id, additional=additional)
        for entry in _task_entries(data):
            if not isinstance(entry, dict) or entry.get("id") != task_id:
                continue
            code = entry.get("error")
            if isinstance(code, int) and not isinstance(code, bool) and code != 0:
                raise ApiError.from_code(code)
            return entry
        raise ApiError(ApiErrorKind.NOT_FOUND, f"Task {task_id} not found")

    def task_detail(self, task_id: str) -> TaskDetail:
        """Fetch the full detail (files, peers, trackers) of one task."""
        return TaskDetail.from_api(self._get_info(task_id, DETAIL_ADDITIONAL))

    def task_files(self, task_id: str) -> list[TaskFileEntry]:
        entry = self._get_info(task_id, "file")
        additional = entry.get("additional") or {}
        if not isinstance(additional, dict):
            raise ApiError.malformed("additional is not an object")
        files = additional.get("file") or []
        if not isinstance(files, list):
            raise ApiError.malformed("file is not a list")
        return [TaskFileEntry.from_api(f) for f in files]

    def server_info(self) -> ServerInfo:
        """Fetch Download Station's global settings."""
        return ServerInfo.from_api(self._call(STATION_INFO_API, "getconfig"))

    def _act(self, action: str, task_id: str) -> None:
        try:
            data = self._call(TASK_API, action, id=task_id)
            _check_action_results(data, task_id)
        except DstuiError as exc:
            logger.info("%s of %s failed: %s", action, task_id, exc)
            raise CommandError(action, task_id, exc) from exc
        logger.info("%s %s", action, task_id)

    def pause(self, task_id: str) -> None:
        self._act("pause", task_id)

    def resume(self, task_id: str) -> None:
        self._act("resume", task_id)

    def delete(self, task_id: str) -> None:
        """Delete a task (downloaded data stays on the server)."""
        self._act("delete", task_id)

"""Tests for the Download Station API client."""

import pytest

from conftest import task_json
from dstui.api import DownloadStationClient, _check_action_results
from dstui.errors import ApiError, ApiErrorKind, CommandError
from dstui.models import TaskStatus
from dstui.session import TASK_API, SessionManager


@pytest.fixture
def client(transport, credentials) -> DownloadStationClient:
    return DownloadStationClient(SessionManager(transport, credentials))


class TestListTasks:
    def test_lists_tasks_with_transfer_figures(self, client, server):
        tasks = client.list_tasks()

        assert [t.id for t in tasks] == ["dbid_1", "dbid_2"]
        first = tasks[0]
        assert first.status is TaskStatus.DOWNLOADING
        assert first.size_total == 1000
        assert first.size_downloaded == 500
        assert first.progress == 0.5
        assert tasks[1].status is TaskStatus.PAUSED

        _, params = server.requests[-1]
        assert params["additional"] == "detail,transfer"
        assert params["_sid"] == "sid-1"

    def test_expired_session_reauthenticates_once_and_returns_fresh_list(self, client, server):
        client.list_tasks()
        server.expire_sessions()
        server.tasks.append(task_json("dbid_3"))

        tasks = client.list_tasks()

        assert [t.id for t in tasks] == ["dbid_1", "dbid_2", "dbid_3"]
        assert server.logins == 2
        assert server.count(TASK_API, "list") == 3  # first list, rejected list, retried list

    def test_malformed_task_list(self, client, server):
        server.tasks = [{"title": "no id", "status": 2}]
        with pytest.raises(ApiError) as info:
            client.list_tasks()
        assert info.value.kind is ApiErrorKind.MALFORMED

    def test_error_status_carries_detail(self, client, server):
        server.tasks = [task_json("dbid_9", status=105)]
        task = client.list_tasks()[0]
        assert task.status is TaskStatus.ERROR
        assert task.error_detail == "disk_full"

    def test_string_status_labels(self, client, server):
        server.tasks = [task_json("dbid_9", status="seeding")]
        assert client.list_tasks()[0].status is TaskStatus.SEEDING

    def test_infinite_number_is_malformed(self, client, server):
        server.tasks = [task_json("dbid_9", size=float("inf"))]
        with pytest.raises(ApiError) as info:
            client.list_tasks()
        assert info.value.kind is ApiErrorKind.MALFORMED


class TestTaskDetail:
    def test_detail_and_files(self, client, server):
        entry = task_json("dbid_1")
        entry["additional"]["detail"] = {"destination": "downloads", "uri": "magnet:?xt=1", "total_peers": 9}
        entry["additional"]["file"] = [{"filename": "a.iso", "size": 200, "size_downloaded": 50, "priority": "normal"}]
        entry["additional"]["tracker"] = [{"url": "udp://t", "status": "Success", "update_timer": 30, "seeds": 4, "peers": 2}]
        server.tasks = [entry]

        detail = client.task_detail("dbid_1")
        files = client.task_files("dbid_1")

        assert detail.destination == "downloads"
        assert detail.total_peers == 9
        assert detail.trackers[0].seeds == 4
        assert files[0].path == "a.iso"
        assert files[0].downloaded_fraction == 0.25

    def test_unknown_task_is_not_found(self, client):
        with pytest.raises(ApiError) as info:
            client.task_detail("dbid_404")
        assert info.value.kind is ApiErrorKind.NOT_FOUND

    def test_out_of_range_timestamp_is_malformed(self, client, server):
        entry = task_json("dbid_1")
        entry["additional"]["detail"] = {"create_time": 10 ** 20}
        server.tasks = [entry]
        with pytest.raises(ApiError) as info:
            client.task_detail("dbid_1")
        assert info.value.kind is ApiErrorKind.MALFORMED


class TestActions:
    @pytest.mark.parametrize("action", ["pause", "resume", "delete"])
    def test_action_sends_task_id(self, client, server, action):
        getattr(client, action)("dbid_1")
        _, params = server.requests[-1]
        assert params["method"] == action
        assert params["id"] == "dbid_1"

    def test_per_task_error_raises_command_error(self, client, server):
        server.action_errors["dbid_1"] = 405
        with pytest.raises(CommandError) as info:
            client.pause("dbid_1")
        assert info.value.kind is ApiErrorKind.SERVER_ERROR
        assert info.value.task_id == "dbid_1"

    def test_delete_of_missing_task_is_not_found(self, client):
        with pytest.raises(CommandError) as info:
            client.delete("7")
        assert info.value.kind is ApiErrorKind.NOT_FOUND
        assert str(info.value).startswith("Delete failed for 7")


def test_server_info(client):
    info = client.server_info()
    assert info.bt_max_download == 500
    assert info.default_destination == "downloads"
    assert info.emule_enabled is False


class TestActionResults:
    def test_failures_of_other_tasks_are_ignored(self):
        _check_action_results([{"id": "dbid_2", "error": 544}, {"id": "dbid_1", "error": 0}], "dbid_1")

    def test_failure_of_the_task_raises(self):
        with pytest.raises(ApiError) as info:
            _check_action_results([{"id": "dbid_2", "error": 0}, {"id": "dbid_1", "error": 404}], "dbid_1")
        assert info.value.kind is ApiErrorKind.NOT_FOUND

    def test_entry_without_id_still_counts(self):
        with pytest.raises(ApiError):
            _check_action_results([{"error": 405}], "dbid_1")

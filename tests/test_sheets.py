import json
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from activity_tracker.sync import sheets as sheets_module
from activity_tracker.sync.schema import (
    ACTIVITIES_TABLE,
    DOCUMENT_NAME,
    HEADERS,
    LAST_SYNC_KEY,
    METADATA_TABLE,
    SESSIONS_TABLE,
)
from activity_tracker.sync.sheets import GoogleSheetsBackend
from activity_tracker.tracker.errors import MirrorDocumentMissingError, MirrorUnavailableError


def _http_error(status):
    resp = MagicMock(status=status, reason="error")
    content = json.dumps({"error": {"message": f"status {status}"}}).encode("utf-8")
    return HttpError(resp, content)


@pytest.fixture
def services(monkeypatch):
    built = {"sheets": MagicMock(name="sheets"), "drive": MagicMock(name="drive")}
    calls = []

    def fake_build(name, version, credentials=None, cache_discovery=True):
        calls.append((name, version, cache_discovery))
        return built[name]

    monkeypatch.setattr(sheets_module, "build", fake_build)
    built["calls"] = calls
    return built


@pytest.fixture
def backend(services):
    provider = MagicMock()
    provider.acquire.return_value = "creds"
    sheets_backend = GoogleSheetsBackend(provider)
    sheets_backend.authorize()
    return sheets_backend


def _values(services):
    return services["sheets"].spreadsheets.return_value.values.return_value


def test_services_require_authorization():
    unauthorized = GoogleSheetsBackend(MagicMock())
    with pytest.raises(MirrorUnavailableError):
        unauthorized.append_rows("doc", SESSIONS_TABLE, [["s1"]])


def test_authorize_builds_both_services(backend, services):
    assert services["calls"] == [("sheets", "v4", False), ("drive", "v3", False)]
    backend.credentials.acquire.assert_called_once_with()


def test_find_queries_drive_by_name(backend, services):
    files = services["drive"].files.return_value
    files.list.return_value.execute.return_value = {"files": [{"id": "sheet-1", "name": DOCUMENT_NAME}]}

    assert backend.find(DOCUMENT_NAME) == "sheet-1"
    query = files.list.call_args.kwargs["q"]
    assert f"name = '{DOCUMENT_NAME}'" in query
    assert "trashed = false" in query

    files.list.return_value.execute.return_value = {"files": []}
    assert backend.find(DOCUMENT_NAME) is None


def test_exists_handles_trash_and_404(backend, services):
    get = services["drive"].files.return_value.get.return_value
    get.execute.return_value = {"id": "sheet-1", "trashed": False}
    assert backend.exists("sheet-1")
    get.execute.return_value = {"id": "sheet-1", "trashed": True}
    assert not backend.exists("sheet-1")
    get.execute.side_effect = _http_error(404)
    assert not backend.exists("sheet-1")


def test_create_writes_headers_and_metadata(backend, services):
    spreadsheets = services["sheets"].spreadsheets.return_value
    spreadsheets.create.return_value.execute.return_value = {"spreadsheetId": "sheet-1"}

    assert backend.create(DOCUMENT_NAME) == "sheet-1"

    body = spreadsheets.create.call_args.kwargs["body"]
    assert body["properties"]["title"] == DOCUMENT_NAME
    assert [s["properties"]["title"] for s in body["sheets"]] == [ACTIVITIES_TABLE, SESSIONS_TABLE, METADATA_TABLE]
    data = _values(services).batchUpdate.call_args.kwargs["body"]["data"]
    assert {"range": f"'{SESSIONS_TABLE}'!A1", "values": [HEADERS[SESSIONS_TABLE]]} in data


def test_append_and_replace_rows(backend, services):
    values = _values(services)
    backend.append_rows("sheet-1", SESSIONS_TABLE, [])
    values.append.assert_not_called()

    backend.append_rows("sheet-1", SESSIONS_TABLE, [("s1", "a1")])
    assert values.append.call_args.kwargs["body"] == {"values": [["s1", "a1"]]}

    backend.replace_rows("sheet-1", ACTIVITIES_TABLE, [["a1", "Work"]])
    assert values.clear.call_args.kwargs["range"] == f"'{ACTIVITIES_TABLE}'!A2:Z"
    assert values.update.call_args.kwargs["range"] == f"'{ACTIVITIES_TABLE}'!A2"


def test_set_metadata_updates_existing_key(backend, services):
    values = _values(services)
    values.get.return_value.execute.return_value = {"values": [["Key"], ["Version"], [LAST_SYNC_KEY]]}

    backend.set_metadata("sheet-1", LAST_SYNC_KEY, "now")

    assert values.update.call_args.kwargs["range"] == f"'{METADATA_TABLE}'!A3"
    assert values.update.call_args.kwargs["body"] == {"values": [[LAST_SYNC_KEY, "now"]]}
    values.append.assert_not_called()


def test_http_errors_are_translated(backend, services):
    values = _values(services)
    values.append.return_value.execute.side_effect = _http_error(404)
    with pytest.raises(MirrorDocumentMissingError):
        backend.append_rows("sheet-1", SESSIONS_TABLE, [["s1"]])

    values.append.return_value.execute.side_effect = _http_error(500)
    with pytest.raises(MirrorUnavailableError):
        backend.append_rows("sheet-1", SESSIONS_TABLE, [["s1"]])

    values.append.return_value.execute.side_effect = OSError("network down")
    with pytest.raises(MirrorUnavailableError):
        backend.append_rows("sheet-1", SESSIONS_TABLE, [["s1"]])


def test_close_drops_services(backend):
    backend.close()
    with pytest.raises(MirrorUnavailableError):
        backend.clear_rows("sheet-1", SESSIONS_TABLE)

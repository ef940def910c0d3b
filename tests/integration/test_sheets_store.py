"""Integration-style tests for the Google Sheets remote store adapter."""

from __future__ import annotations

import json

import pytest
import requests

from core.config import SyncConfig
from core.errors import AuthenticationRequired, RemoteOperationError
from core.interfaces import AuthProvider, SpreadsheetStorage
from sheets.client import GoogleSheetsStore
from sheets.schema import SPREADSHEET_HEADERS, article_to_row

SHEET = "sheet-123"
VALUES_BASE = f"{SyncConfig.SHEETS_API_BASE}/{SHEET}/values"


class DummyResponse:
    """Minimal response object carrying a JSON body."""

    def __init__(self, status_code: int = 200, payload: object = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def json(self) -> object:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class DummySession:
    """Sequence-driven session for deterministic HTTP behavior."""

    def __init__(self, responses: list[object] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict[str, object]] = []

    def request(self, method: str, url: str, **kwargs: object):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError("No more stubbed responses available")
        next_item = self.responses.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        return next_item


class CountingAuth(AuthProvider):
    def __init__(self) -> None:
        self.issued = 0
        self.cleared = 0

    def get_auth_token(self) -> str:
        self.issued += 1
        return f"tok-{self.issued}"

    def is_authenticated(self) -> bool:
        return True

    def handle_redirect(self) -> bool:
        return False

    def redirect_to_auth(self) -> str:
        return "https://accounts.example/consent"

    def clear_auth_token(self) -> None:
        self.cleared += 1


class MemoryStorage(SpreadsheetStorage):
    def __init__(self, spreadsheet_id: str | None = None) -> None:
        self.spreadsheet_id = spreadsheet_id

    def get_spreadsheet_id(self) -> str | None:
        return self.spreadsheet_id

    def set_spreadsheet_id(self, spreadsheet_id: str) -> None:
        self.spreadsheet_id = spreadsheet_id


class MutableClock:
    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


def _rows(*urls: str) -> DummyResponse:
    return DummyResponse(200, {"values": [[url, f"Title {url}"] for url in urls]})


def _store(session: DummySession, auth: AuthProvider | None = None, **kwargs) -> GoogleSheetsStore:
    kwargs.setdefault("spreadsheet_id", SHEET)
    return GoogleSheetsStore(auth_provider=auth or CountingAuth(), session=session, **kwargs)


@pytest.mark.integration
def test_get_articles_pads_short_rows_and_skips_blank_rows():
    session = DummySession(
        [
            DummyResponse(
                200,
                {
                    "values": [
                        ["https://a.example/", "A", "x, y"],
                        ["", "", ""],
                        [],
                        ["https://b.example/", "B", "", "", "", "", "2023-11-14T22:13:20.000Z", "b.example", "1"],
                    ]
                },
            )
        ]
    )

    records = _store(session).get_articles()

    assert [r["url"] for r in records] == ["https://a.example/", "https://b.example/"]
    assert records[0]["tags"] == "x, y"
    assert records[0]["edited_at"] == ""
    assert records[1]["archived"] == "1"
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == f"{VALUES_BASE}/Sheet1!A2:K"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tok-1"
    assert session.calls[0]["timeout"] == SyncConfig.REQUEST_TIMEOUT_SECONDS


@pytest.mark.integration
def test_records_are_validated_and_parsed_by_the_store():
    session = DummySession(
        [
            DummyResponse(
                200,
                {
                    "values": [
                        ["https://a.example/", "A", "x, y", "", "", "", "2023-11-14T22:13:20.000Z", "a.example", "", "1"],
                        ["https://b.example/", "  "],
                    ]
                },
            )
        ]
    )
    store = _store(session)

    valid, untitled = store.get_articles()

    assert store.is_valid_record(valid) is True
    assert store.is_valid_record(untitled) is False
    article = store.parse_record(valid)
    assert article.url == "https://a.example/"
    assert article.tags == ["x", "y"]
    assert article.favorite is True
    assert article.timestamp == 1_700_000_000_000
    with pytest.raises(ValueError, match="timestamp"):
        store.parse_record({**valid, "timestamp": ""})


@pytest.mark.integration
def test_empty_sheet_returns_no_records():
    session = DummySession([DummyResponse(200, {"range": "Sheet1!A2:K"})])

    assert _store(session).get_articles() == []


@pytest.mark.integration
def test_row_cache_is_reused_until_ttl_and_cleared_by_writes(make_article):
    clock = MutableClock(0.0)
    session = DummySession(
        [
            _rows("https://a.example/"),
            DummyResponse(200, {"updates": {"updatedRows": 1}}),
            _rows("https://a.example/", "https://example.com/post"),
            _rows("https://a.example/", "https://example.com/post"),
        ]
    )
    store = _store(session, clock_fn=clock, row_cache_ttl_seconds=30)

    assert len(store.get_articles()) == 1
    clock.value = 10.0
    assert len(store.get_articles()) == 1
    assert len(session.calls) == 1

    store.save_article(make_article())
    assert len(store.get_articles()) == 2
    assert len(session.calls) == 3

    clock.value = 45.0
    store.get_articles()
    assert len(session.calls) == 4


@pytest.mark.integration
def test_token_is_cached_and_401_clears_it():
    auth = CountingAuth()
    clock = MutableClock(0.0)
    session = DummySession(
        [
            _rows(),
            DummyResponse(401, {"error": {"message": "Invalid Credentials"}}),
            _rows(),
        ]
    )
    store = _store(session, auth=auth, clock_fn=clock, row_cache_ttl_seconds=0)

    store.get_articles()
    with pytest.raises(AuthenticationRequired):
        store.get_articles()
    assert auth.cleared == 1
    assert [c["headers"]["Authorization"] for c in session.calls] == ["Bearer tok-1", "Bearer tok-1"]

    store.get_articles()
    assert session.calls[-1]["headers"]["Authorization"] == "Bearer tok-2"


@pytest.mark.integration
def test_token_cache_expires():
    auth = CountingAuth()
    clock = MutableClock(0.0)
    session = DummySession([_rows(), _rows()])
    store = _store(session, auth=auth, clock_fn=clock, token_ttl_seconds=60, row_cache_ttl_seconds=0)

    store.get_articles()
    clock.value = 61.0
    store.get_articles()

    assert auth.issued == 2


@pytest.mark.integration
def test_api_error_message_and_status_are_surfaced():
    session = DummySession([DummyResponse(429, {"error": {"message": "Quota exceeded"}})])

    with pytest.raises(RemoteOperationError) as excinfo:
        _store(session).get_articles()

    assert str(excinfo.value) == "Quota exceeded"
    assert excinfo.value.status_code == 429


@pytest.mark.integration
def test_api_error_without_body_uses_status_code():
    session = DummySession([DummyResponse(503)])

    with pytest.raises(RemoteOperationError, match="API request failed with status 503"):
        _store(session).get_articles()


@pytest.mark.integration
def test_network_errors_become_remote_errors():
    session = DummySession([requests.ConnectionError("connection reset")])

    with pytest.raises(RemoteOperationError, match="connection reset"):
        _store(session).get_articles()


@pytest.mark.integration
def test_save_article_appends_raw_row(make_article):
    article = make_article(tags=["a", "b"], favorite=True)
    session = DummySession([DummyResponse(200, {"updates": {}})])

    _store(session).save_article(article)

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{VALUES_BASE}/Sheet1!A:K:append"
    assert call["params"] == {"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"}
    assert call["json"] == {"values": [article_to_row(article)]}


@pytest.mark.integration
def test_update_article_targets_matching_row(make_article):
    article = make_article("https://b.example/", title="Edited")
    session = DummySession(
        [
            _rows("https://a.example/", "https://b.example/"),
            DummyResponse(200, {"updatedRows": 1}),
        ]
    )

    _store(session).update_article(article)

    put = session.calls[1]
    assert put["method"] == "PUT"
    assert put["url"] == f"{VALUES_BASE}/Sheet1!A3:K3"
    assert put["json"] == {"values": [article_to_row(article)]}


@pytest.mark.integration
def test_update_article_without_row_fails(make_article):
    session = DummySession([_rows("https://a.example/")])

    with pytest.raises(RemoteOperationError, match="Article not found in spreadsheet"):
        _store(session).update_article(make_article("https://missing.example/"))
    assert len(session.calls) == 1


@pytest.mark.integration
def test_delete_article_without_row_is_success():
    session = DummySession([_rows("https://a.example/")])

    _store(session).delete_article("https://missing.example/")

    assert len(session.calls) == 1


@pytest.mark.integration
def test_delete_article_removes_sheet_row():
    session = DummySession(
        [
            _rows("https://a.example/", "https://b.example/"),
            DummyResponse(200, {"replies": [{}]}),
        ]
    )

    _store(session, sheet_id=7).delete_article("https://b.example/")

    call = session.calls[1]
    assert call["url"] == f"{SyncConfig.SHEETS_API_BASE}/{SHEET}:batchUpdate"
    assert call["json"] == {
        "requests": [
            {
                "deleteDimension": {
                    "range": {"sheetId": 7, "dimension": "ROWS", "startIndex": 2, "endIndex": 3}
                }
            }
        ]
    }


@pytest.mark.integration
def test_batch_delete_goes_bottom_up():
    session = DummySession(
        [
            _rows("https://a.example/", "https://b.example/", "https://c.example/"),
            DummyResponse(200, {"replies": [{}, {}]}),
        ]
    )

    results = _store(session).batch_delete_articles(
        ["https://a.example/", "https://c.example/", "https://missing.example/"]
    )

    assert all(result.success for result in results)
    ranges = [r["deleteDimension"]["range"]["startIndex"] for r in session.calls[1]["json"]["requests"]]
    assert ranges == [3, 1]


@pytest.mark.integration
def test_batch_update_reports_missing_rows(make_article):
    session = DummySession(
        [
            _rows("https://a.example/"),
            DummyResponse(200, {"totalUpdatedRows": 1}),
        ]
    )

    results = _store(session).batch_update_articles(
        [make_article("https://a.example/"), make_article("https://missing.example/")]
    )

    assert [(r.article_url, r.success) for r in results] == [
        ("https://a.example/", True),
        ("https://missing.example/", False),
    ]
    body = session.calls[1]["json"]
    assert body["valueInputOption"] == "RAW"
    assert [item["range"] for item in body["data"]] == ["Sheet1!A2:K2"]


@pytest.mark.integration
def test_batch_save_failure_is_per_article(make_article):
    session = DummySession([DummyResponse(500, {"error": {"message": "backend error"}})])

    results = _store(session).save_articles([make_article("https://a.example/"), make_article("https://b.example/")])

    assert [(r.success, r.error) for r in results] == [(False, "backend error"), (False, "backend error")]


@pytest.mark.integration
def test_spreadsheet_is_found_by_name_and_remembered():
    storage = MemoryStorage()
    session = DummySession([DummyResponse(200, {"files": [{"id": "found-1", "name": "ReadLater"}]})])
    store = _store(session, storage=storage, spreadsheet_id=None)

    assert store.get_or_create_remote_handle() == "found-1"
    assert store.get_or_create_remote_handle() == "found-1"
    assert storage.spreadsheet_id == "found-1"
    assert session.calls[0]["url"] == SyncConfig.DRIVE_API_BASE
    assert "name='ReadLater'" in session.calls[0]["params"]["q"]
    assert len(session.calls) == 1


@pytest.mark.integration
def test_spreadsheet_is_created_with_header_row():
    storage = MemoryStorage()
    session = DummySession(
        [
            DummyResponse(200, {"files": []}),
            DummyResponse(200, {"spreadsheetId": "new-1"}),
            DummyResponse(200, {"updatedRows": 1}),
        ]
    )
    store = _store(session, storage=storage, spreadsheet_id=None)

    assert store.get_or_create_remote_handle() == "new-1"

    assert session.calls[1]["json"] == {"properties": {"title": "ReadLater"}}
    header = session.calls[2]
    assert header["method"] == "PUT"
    assert header["url"] == f"{SyncConfig.SHEETS_API_BASE}/new-1/values/Sheet1!A1:K1"
    assert header["json"] == {"values": [list(SPREADSHEET_HEADERS)]}
    assert storage.spreadsheet_id == "new-1"


@pytest.mark.integration
def test_stored_spreadsheet_id_skips_discovery():
    session = DummySession([_rows()])
    store = _store(session, storage=MemoryStorage("stored-1"), spreadsheet_id=None)

    store.get_articles()

    assert session.calls[0]["url"] == f"{SyncConfig.SHEETS_API_BASE}/stored-1/values/Sheet1!A2:K"

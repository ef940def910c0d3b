"""Google Sheets remote store adapter with token and row-snapshot caches."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from core.config import SyncConfig
from core.errors import AuthenticationRequired, RemoteOperationError
from core.interfaces import AuthProvider, RemoteWriteResult, SpreadsheetStorage, SyncEngine
from core.models import Article
from core.structured_logging import emit_json_event
from sheets.schema import (
    LAST_COLUMN,
    SPREADSHEET_HEADERS,
    article_to_row,
    is_empty_row,
    is_valid_record,
    record_to_article,
    row_to_record,
)

SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

# First data row; row 1 holds the headers.
FIRST_DATA_ROW = 2


@dataclass(slots=True)
class TokenCacheEntry:
    """Bearer token reused until expires_at."""

    token: str
    expires_at: float


@dataclass(slots=True)
class RowCacheEntry:
    """Snapshot of all data rows (sheet rows 2..N)."""

    rows: list[list[str]]
    expires_at: float


class GoogleSheetsStore(SyncEngine):
    """
    SyncEngine backed by one Google Sheets spreadsheet.

    Caches:
    - bearer token for `token_ttl_seconds` (cleared on HTTP 401)
    - row snapshot for `row_cache_ttl_seconds` (cleared on every write)
    - resolved spreadsheet id for the lifetime of the instance
    """

    def __init__(
        self,
        auth_provider: AuthProvider,
        storage: SpreadsheetStorage | None = None,
        spreadsheet_id: str | None = None,
        spreadsheet_name: str = SyncConfig.SPREADSHEET_NAME,
        sheet_name: str = SyncConfig.SHEET_NAME,
        sheet_id: int = SyncConfig.SHEET_ID,
        session: requests.Session | None = None,
        timeout_seconds: float = SyncConfig.REQUEST_TIMEOUT_SECONDS,
        token_ttl_seconds: float = SyncConfig.TOKEN_CACHE_TTL_SECONDS,
        row_cache_ttl_seconds: float = SyncConfig.ROW_CACHE_TTL_SECONDS,
        clock_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize adapter, caches, and request-time policy defaults."""
        self.auth_provider = auth_provider
        self.storage = storage
        self.configured_spreadsheet_id = spreadsheet_id
        self.spreadsheet_name = spreadsheet_name
        self.sheet_name = sheet_name
        self.sheet_id = sheet_id
        self.timeout_seconds = timeout_seconds
        self.token_ttl_seconds = token_ttl_seconds
        self.row_cache_ttl_seconds = row_cache_ttl_seconds

        self._session = session or requests.Session()
        self._clock = clock_fn or time.monotonic
        self._token: TokenCacheEntry | None = None
        self._rows: RowCacheEntry | None = None
        self._spreadsheet_id: str | None = None

    # ------------------------------------------------------------------
    # Caches
    # ------------------------------------------------------------------

    def clear_token_cache(self) -> None:
        self._token = None

    def invalidate_rows(self) -> None:
        self._rows = None

    def _auth_token(self) -> str:
        now = self._clock()
        if self._token and self._token.expires_at > now:
            return self._token.token
        token = self.auth_provider.get_auth_token()
        self._token = TokenCacheEntry(token=token, expires_at=now + self.token_ttl_seconds)
        return token

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> dict[str, Any]:
        """Send one authorized request and decode its JSON body (empty body → {})."""
        headers = {
            "Authorization": f"Bearer {self._auth_token()}",
            "User-Agent": SyncConfig.USER_AGENT,
        }
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as exc:
            raise RemoteOperationError(f"Request to remote store timed out: {method} {url}") from exc
        except requests.RequestException as exc:
            raise RemoteOperationError(f"Request to remote store failed: {exc}") from exc

        if response.status_code == 401:
            self.clear_token_cache()
            self.auth_provider.clear_auth_token()
            emit_json_event(
                event_type="sheets_auth_rejected",
                run_id=None,
                level="warning",
                component="sheets",
                method=method,
                url=url,
            )
            raise AuthenticationRequired()

        if response.status_code >= 400:
            raise RemoteOperationError(
                _error_message(response),
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteOperationError("Remote store returned malformed JSON") from exc
        return payload if isinstance(payload, dict) else {"values": payload}

    def _values_url(self, spreadsheet_id: str, cell_range: str) -> str:
        return f"{SyncConfig.SHEETS_API_BASE}/{spreadsheet_id}/values/{cell_range}"

    def _row_range(self, row_number: int) -> str:
        return f"{self.sheet_name}!A{row_number}:{LAST_COLUMN}{row_number}"

    # ------------------------------------------------------------------
    # Spreadsheet resolution
    # ------------------------------------------------------------------

    def get_or_create_remote_handle(self) -> str:
        """
        Resolve the spreadsheet id once per instance.

        Order: explicitly configured id, SpreadsheetStorage, Drive search by
        name, then create a new spreadsheet with its header row.
        """
        if self._spreadsheet_id:
            return self._spreadsheet_id

        spreadsheet_id = self.configured_spreadsheet_id
        source = "configured"

        if not spreadsheet_id and self.storage is not None:
            spreadsheet_id = self.storage.get_spreadsheet_id()
            source = "storage"

        if not spreadsheet_id:
            spreadsheet_id = self._find_spreadsheet_by_name()
            source = "drive_search"
            if spreadsheet_id and self.storage is not None:
                self.storage.set_spreadsheet_id(spreadsheet_id)

        if not spreadsheet_id:
            spreadsheet_id = self._create_spreadsheet()
            source = "created"
            if self.storage is not None:
                self.storage.set_spreadsheet_id(spreadsheet_id)

        emit_json_event(
            event_type="sheets_spreadsheet_resolved",
            run_id=None,
            component="sheets",
            spreadsheet_id=spreadsheet_id,
            source=source,
        )
        self._spreadsheet_id = spreadsheet_id
        return spreadsheet_id

    def _find_spreadsheet_by_name(self) -> str | None:
        escaped = self.spreadsheet_name.replace("\\", "\\\\").replace("'", "\\'")
        query = (
            f"name='{escaped}' and mimeType='{SPREADSHEET_MIME_TYPE}' "
            "and 'root' in parents and trashed=false"
        )
        payload = self._request(
            "GET",
            SyncConfig.DRIVE_API_BASE,
            params={"q": query, "fields": "files(id,name)"},
        )
        files = payload.get("files") or []
        if files and files[0].get("id"):
            return str(files[0]["id"])
        return None

    def _create_spreadsheet(self) -> str:
        payload = self._request(
            "POST",
            SyncConfig.SHEETS_API_BASE,
            json_body={"properties": {"title": self.spreadsheet_name}},
        )
        spreadsheet_id = payload.get("spreadsheetId")
        if not spreadsheet_id:
            raise RemoteOperationError("Spreadsheet creation returned no spreadsheetId")
        self._request(
            "PUT",
            self._values_url(spreadsheet_id, self._row_range(1)),
            params={"valueInputOption": "RAW"},
            json_body={"values": [list(SPREADSHEET_HEADERS)]},
        )
        return str(spreadsheet_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_rows(self) -> list[list[str]]:
        now = self._clock()
        if self._rows and self._rows.expires_at > now:
            return self._rows.rows

        spreadsheet_id = self.get_or_create_remote_handle()
        payload = self._request(
            "GET",
            self._values_url(spreadsheet_id, f"{self.sheet_name}!A{FIRST_DATA_ROW}:{LAST_COLUMN}"),
        )
        values = payload.get("values") or []
        rows = [list(row) if isinstance(row, list) else [] for row in values]
        self._rows = RowCacheEntry(rows=rows, expires_at=now + self.row_cache_ttl_seconds)
        return rows

    def get_articles(self) -> list[dict[str, Any]]:
        return [row_to_record(row) for row in self._get_rows() if not is_empty_row(row)]

    def is_valid_record(self, record: Any) -> bool:
        return is_valid_record(record)

    def parse_record(self, record: dict[str, Any]) -> Article:
        return record_to_article(record)

    def find_row_by_url(self, url: str) -> int | None:
        """Return the 1-indexed sheet row holding url, or None."""
        return self._row_map().get(url)

    def _row_map(self) -> dict[str, int]:
        mapping: dict[str, int] = {}
        for index, row in enumerate(self._get_rows()):
            if row and row[0] and row[0] not in mapping:
                mapping[row[0]] = index + FIRST_DATA_ROW
        return mapping

    # ------------------------------------------------------------------
    # Single-row writes
    # ------------------------------------------------------------------

    def save_article(self, article: Article) -> None:
        self._append_rows([article_to_row(article)])

    def update_article(self, article: Article) -> None:
        row_number = self.find_row_by_url(article.url)
        if row_number is None:
            raise RemoteOperationError("Article not found in spreadsheet")
        spreadsheet_id = self.get_or_create_remote_handle()
        try:
            self._request(
                "PUT",
                self._values_url(spreadsheet_id, self._row_range(row_number)),
                params={"valueInputOption": "RAW"},
                json_body={"values": [article_to_row(article)]},
            )
        finally:
            self.invalidate_rows()

    def delete_article(self, url: str) -> None:
        row_number = self.find_row_by_url(url)
        if row_number is None:
            emit_json_event(
                event_type="sheets_delete_missing_row",
                run_id=None,
                component="sheets",
                article_url=url,
            )
            return
        self._delete_rows([row_number])

    # ------------------------------------------------------------------
    # Batched writes
    # ------------------------------------------------------------------

    def save_articles(self, articles: list[Article]) -> list[RemoteWriteResult]:
        if not articles:
            return []
        try:
            self._append_rows([article_to_row(article) for article in articles])
        except AuthenticationRequired:
            raise
        except RemoteOperationError as exc:
            return [RemoteWriteResult(article.url, False, str(exc)) for article in articles]
        return [RemoteWriteResult(article.url, True) for article in articles]

    def batch_update_articles(self, articles: list[Article]) -> list[RemoteWriteResult]:
        """Overwrite many rows with one values:batchUpdate call; unknown URLs fail individually."""
        if not articles:
            return []
        try:
            row_map = self._row_map()
            results: list[RemoteWriteResult] = []
            data: list[dict[str, Any]] = []
            for article in articles:
                row_number = row_map.get(article.url)
                if row_number is None:
                    results.append(
                        RemoteWriteResult(article.url, False, "Article not found in spreadsheet")
                    )
                    continue
                data.append({"range": self._row_range(row_number), "values": [article_to_row(article)]})
                results.append(RemoteWriteResult(article.url, True))

            if data:
                spreadsheet_id = self.get_or_create_remote_handle()
                try:
                    self._request(
                        "POST",
                        f"{SyncConfig.SHEETS_API_BASE}/{spreadsheet_id}/values:batchUpdate",
                        json_body={"valueInputOption": "RAW", "data": data},
                    )
                finally:
                    self.invalidate_rows()
            return results
        except AuthenticationRequired:
            raise
        except RemoteOperationError as exc:
            return [RemoteWriteResult(article.url, False, str(exc)) for article in articles]

    def batch_delete_articles(self, urls: list[str]) -> list[RemoteWriteResult]:
        """Delete many rows with one batchUpdate call; URLs with no row count as success."""
        if not urls:
            return []
        try:
            row_map = self._row_map()
            row_numbers = sorted({row_map[url] for url in urls if url in row_map})
            if row_numbers:
                self._delete_rows(row_numbers)
        except AuthenticationRequired:
            raise
        except RemoteOperationError as exc:
            return [RemoteWriteResult(url, False, str(exc)) for url in urls]
        return [RemoteWriteResult(url, True) for url in urls]

    # ------------------------------------------------------------------

    def _append_rows(self, rows: list[list[str]]) -> None:
        spreadsheet_id = self.get_or_create_remote_handle()
        try:
            self._request(
                "POST",
                self._values_url(spreadsheet_id, f"{self.sheet_name}!A:{LAST_COLUMN}") + ":append",
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                json_body={"values": rows},
            )
        finally:
            self.invalidate_rows()

    def _delete_rows(self, row_numbers: list[int]) -> None:
        """Delete sheet rows bottom-up so earlier deletions do not shift later ones."""
        spreadsheet_id = self.get_or_create_remote_handle()
        requests_body = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": self.sheet_id,
                        "dimension": "ROWS",
                        "startIndex": row_number - 1,
                        "endIndex": row_number,
                    }
                }
            }
            for row_number in sorted(row_numbers, reverse=True)
        ]
        try:
            self._request(
                "POST",
                f"{SyncConfig.SHEETS_API_BASE}/{spreadsheet_id}:batchUpdate",
                json_body={"requests": requests_body},
            )
        finally:
            self.invalidate_rows()


def _error_message(response: requests.Response) -> str:
    """Extract the API error message, falling back to the status code."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"API request failed with status {response.status_code}"

"""OAuth implicit-grant token provider and spreadsheet-id storage backed by JSON files."""

from __future__ import annotations

import json
import time
import webbrowser
from pathlib import Path
from typing import Any, Callable, Sequence
from urllib.parse import parse_qs, urlencode, urlsplit

from core.config import SyncConfig
from core.errors import AuthenticationRequired
from core.interfaces import AuthProvider, SpreadsheetStorage
from core.structured_logging import emit_json_event


def _read_json(path: Path) -> dict[str, Any]:
    """Read a small JSON state file; missing or corrupt files read as empty."""
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        emit_json_event(
            event_type="auth_state_file_unreadable",
            run_id=None,
            level="warning",
            component="auth",
            path=str(path),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return {}
    return payload if isinstance(payload, dict) else {}


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, sort_keys=True, ensure_ascii=True), encoding="utf-8")


class OAuthTokenAuthProvider(AuthProvider):
    """
    Bearer tokens from the OAuth 2.0 implicit grant, persisted to a JSON file.

    The consent page redirects to `redirect_uri` with the token in the URL
    fragment (`#access_token=...&expires_in=3600`). That URL is handed to the
    provider as `pending_redirect_url` and consumed by `handle_redirect()`.
    """

    def __init__(
        self,
        client_id: str | None,
        token_path: str | Path,
        redirect_uri: str = SyncConfig.OAUTH_REDIRECT_URI,
        scopes: Sequence[str] = SyncConfig.OAUTH_SCOPES,
        pending_redirect_url: str | None = None,
        open_browser: Callable[[str], object] | None = None,
        clock_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize provider and load any unexpired token from disk."""
        self.client_id = client_id
        self.token_path = Path(token_path)
        self.redirect_uri = redirect_uri
        self.scopes = tuple(scopes)
        self.pending_redirect_url = pending_redirect_url
        self._open_browser = open_browser or webbrowser.open
        self._clock = clock_fn or time.time
        self._token: str | None = None
        self._expires_at: float | None = None
        self._load_token()

    def _load_token(self) -> None:
        payload = _read_json(self.token_path)
        token = payload.get("access_token")
        expires_at = payload.get("expires_at")
        if isinstance(token, str) and token and isinstance(expires_at, (int, float)) and self._clock() < expires_at:
            self._token = token
            self._expires_at = float(expires_at)
        elif payload:
            self.clear_auth_token()

    def _set_token(self, token: str, expires_in: int) -> None:
        self._token = token
        self._expires_at = self._clock() + expires_in
        _write_json(self.token_path, {"access_token": token, "expires_at": self._expires_at})
        emit_json_event(
            event_type="auth_token_stored",
            run_id=None,
            component="auth",
            expires_in=expires_in,
        )

    def _token_is_valid(self) -> bool:
        return (
            self._token is not None
            and self._expires_at is not None
            and self._clock() < self._expires_at
        )

    def get_auth_token(self) -> str:
        if self._token_is_valid():
            return self._token  # type: ignore[return-value]
        raise AuthenticationRequired()

    def is_authenticated(self) -> bool:
        return self._token_is_valid()

    def handle_redirect(self) -> bool:
        """Store the token carried by pending_redirect_url, if it carries one."""
        redirect_url = self.pending_redirect_url
        if not redirect_url:
            return False

        params = parse_qs(urlsplit(redirect_url).fragment)
        access_token = (params.get("access_token") or [None])[0]
        expires_in = (params.get("expires_in") or [None])[0]
        if not access_token or not expires_in:
            return False
        try:
            lifetime = int(expires_in)
        except ValueError:
            return False

        self._set_token(access_token, lifetime)
        self.pending_redirect_url = None
        return True

    def authorization_url(self) -> str:
        if not self.client_id:
            raise ValueError("client_id is required to start the consent flow")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "token",
            "scope": " ".join(self.scopes),
            "include_granted_scopes": "true",
            "state": "pass-through-value",
        }
        return f"{SyncConfig.OAUTH_AUTHORIZE_URL}?{urlencode(params)}"

    def redirect_to_auth(self) -> str:
        """Open the consent page and return its URL without waiting for the user."""
        url = self.authorization_url()
        self._open_browser(url)
        return url

    def clear_auth_token(self) -> None:
        self._token = None
        self._expires_at = None
        if self.token_path.exists():
            self.token_path.unlink()


class FileSpreadsheetStorage(SpreadsheetStorage):
    """Remember the resolved spreadsheet id in a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get_spreadsheet_id(self) -> str | None:
        value = _read_json(self.path).get("spreadsheet_id")
        return str(value) if value else None

    def set_spreadsheet_id(self, spreadsheet_id: str) -> None:
        _write_json(self.path, {"spreadsheet_id": spreadsheet_id})

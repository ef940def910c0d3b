"""
Default sync configuration for readlater-sync.

These settings describe how the local store, the remote spreadsheet adapter
and the sync orchestrator behave. Components read their defaults from here
and accept constructor overrides (mostly for tests).

Design: everything defaults to "safe + slow" mode. A sync cycle is a
pull-on-demand operation, so throughput is a non-goal; not losing user data
is the goal.
"""

from typing import Tuple


class SyncConfig:
    """
    Sync settings validated at import time.

    Times are in seconds unless the name says otherwise. Article timestamps
    are milliseconds since epoch, so the conflict windows are in ms.
    """

    # ========================================================================
    # Sync Cycle
    # ========================================================================

    SYNC_TIMEOUT_SECONDS: float = 120.0
    """Wall-clock budget for one sync cycle before it is forced to error."""

    QUEUE_BATCH_SIZE: int = 5
    """Outgoing operations processed per batch."""

    QUEUE_BATCH_DELAY_SECONDS: float = 0.1
    """Pause between batches so the remote API is not burst."""

    MAX_OPERATION_ATTEMPTS: int = 3
    """Total attempts for one queued operation before it is dropped."""

    STALE_OPERATION_MAX_AGE_SECONDS: int = 60 * 60
    """Recovery removes exhausted queue entries older than this."""

    # ========================================================================
    # Conflict Resolution
    # ========================================================================

    CONFLICT_GRACE_WINDOW_MS: int = 5 * 60 * 1000
    """A pending local edit beats a remote version unless remote is newer by more than this."""

    SUSPICIOUS_GAP_MS: int = 365 * 24 * 60 * 60 * 1000
    """Timestamp gap between versions that is logged as suspicious."""

    REMOTE_INVALID_RATIO_LIMIT: float = 0.5
    """A pull is rejected when at least this share of remote entries is invalid."""

    # ========================================================================
    # Caches
    # ========================================================================

    COUNT_CACHE_TTL_SECONDS: float = 30.0
    """Lifetime of memoized repository counts."""

    ROW_CACHE_TTL_SECONDS: float = 30.0
    """Lifetime of the remote row snapshot."""

    TOKEN_CACHE_TTL_SECONDS: float = 45 * 60.0
    """Lifetime of the cached bearer token."""

    # ========================================================================
    # Repository
    # ========================================================================

    DEFAULT_PAGE_SIZE: int = 50
    """Default page size for listing and search."""

    RECENCY_WINDOW_DAYS: int = 7
    """Articles younger than this get a small search bonus."""

    RECENCY_BONUS: float = 0.5
    """Search bonus for recent articles that already match."""

    DELETED_RETENTION_DAYS: int = 30
    """Soft-deleted articles are purged after this many days."""

    # ========================================================================
    # Remote Spreadsheet
    # ========================================================================

    REQUEST_TIMEOUT_SECONDS: int = 30
    """Per-request HTTP timeout for the remote store."""

    SPREADSHEET_NAME: str = "ReadLater"
    """Title of the spreadsheet created for a new user."""

    SHEET_NAME: str = "Sheet1"
    """Worksheet holding the article rows."""

    SHEET_ID: int = 0
    """Numeric id of that worksheet (first sheet of a new spreadsheet)."""

    SHEETS_API_BASE: str = "https://sheets.googleapis.com/v4/spreadsheets"
    DRIVE_API_BASE: str = "https://www.googleapis.com/drive/v3/files"
    OAUTH_AUTHORIZE_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
    OAUTH_REDIRECT_URI: str = "http://localhost:8765/"

    OAUTH_SCOPES: Tuple[str, ...] = (
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive.file",
        "https://www.googleapis.com/auth/drive.appdata",
    )
    """Scopes requested during the consent redirect."""

    USER_AGENT: str = "readlater-sync/0.1"
    """User-Agent header for remote calls."""

    @classmethod
    def validate(cls) -> None:
        """
        Validate configuration at startup.

        Raises:
            AssertionError: If any constraint is violated.
        """
        assert cls.SYNC_TIMEOUT_SECONDS > 0, "SYNC_TIMEOUT_SECONDS must be > 0"

        assert cls.QUEUE_BATCH_SIZE >= 1, "QUEUE_BATCH_SIZE must be ≥1"

        assert (
            cls.QUEUE_BATCH_DELAY_SECONDS >= 0
        ), "QUEUE_BATCH_DELAY_SECONDS must be ≥0"

        assert (
            cls.MAX_OPERATION_ATTEMPTS >= 1
        ), "MAX_OPERATION_ATTEMPTS must be ≥1"

        assert (
            0 < cls.REMOTE_INVALID_RATIO_LIMIT <= 1
        ), "REMOTE_INVALID_RATIO_LIMIT must be in (0, 1]"

        assert (
            cls.CONFLICT_GRACE_WINDOW_MS >= 0
        ), "CONFLICT_GRACE_WINDOW_MS must be ≥0"

        assert (
            cls.TOKEN_CACHE_TTL_SECONDS > cls.ROW_CACHE_TTL_SECONDS
        ), "TOKEN_CACHE_TTL_SECONDS must outlive ROW_CACHE_TTL_SECONDS"

        assert cls.DEFAULT_PAGE_SIZE > 0, "DEFAULT_PAGE_SIZE must be > 0"

        assert (
            cls.DELETED_RETENTION_DAYS > 0
        ), "DELETED_RETENTION_DAYS must be > 0"


# Validate at module import time
SyncConfig.validate()

"""Error taxonomy shared by the repository, remote adapter and orchestrator."""


class SyncError(Exception):
    """Base class for every sync-related failure."""


class AuthenticationRequired(SyncError):
    """Raised when no valid bearer token is available. Never retried within a cycle."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ValidationFailure(SyncError):
    """Raised when a remote payload is malformed or mostly corrupt."""


class RemoteOperationError(SyncError):
    """Raised when one remote read/write call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PreconditionFailure(SyncError):
    """Raised when the local store is unreachable before a cycle starts."""


class SyncTimeout(SyncError):
    """Raised inside a cycle once its wall-clock budget has been exceeded."""


class ArticleNotFound(SyncError, LookupError):
    """Raised when a local mutation targets a URL that is not stored."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Article not found: {url}")
        self.url = url

"""Core module for readlater-sync."""

from core.models import (
    Article,
    ArticleFilters,
    CreateOperation,
    DeleteOperation,
    PaginatedResult,
    PaginationCursor,
    SyncOperation,
    SyncPhase,
    SyncResult,
    SyncState,
    SyncStatus,
    UpdateOperation,
)
from core.config import SyncConfig
from core.errors import (
    ArticleNotFound,
    AuthenticationRequired,
    PreconditionFailure,
    RemoteOperationError,
    SyncError,
    SyncTimeout,
    ValidationFailure,
)

__all__ = [
    "Article",
    "ArticleFilters",
    "CreateOperation",
    "UpdateOperation",
    "DeleteOperation",
    "SyncOperation",
    "PaginationCursor",
    "PaginatedResult",
    "SyncPhase",
    "SyncStatus",
    "SyncState",
    "SyncResult",
    "SyncConfig",
    "SyncError",
    "AuthenticationRequired",
    "ValidationFailure",
    "RemoteOperationError",
    "PreconditionFailure",
    "SyncTimeout",
    "ArticleNotFound",
]

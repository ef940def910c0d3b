"""
Core Pydantic models for readlater-sync.

Design principles:
- Every model is explicitly typed and validated
- The URL is the identity of an article (callers normalize it first)
- Timestamps are integer milliseconds since epoch, UTC
- Outgoing changes are first-class records (SyncOperation), not flags
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from core.clock import now_ms


# ============================================================================
# Enums
# ============================================================================

class SyncStatus(str, Enum):
    """Has the latest local version of an article reached the remote store?"""
    SYNCED = "synced"
    PENDING = "pending"


class SyncPhase(str, Enum):
    """Lifecycle status broadcast by the sync orchestrator."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    AUTH_REQUIRED = "auth-required"
    CHECKING_AUTH = "checking-auth"
    NOT_AUTHENTICATED = "not-authenticated"


class SortOrder(str, Enum):
    DESC = "desc"
    ASC = "asc"


# ============================================================================
# Article
# ============================================================================

class Article(BaseModel):
    """
    A saved bookmark.

    `url` is the primary key. `timestamp` is the creation time; `edited_at`
    and `deleted_at` are later change markers. `deleted_at` marks a soft
    delete and supersedes `edited_at` as the most recent change.

    Example:
      url = "https://example.com/post"
      title = "Example Post"
      domain = "example.com"
      tags = ["python", "sync"]
      timestamp = 1700000000000
      sync_status = "pending"
    """
    url: str = Field(min_length=1)
    title: str
    description: Optional[str] = None
    featured_image: Optional[str] = None
    domain: str
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    archived: bool = False
    favorite: bool = False

    timestamp: int = Field(default_factory=now_ms, ge=0)
    edited_at: Optional[int] = None
    deleted_at: Optional[int] = None

    sync_status: SyncStatus = SyncStatus.PENDING

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        """Strip blanks and drop duplicates, keeping first-seen order."""
        seen: list[str] = []
        for tag in v:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @model_validator(mode="after")
    def check_edit_order(self) -> "Article":
        if self.edited_at is not None and self.edited_at < self.timestamp:
            raise ValueError("edited_at must not precede timestamp")
        return self

    @property
    def change_time(self) -> int:
        """Most recent change marker: deleted_at, then edited_at, then timestamp."""
        if self.deleted_at is not None:
            return self.deleted_at
        if self.edited_at is not None:
            return self.edited_at
        return self.timestamp

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ============================================================================
# Sync Operations (Outgoing Change Queue)
# ============================================================================

class _OperationBase(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    article_url: str
    timestamp: int = Field(default_factory=now_ms)
    retry_count: int = Field(default=0, ge=0)


class CreateOperation(_OperationBase):
    """Append a new article to the remote store."""
    type: Literal["create"] = "create"
    article: Article


class UpdateOperation(_OperationBase):
    """
    Replace the remote row for `article_url` with the snapshot in `article`.

    `changed_fields` lists the fields touched by the local edit. The remote
    write is always a full-row write; the list is kept for logging.
    """
    type: Literal["update"] = "update"
    article: Article
    changed_fields: List[str] = Field(default_factory=list)


class DeleteOperation(_OperationBase):
    """Remove the remote row for `article_url`. The article may already be gone locally."""
    type: Literal["delete"] = "delete"


SyncOperation = Annotated[
    Union[CreateOperation, UpdateOperation, DeleteOperation],
    Field(discriminator="type"),
]

SYNC_OPERATION_ADAPTER: TypeAdapter[SyncOperation] = TypeAdapter(SyncOperation)


def parse_operation(payload: str) -> SyncOperation:
    """Parse a JSON-serialized operation back into its concrete variant."""
    return SYNC_OPERATION_ADAPTER.validate_json(payload)


# ============================================================================
# Queries
# ============================================================================

class PaginationCursor(BaseModel):
    """Position of the last row returned; `url` breaks timestamp ties."""
    model_config = ConfigDict(frozen=True)

    timestamp: int
    url: str


class PaginatedResult(BaseModel):
    items: List[Article] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[PaginationCursor] = None
    total_count: Optional[int] = None


class ArticleFilters(BaseModel):
    """
    Optional filters combined with AND.

    `tags` matches articles carrying any of the listed tags. Frozen so an
    instance can key the repository count cache.
    """
    model_config = ConfigDict(frozen=True)

    archived: Optional[bool] = None
    favorite: Optional[bool] = None
    domain: Optional[str] = None
    sync_status: Optional[SyncStatus] = None
    deleted: Optional[bool] = None
    tags: Optional[tuple[str, ...]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return None
        return tuple(sorted(set(v)))

    def cache_key(self) -> str:
        return self.model_dump_json()


# ============================================================================
# Sync State
# ============================================================================

class SyncState(BaseModel):
    """Snapshot broadcast to state listeners on every change."""
    status: SyncPhase = SyncPhase.IDLE
    pending_count: int = 0
    last_sync_time: Optional[int] = None
    error: Optional[str] = None


class SyncResult(BaseModel):
    success: bool
    error: Optional[str] = None


class SyncCheckpoint(BaseModel):
    """Pre-sync snapshot kept for diagnostics and verification."""
    timestamp: int = Field(default_factory=now_ms)
    article_count: int
    sync_queue_count: int
    last_sync_time: Optional[int] = None

"""
Interfaces the sync orchestrator depends on.

The orchestrator never talks to a concrete backend. It receives:
- a SyncEngine (remote tabular store: read all rows, write one or many)
- an AuthProvider (bearer token lifecycle and the consent redirect)

and a SyncEngine implementation may in turn use a SpreadsheetStorage to
remember which remote table backs this user.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from core.models import Article


@dataclass(slots=True)
class RemoteWriteResult:
    """Per-article outcome of a batched remote write."""

    article_url: str
    success: bool
    error: str | None = None


class SyncEngine(ABC):
    """
    Remote store adapter: read/write article rows.

    Single-row writes raise on failure:
    - AuthenticationRequired when no valid token is available (never retried)
    - RemoteOperationError for any other per-call failure

    Batched writes return one RemoteWriteResult per input instead.
    """

    @abstractmethod
    def get_or_create_remote_handle(self) -> str:
        """
        Resolve (and cache) the id of the remote table backing this user.

        Creates the table with its header row when none exists yet.
        """
        pass

    @abstractmethod
    def get_articles(self) -> list[dict[str, Any]]:
        """
        Return every non-empty remote row as a keyed record.

        Records are returned unvalidated; callers check them with
        is_valid_record and parse_record. Entirely blank rows are dropped.
        """
        pass

    @abstractmethod
    def is_valid_record(self, record: Any) -> bool:
        """True when a record from get_articles carries a usable url and title."""
        pass

    @abstractmethod
    def parse_record(self, record: dict[str, Any]) -> Article:
        """
        Build a synced Article from a valid record.

        Raises:
            ValueError: If the record cannot be turned into an Article.
        """
        pass

    @abstractmethod
    def save_article(self, article: Article) -> None:
        """Append one article as a new row."""
        pass

    @abstractmethod
    def update_article(self, article: Article) -> None:
        """
        Overwrite the row whose URL matches article.url.

        Raises:
            RemoteOperationError: If no row carries that URL.
        """
        pass

    @abstractmethod
    def delete_article(self, url: str) -> None:
        """Delete the row for url. A URL with no row counts as success."""
        pass

    @abstractmethod
    def save_articles(self, articles: list[Article]) -> list[RemoteWriteResult]:
        pass

    @abstractmethod
    def batch_update_articles(self, articles: list[Article]) -> list[RemoteWriteResult]:
        pass

    @abstractmethod
    def batch_delete_articles(self, urls: list[str]) -> list[RemoteWriteResult]:
        pass


class AuthProvider(ABC):
    """Bearer-token source for the remote store."""

    @abstractmethod
    def get_auth_token(self) -> str:
        """
        Return a valid bearer token.

        Raises:
            AuthenticationRequired: If no unexpired token is available.
        """
        pass

    @abstractmethod
    def is_authenticated(self) -> bool:
        pass

    @abstractmethod
    def handle_redirect(self) -> bool:
        """Consume a pending redirect credential, if any. Returns whether one was stored."""
        pass

    @abstractmethod
    def redirect_to_auth(self) -> str:
        """Start the external consent flow (fire-and-forget) and return its URL."""
        pass

    @abstractmethod
    def clear_auth_token(self) -> None:
        pass


class SpreadsheetStorage(ABC):
    """Durable memory of the resolved remote table id."""

    @abstractmethod
    def get_spreadsheet_id(self) -> str | None:
        pass

    @abstractmethod
    def set_spreadsheet_id(self, spreadsheet_id: str) -> None:
        pass

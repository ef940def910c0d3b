"""Storage module."""

from storage.repository import ArticleRepository
from storage.sqlite import SQLiteArticleStore

__all__ = ["SQLiteArticleStore", "ArticleRepository"]

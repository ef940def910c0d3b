"""Google Sheets remote store: row schema, REST adapter, and OAuth token provider."""

from sheets.auth import FileSpreadsheetStorage, OAuthTokenAuthProvider
from sheets.client import GoogleSheetsStore
from sheets.schema import SPREADSHEET_HEADERS, article_to_row, record_to_article, row_to_record

__all__ = [
    "GoogleSheetsStore",
    "OAuthTokenAuthProvider",
    "FileSpreadsheetStorage",
    "SPREADSHEET_HEADERS",
    "article_to_row",
    "row_to_record",
    "record_to_article",
]

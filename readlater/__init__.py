"""readlater-sync: offline-first bookmark store synchronized with Google Sheets."""

__version__ = "0.1.0"

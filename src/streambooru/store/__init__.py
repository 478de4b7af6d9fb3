"""Local state persistence."""

from .base import StateStore
from .site_list import SiteListStore, parse_site_list
from .sqlite_store import SQLiteStore

__all__ = ["SQLiteStore", "SiteListStore", "StateStore", "parse_site_list"]

"""Storage layer for martlink."""

from martlink.storage.database import Database, get_db
from martlink.storage.repositories import (
    LinkRepository,
    MartRepository,
    ReportCacheRepository,
)

__all__ = [
    "Database",
    "get_db",
    "LinkRepository",
    "MartRepository",
    "ReportCacheRepository",
]

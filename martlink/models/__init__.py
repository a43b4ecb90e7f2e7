"""Database models for martlink."""

from martlink.models.link import Link
from martlink.models.mart import Mart
from martlink.models.report_cache import LinkReportCache

__all__ = ["Link", "Mart", "LinkReportCache"]

"""Service layer for business logic and validation."""

from martlink.services.link_service import LinkService
from martlink.services.mart_service import MartService
from martlink.services.report_service import ReportService

__all__ = ["LinkService", "MartService", "ReportService"]

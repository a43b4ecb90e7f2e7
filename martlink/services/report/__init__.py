"""Report service module with polling and payload parsing components."""

from martlink.services.report.polling import poll_report

__all__ = ["poll_report"]

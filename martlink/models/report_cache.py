"""Cache rows for link report responses."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from martlink.models.base import Base


class LinkReportCache(Base):
    """Last report response for a short URL, valid until expires_at."""

    __tablename__ = "link_report_cache"

    short_url: Mapped[str] = mapped_column(String(500), primary_key=True)
    report_status: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<LinkReportCache(short_url={self.short_url!r}, report_status={self.report_status!r})>"

"""Link model for storing created tracking links."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from martlink.models.base import Base


class Link(Base):
    """A tracking link created for one mart/creative combination."""

    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mart_code: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ad_creative: Mapped[str] = mapped_column(String(255), nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(500), nullable=False)
    airbridge_link_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    short_url: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id!r}, campaign_name={self.campaign_name!r}, short_url={self.short_url!r})>"

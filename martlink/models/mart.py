"""Mart model for store metadata synced from the spreadsheet."""

from typing import Optional

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from martlink.models.base import Base, TimestampMixin


class Mart(Base, TimestampMixin):
    """A store that links are created for."""

    __tablename__ = "marts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mart_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tel: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manager_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manager_tel: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Mart(mart_id={self.mart_id!r}, code={self.code!r}, name={self.name!r})>"

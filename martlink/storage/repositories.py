"""Repository pattern implementation for data access layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from martlink.models.link import Link
from martlink.models.mart import Mart
from martlink.models.report_cache import LinkReportCache


class LinkRepository:
    """Repository for link operations."""

    def __init__(self, session: Session):
        """Initialize repository with a database session."""
        self.session = session

    def create(self, link: Link) -> Link:
        """Create a new link."""
        self.session.add(link)
        self.session.flush()
        return link

    def list(
        self,
        mart_code: Optional[str] = None,
        limit: int = 20,
    ) -> list[Link]:
        """List links newest first, optionally for one mart."""
        query = select(Link)
        if mart_code:
            query = query.where(Link.mart_code == mart_code)
        query = query.order_by(Link.created_at.desc(), Link.id.desc()).limit(limit)
        return list(self.session.scalars(query))

    def count(self) -> int:
        """Count all links."""
        return self.session.scalar(select(func.count(Link.id))) or 0

    def delete_all(self) -> None:
        """Delete every link."""
        self.session.execute(delete(Link))


class MartRepository:
    """Repository for mart operations."""

    def __init__(self, session: Session):
        """Initialize repository with a database session."""
        self.session = session

    def get_by_mart_id(self, mart_id: int) -> Optional[Mart]:
        """Get mart by its spreadsheet mart_id."""
        stmt = select(Mart).where(Mart.mart_id == mart_id)
        return self.session.scalar(stmt)

    def search(
        self,
        name_pattern: str = "",
        offset: int = 0,
        limit: int = 40,
        include_disabled: bool = False,
    ) -> list[Mart]:
        """Search marts by name substring, ordered by name."""
        query = select(Mart)
        if not include_disabled:
            query = query.where(Mart.enabled.is_(True))
        if name_pattern:
            query = query.where(Mart.name.ilike(f"%{name_pattern}%"))
        query = query.order_by(Mart.name.asc()).offset(offset).limit(limit)
        return list(self.session.scalars(query))

    def count(self, enabled: Optional[bool] = None) -> int:
        """Count marts, optionally only enabled or disabled ones."""
        query = select(func.count(Mart.id))
        if enabled is not None:
            query = query.where(Mart.enabled.is_(enabled))
        return self.session.scalar(query) or 0

    def get_codes(self) -> list[tuple[Optional[int], Optional[str]]]:
        """Return (mart_id, code) for every stored mart."""
        rows = self.session.execute(select(Mart.mart_id, Mart.code))
        return [(row.mart_id, row.code) for row in rows]

    def upsert_many(self, records: Iterable[dict[str, Any]]) -> int:
        """Insert or update marts keyed by mart_id. Returns the number of rows written."""
        written = 0
        for record in records:
            mart = self.get_by_mart_id(record["mart_id"])
            if mart is None:
                mart = Mart(**record)
                self.session.add(mart)
            else:
                for key, value in record.items():
                    setattr(mart, key, value)
            written += 1
        self.session.flush()
        return written


class ReportCacheRepository:
    """Repository for cached link reports."""

    def __init__(self, session: Session):
        """Initialize repository with a database session."""
        self.session = session

    def get(self, short_url: str) -> Optional[LinkReportCache]:
        """Get the cache row for a short URL."""
        return self.session.get(LinkReportCache, short_url)

    def upsert(
        self,
        short_url: str,
        report_status: str,
        data: dict[str, Any],
        expires_at: datetime,
        updated_at: datetime,
    ) -> LinkReportCache:
        """Insert or replace the cache row for a short URL."""
        row = self.get(short_url)
        if row is None:
            row = LinkReportCache(short_url=short_url)
            self.session.add(row)
        row.report_status = report_status
        row.data = data
        row.expires_at = expires_at
        row.updated_at = updated_at
        self.session.flush()
        return row

"""Mart service layer: search, statistics and spreadsheet sync."""

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from martlink.clients.google_sheets import GoogleSheetsClient, SheetLoadResult
from martlink.config import Settings, get_settings
from martlink.exceptions import ConfigurationError, DatabaseError
from martlink.services.link.validation import LinkValidator
from martlink.services.mart.codes import (
    dedupe_by_mart_id,
    ensure_codes_free_in_db,
    ensure_unique_codes,
)
from martlink.storage.repositories import MartRepository

logger = logging.getLogger(__name__)


class MartService:
    """Service layer for mart lookups and the spreadsheet sync."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        sheets_factory: Callable[[Settings], Any] = GoogleSheetsClient,
    ):
        """
        Initialize mart service.

        Args:
            session: SQLAlchemy database session
            settings: Application settings. Defaults to the cached settings.
            sheets_factory: Builds the sheet loader from settings
        """
        self.session = session
        self.settings = settings or get_settings()
        self.sheets_factory = sheets_factory
        self.mart_repo = MartRepository(session)

    def search_marts(
        self,
        q: str | None = None,
        offset: int | str | None = 0,
        limit: int | str | None = None,
        include_disabled: bool = False,
    ) -> dict[str, Any]:
        """
        Search marts by name.

        Args:
            q: Name substring (case-insensitive)
            offset: Rows to skip. Non-numeric values count as 0.
            limit: Page size, clamped to 1..100. Defaults to 30 with a query, 40 without,
                also when the value is not numeric.
            include_disabled: Include marts that are not enabled

        Returns:
            Dict with ``items`` and ``paging``

        Raises:
            DatabaseError: If database operation fails
        """
        q = (q or "").strip()
        offset = max(0, LinkValidator.parse_int(offset) or 0)
        limit = LinkValidator.clamp_limit(limit, default=30 if q else 40)

        try:
            items = self.mart_repo.search(
                name_pattern=q, offset=offset, limit=limit, include_disabled=include_disabled
            )
        except Exception as e:
            raise DatabaseError(f"마트 검색 실패: {str(e)}", e) from e

        return {
            "items": items,
            "paging": {"offset": offset, "limit": limit, "has_more": len(items) == limit},
        }

    def get_stats(self) -> dict[str, int]:
        """
        Count all, enabled and disabled marts.

        Raises:
            DatabaseError: If database operation fails
        """
        try:
            return {
                "total": self.mart_repo.count(),
                "enabled": self.mart_repo.count(enabled=True),
                "disabled": self.mart_repo.count(enabled=False),
            }
        except Exception as e:
            raise DatabaseError(f"마트 통계 조회 실패: {str(e)}", e) from e

    def _normalize_records(self, loaded: SheetLoadResult) -> list[dict[str, Any]]:
        records, dropped = dedupe_by_mart_id(loaded.records)
        records, adjusted_in_batch = ensure_unique_codes(records)

        reserved_codes = set()
        code_by_mart_id = {}
        for mart_id, code in self.mart_repo.get_codes():
            if code:
                reserved_codes.add(code)
                if mart_id is not None:
                    code_by_mart_id[mart_id] = code

        records, adjusted_against_db = ensure_codes_free_in_db(records, reserved_codes, code_by_mart_id)
        if dropped + adjusted_in_batch + adjusted_against_db > 0:
            logger.warning(
                f"Normalized mart records (dropped_by_mart_id={dropped}, "
                f"adjusted_in_batch={adjusted_in_batch}, adjusted_against_db={adjusted_against_db})"
            )
        return records

    def sync_marts(self) -> dict[str, int]:
        """
        Load marts from the spreadsheet and upsert them by mart_id.

        Returns:
            Summary with ``total`` sheet rows, ``upserted`` and ``skipped`` counts

        Raises:
            ConfigurationError: If Google Sheets is not configured
            SheetsError: If the spreadsheet cannot be read
            DatabaseError: If database operation fails
        """
        missing = self.settings.get_missing_google_keys()
        if missing:
            raise ConfigurationError(f"Google env 누락: {', '.join(missing)}", missing)

        loaded = self.sheets_factory(self.settings).load_marts()

        try:
            records = self._normalize_records(loaded)
            if not records:
                return {"total": loaded.total_rows, "upserted": 0, "skipped": loaded.skipped_rows}

            upserted = self.mart_repo.upsert_many(records)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise DatabaseError(f"마트 upsert 실패: {str(e)}", e) from e

        logger.info(f"Synced {upserted} marts from {loaded.total_rows} sheet rows")
        return {
            "total": loaded.total_rows,
            "upserted": upserted,
            "skipped": max(loaded.total_rows - upserted, loaded.skipped_rows),
        }


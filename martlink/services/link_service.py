"""Link service layer for business logic and validation."""

import logging
import secrets
from datetime import datetime
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from martlink.clients.airbridge import AirbridgeClient
from martlink.config import Settings, get_settings
from martlink.exceptions import (
    AuthorizationError,
    ConfigurationError,
    DatabaseError,
    ValidationError,
)
from martlink.models.link import Link
from martlink.services.link.batch import BatchResult, LinkTask, run_with_concurrency
from martlink.services.link.validation import LinkValidator
from martlink.storage.repositories import LinkRepository

logger = logging.getLogger(__name__)

MOCK_SHORT_URL_BASE = "https://qmarket.online/mock"


class LinkService:
    """Service layer for creating, listing and clearing tracking links."""

    def __init__(
        self,
        session: Session,
        airbridge: AirbridgeClient | None = None,
        settings: Settings | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize link service.

        Args:
            session: SQLAlchemy database session
            airbridge: Airbridge client. Defaults to one built from settings.
            settings: Application settings. Defaults to the cached settings.
            now: Clock used for campaign names
        """
        self.session = session
        self.settings = settings or get_settings()
        self.airbridge = airbridge or AirbridgeClient(timeout=self.settings.airbridge_timeout)
        self.link_repo = LinkRepository(session)
        self.validator = LinkValidator()
        self.now = now

    async def _create_tracking_link(self, campaign_name: str, mart_code: str, creative: str) -> dict[str, Any]:
        token = self.settings.get_link_token()
        if token is None:
            return {
                "short_url": f"{MOCK_SHORT_URL_BASE}/{secrets.token_hex(8)[:12]}",
                "airbridge_link_id": None,
            }
        return await self.airbridge.create_tracking_link(
            token=token,
            channel=self.settings.airbridge_channel_name,
            campaign=campaign_name,
            ad_group=mart_code,
            ad_creative=creative,
            deeplink_url=self.settings.airbridge_deeplink_url,
        )

    async def create_link(self, mart_code: str, ad_creative: str) -> Link:
        """
        Create a tracking link for a mart/creative pair and record it.

        Without Airbridge configuration a mock short URL is recorded instead.

        Args:
            mart_code: Mart code, used as the Airbridge ad group
            ad_creative: Creative as entered by the user

        Returns:
            Created link

        Raises:
            ValidationError: If mart_code or ad_creative is invalid
            AirbridgeError: If Airbridge rejects the link
            DatabaseError: If database operation fails
        """
        mart_code, ad_creative, normalized = self.validator.validate_link_input(mart_code, ad_creative)
        campaign_name = f"{self.now().strftime('%y%m%d')}_{mart_code}_{normalized}"

        tracking = await self._create_tracking_link(
            campaign_name, mart_code, self.validator.airbridge_creative(normalized)
        )

        try:
            link = Link(
                mart_code=mart_code,
                ad_creative=ad_creative,
                campaign_name=campaign_name,
                airbridge_link_id=tracking["airbridge_link_id"],
                short_url=tracking["short_url"],
            )
            self.link_repo.create(link)
            self.session.commit()
            return link

        except Exception as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to save link: {str(e)}", e) from e

    async def bulk_create_links(
        self,
        mart_codes: str | Iterable[str] | None,
        ad_creatives: str | Iterable[str] | None,
    ) -> BatchResult[LinkTask]:
        """
        Create one link for every mart/creative combination.

        Individual failures are collected in the result and do not stop the batch.

        Args:
            mart_codes: List or comma/newline separated string of mart codes
            ad_creatives: List or comma/newline separated string of creatives

        Returns:
            BatchResult with created links and per-task errors

        Raises:
            ValidationError: If either list is empty or the batch is too large
        """
        codes = self.validator.parse_list(mart_codes)
        creatives = self.validator.parse_list(ad_creatives)
        if not codes or not creatives:
            raise ValidationError("mart_codes와 ad_creatives는 최소 1개 이상 필요합니다.")

        tasks = [LinkTask(mart_code=code, ad_creative=creative) for code in codes for creative in creatives]
        max_tasks = self.settings.bulk_max_tasks
        if len(tasks) > max_tasks:
            raise ValidationError(
                f"한 번에 최대 {max_tasks}건까지만 생성할 수 있습니다. 현재 요청: {len(tasks)}건"
            )

        async def worker(task: LinkTask) -> Link:
            return await self.create_link(task.mart_code, task.ad_creative)

        result = await run_with_concurrency(tasks, worker, self.settings.bulk_concurrency)
        logger.info(
            f"Bulk link creation: requested={len(tasks)} created={len(result.created)} failed={len(result.errors)}"
        )
        return result

    def list_links(self, mart_code: str | None = None, limit: int | str | None = None) -> list[Link]:
        """
        List recently created links, newest first.

        Raises:
            DatabaseError: If database operation fails
        """
        limit = self.validator.clamp_limit(limit, default=20)
        mart_code = mart_code.strip() if mart_code else None
        try:
            return self.link_repo.list(mart_code=mart_code, limit=limit)
        except Exception as e:
            raise DatabaseError(f"Failed to list links: {str(e)}", e) from e

    def clear_links(self, admin_key: str | None) -> int:
        """
        Delete every link. Requires the configured admin key.

        Returns:
            Number of links deleted

        Raises:
            ConfigurationError: If no admin key is configured
            AuthorizationError: If the key does not match
            DatabaseError: If database operation fails
        """
        expected = self.settings.get_admin_clear_key()
        if expected is None:
            raise ConfigurationError("ADMIN_CLEAR_KEY가 설정되지 않았습니다.", ["ADMIN_CLEAR_KEY"])

        provided = admin_key.strip() if isinstance(admin_key, str) else ""
        if not provided or provided != expected:
            raise AuthorizationError("관리자 키가 올바르지 않습니다.")

        try:
            deleted = self.link_repo.count()
            self.link_repo.delete_all()
            self.session.commit()
            logger.info(f"Cleared {deleted} links")
            return deleted
        except Exception as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to clear links: {str(e)}", e) from e


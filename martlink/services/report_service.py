"""Link report service: click summaries from the Airbridge actuals report."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from martlink.clients.airbridge import AirbridgeClient
from martlink.config import Settings, get_settings, is_template_value
from martlink.exceptions import AirbridgeError, ConfigurationError, ValidationError
from martlink.services.report.metrics import (
    CLICK_CANDIDATES,
    DEEPLINK_OPEN_CANDIDATES,
    DEFAULT_LINK_DIMENSION,
    IMPRESSION_CANDIDATES,
    INSTALL_CANDIDATES,
    LINK_DIMENSION_CANDIDATES,
    WEB_OPEN_CANDIDATES,
    as_dict,
    extract_group_by_value,
    extract_items,
    extract_metric_totals,
    extract_short_id,
    has_actual_rows,
    labelled_metrics,
    pick_key_by_candidates,
)
from martlink.services.report.polling import poll_report, task_info
from martlink.storage.repositories import ReportCacheRepository

logger = logging.getLogger(__name__)

REPORT_META_TTL_SECONDS = 10 * 60
REPORT_LOOKBACK_DAYS = 30
CACHE_TTL_BY_STATUS = {
    "SUCCESS": timedelta(minutes=15),
    "PENDING": timedelta(seconds=20),
}
CACHE_TTL_DEFAULT = timedelta(minutes=2)

DIMENSION_LABELS = ["channel_type", "channel", "campaign", "ad_group", "ad_creative"]

UNSUPPORTED_MESSAGE = (
    "현재 계정/토큰에서는 클릭 리포트 API 엔드포인트가 제공되지 않습니다. "
    "Airbridge 지원 문서의 링크 클릭 리포트 전용 엔드포인트/권한 확인이 필요합니다."
)


@dataclass
class ReportMeta:
    metric_key_by_label: dict[str, Optional[str]]
    report_metric_keys: list[str]
    link_dimension: str


_meta_cache: dict[str, tuple[float, ReportMeta]] = {}


def clear_meta_cache() -> None:
    """Forget cached report metadata (useful for testing)."""
    _meta_cache.clear()


def cache_ttl(report_status: str) -> timedelta:
    return CACHE_TTL_BY_STATUS.get(report_status, CACHE_TTL_DEFAULT)


def is_unsupported(message: str) -> bool:
    return "requested url was not found" in message.lower()


class ReportService:
    """Builds link reports and caches them per short URL."""

    def __init__(
        self,
        session: Session,
        airbridge: AirbridgeClient | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.airbridge = airbridge or AirbridgeClient(timeout=self.settings.airbridge_timeout)
        self.cache_repo = ReportCacheRepository(session)
        self.sleep = sleep

    # Cache

    def _read_cache(self, short_url: str) -> Optional[dict[str, Any]]:
        try:
            row = self.cache_repo.get(short_url)
        except Exception as e:
            self.session.rollback()
            logger.warning(f"Report cache read failed: {e}")
            return None
        if row is None or not isinstance(row.data, dict):
            return None

        expires_at = row.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            return None
        return row.data

    def _write_cache(self, short_url: str, report_status: str, data: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        try:
            self.cache_repo.upsert(
                short_url=short_url,
                report_status=report_status,
                data=data,
                expires_at=now + cache_ttl(report_status),
                updated_at=now,
            )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.warning(f"Report cache write failed: {e}")

    # Airbridge lookups

    async def _get_meta(self, app_name: str, token: str) -> ReportMeta:
        cache_key = f"{app_name}:{token[:8]}"
        cached = _meta_cache.get(cache_key)
        if cached and cached[0] > time.monotonic():
            return cached[1]

        metric_items = extract_items(await self.airbridge.get_report_metrics(app_name, token))
        metric_key_by_label = {
            "clicks": self.settings.airbridge_click_metric
            or pick_key_by_candidates(metric_items, CLICK_CANDIDATES)
            or "clicks",
            "impressions": pick_key_by_candidates(metric_items, IMPRESSION_CANDIDATES),
            "app_installs": pick_key_by_candidates(metric_items, INSTALL_CANDIDATES),
            "app_deeplink_opens": pick_key_by_candidates(metric_items, DEEPLINK_OPEN_CANDIDATES),
            "web_opens": pick_key_by_candidates(metric_items, WEB_OPEN_CANDIDATES),
        }
        report_metric_keys = []
        for key in metric_key_by_label.values():
            if key and key not in report_metric_keys:
                report_metric_keys.append(key)

        field_items = extract_items(await self.airbridge.get_report_fields(app_name, token))
        link_dimension = (
            self.settings.airbridge_link_dimension
            or pick_key_by_candidates(field_items, LINK_DIMENSION_CANDIDATES)
            or DEFAULT_LINK_DIMENSION
        )

        meta = ReportMeta(metric_key_by_label, report_metric_keys, link_dimension)
        _meta_cache[cache_key] = (time.monotonic() + REPORT_META_TTL_SECONDS, meta)
        return meta

    async def _fetch_detail(self, identifier: str, id_type: str, tokens: list[str]) -> tuple[dict[str, Any], str]:
        last_error = "unknown error"
        for token in tokens:
            try:
                return await self.airbridge.get_tracking_link(identifier, id_type, token), token
            except AirbridgeError as e:
                last_error = str(e)
        raise AirbridgeError(f"Airbridge tracking link 조회 실패: {last_error}")

    async def _poll(self, app_name: str, token: str, task_id: str) -> dict[str, Any]:
        async def fetch(current_task_id: str) -> dict[str, Any]:
            return await self.airbridge.get_actuals_query(app_name, token, current_task_id)

        return await poll_report(
            fetch,
            task_id,
            max_attempts=self.settings.report_poll_max_attempts,
            delay=self.settings.report_poll_delay,
            sleep=self.sleep,
        )

    async def _fallback_report(
        self,
        app_name: str,
        token: str,
        meta: ReportMeta,
        detail_data: dict[str, Any],
        date_range: dict[str, str],
    ) -> Optional[tuple[dict[str, Optional[float]], dict[str, Optional[str]]]]:
        """Query by the link's campaign params when the link dimension has no rows."""
        campaign_params = as_dict(detail_data.get("campaignParams"))

        def text(*values: Any) -> Optional[str]:
            for value in values:
                if isinstance(value, str):
                    return value
            return None

        dimensions = {
            "channel": text(detail_data.get("channelName")),
            "campaign": text(campaign_params.get("campaign")),
            "ad_group": text(campaign_params.get("adGroup"), campaign_params.get("ad_group")),
            "ad_creative": text(campaign_params.get("adCreative"), campaign_params.get("ad_creative")),
        }
        filters = [(name, value) for name, value in dimensions.items() if value and value.strip()]
        if not filters:
            return None

        body = {
            **date_range,
            "granularity": "day",
            "metrics": meta.report_metric_keys,
            "groupBys": [name for name, _ in filters],
            "sorts": [{"fieldName": filters[0][0], "isAscending": True}],
            "filters": [
                {"dimension": name, "filterType": "IN", "values": [value]} for name, value in filters
            ],
        }
        try:
            started = await self.airbridge.start_actuals_query(app_name, token, body)
        except AirbridgeError as e:
            logger.info(f"Fallback report query not started: {e}")
            return None

        payload = await self._poll(app_name, token, str(task_info(started)["taskId"]))
        if task_info(payload).get("status") != "SUCCESS":
            return None

        totals = extract_metric_totals(payload, meta.report_metric_keys)
        metrics = labelled_metrics(totals, meta.metric_key_by_label)
        if metrics["clicks"] is None:
            return None
        return metrics, {"channel_type": "Custom Channel", **dimensions}

    # Report

    async def get_link_report(
        self,
        short_url: str | None = None,
        airbridge_link_id: str | None = None,
        task_id: str | None = None,
        refresh: bool = False,
    ) -> dict[str, Any]:
        """
        Build a click report for one tracking link.

        Report problems (unsupported endpoint, pending aggregation, ...) are
        described in ``report_status``/``report_message`` rather than raised.

        Args:
            short_url: Short URL of the link
            airbridge_link_id: Airbridge tracking link id (preferred over short_url)
            task_id: Report task id returned by an earlier pending call
            refresh: Skip the cached report

        Returns:
            Dict with ``cached`` flag and report ``data``

        Raises:
            ValidationError: If no usable identifier is given
            ConfigurationError: If Airbridge is not configured
            AirbridgeError: If the tracking link cannot be fetched with any token
        """
        short_url = (short_url or "").strip()
        airbridge_link_id = (airbridge_link_id or "").strip()
        requested_task_id = (task_id or "").strip()

        if not short_url and not airbridge_link_id:
            raise ValidationError("short_url 또는 airbridge_link_id가 필요합니다.", "short_url")

        if short_url and not refresh:
            cached = self._read_cache(short_url)
            if cached:
                return {"cached": True, "data": cached}

        app_name = self.settings.airbridge_app_name
        tokens = self.settings.get_report_tokens()
        if is_template_value(app_name) or not tokens:
            raise ConfigurationError(
                "Airbridge env가 설정되지 않았습니다. "
                "AIRBRIDGE_APP_NAME, AIRBRIDGE_TRACKING_LINK_API_TOKEN(또는 AIRBRIDGE_API_TOKEN) 확인",
                ["AIRBRIDGE_APP_NAME", "AIRBRIDGE_TRACKING_LINK_API_TOKEN"],
            )

        identifier = airbridge_link_id or extract_short_id(short_url)
        id_type = "id" if airbridge_link_id else "shortId"
        if not identifier:
            raise ValidationError("short_url에서 shortId를 추출할 수 없습니다.", "short_url")

        detail_payload, token = await self._fetch_detail(identifier, id_type, tokens)
        detail_data = as_dict(detail_payload.get("data"))
        detail_short_id = detail_data.get("shortId")
        detail_link_id = str(detail_data["id"]) if detail_data.get("id") is not None else None

        report_status = "UNAVAILABLE"
        report_message = ""
        report_task_id = requested_task_id or None
        click_count = None
        metrics: dict[str, Optional[float]] = {
            "clicks": None,
            "impressions": None,
            "app_installs": None,
            "app_deeplink_opens": None,
            "web_opens": None,
        }
        dimensions: dict[str, Optional[str]] = {label: None for label in DIMENSION_LABELS}

        try:
            meta = await self._get_meta(app_name, token)
            today = datetime.now(timezone.utc).date()
            date_range = {
                "from": (today - timedelta(days=REPORT_LOOKBACK_DAYS)).isoformat(),
                "to": today.isoformat(),
            }

            if not meta.report_metric_keys or not meta.link_dimension:
                report_message = (
                    "리포트용 metric 또는 link dimension 키를 찾지 못했습니다. "
                    "AIRBRIDGE_CLICK_METRIC / AIRBRIDGE_LINK_DIMENSION 설정을 확인하세요."
                )
            else:
                filter_values = []
                for value in (identifier, detail_short_id, detail_link_id):
                    if isinstance(value, str) and value.strip() and value not in filter_values:
                        filter_values.append(value)
                group_bys = [meta.link_dimension, *DIMENSION_LABELS]

                active_task_id = requested_task_id
                if not active_task_id:
                    body = {
                        **date_range,
                        "metrics": meta.report_metric_keys,
                        "groupBys": group_bys,
                        "sorts": [{"fieldName": meta.link_dimension, "isAscending": True}],
                        "filters": [
                            {"dimension": meta.link_dimension, "filterType": "IN", "values": filter_values}
                        ],
                    }
                    try:
                        started = await self.airbridge.start_actuals_query(app_name, token, body)
                        active_task_id = str(task_info(started)["taskId"])
                        report_task_id = active_task_id
                    except AirbridgeError as e:
                        if is_unsupported(str(e)):
                            report_status = "UNSUPPORTED"
                            report_message = UNSUPPORTED_MESSAGE
                        else:
                            report_message = str(e)

                if active_task_id:
                    payload = await self._poll(app_name, token, active_task_id)
                    final_status = task_info(payload).get("status")

                    if final_status == "SUCCESS":
                        totals = extract_metric_totals(payload, meta.report_metric_keys)
                        metrics = labelled_metrics(totals, meta.metric_key_by_label)
                        click_count = metrics["clicks"]
                        dimensions = {
                            label: extract_group_by_value(payload, group_bys, label)
                            for label in DIMENSION_LABELS
                        }
                        if (click_count is None or not has_actual_rows(payload)) and detail_data:
                            fallback = await self._fallback_report(
                                app_name, token, meta, detail_data, date_range
                            )
                            if fallback is not None:
                                metrics, dimensions = fallback
                                click_count = metrics["clicks"]
                        if click_count is None:
                            click_count = 0
                        report_status = "SUCCESS"
                        report_message = (
                            "조회 기간 내 해당 링크 클릭 데이터가 없습니다." if click_count == 0 else ""
                        )
                    else:
                        raw_message = str(payload.get("detail") or "리포트 집계가 완료되지 않았습니다.")
                        if is_unsupported(raw_message):
                            report_status = "UNSUPPORTED"
                            report_message = UNSUPPORTED_MESSAGE
                        elif final_status in ("FAILURE", "CANCELED"):
                            report_status = final_status
                            report_message = raw_message
                        else:
                            report_status = "PENDING"
                            report_message = "리포트 집계가 진행 중입니다. 잠시 후 다시 조회해 주세요."
        except AirbridgeError as e:
            logger.warning(f"Link report unavailable for {identifier}: {e}")
            report_status = "UNAVAILABLE"
            report_message = str(e)

        data = {
            "idType": id_type,
            "identifier": identifier,
            "task_id": report_task_id,
            "click_count": click_count,
            "report_status": report_status,
            "report_message": report_message,
            "report_metrics": metrics,
            "report_dimensions": dimensions,
            "tracking_link": {
                "id": detail_data.get("id"),
                "short_url": detail_data.get("shortUrl") or short_url,
                "short_id": detail_short_id,
                "channel_name": detail_data.get("channelName"),
                "campaign_params": detail_data.get("campaignParams"),
            },
        }

        cache_short_url = data["tracking_link"]["short_url"]
        if cache_short_url:
            self._write_cache(cache_short_url, report_status, data)

        return {"cached": False, "data": data}

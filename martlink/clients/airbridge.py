"""Async client for the Airbridge tracking-link and report APIs."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from martlink.exceptions import AirbridgeError

logger = logging.getLogger(__name__)

BASE_URL = "https://api.airbridge.io"


def error_message(payload: Any, default: str) -> str:
    """Pick the most descriptive message from an Airbridge error payload."""
    if isinstance(payload, dict):
        for key in ("detail", "title", "message"):
            value = payload.get(key)
            if value:
                return str(value)
    return default


class AirbridgeClient:
    """Thin wrapper around the Airbridge REST API.

    Each call opens its own ``httpx.AsyncClient``; pass ``transport`` to
    route requests somewhere other than the network (tests use
    ``httpx.MockTransport``).
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> tuple[int, dict[str, Any]]:
        headers = {
            "Accept-Language": "ko",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        async with httpx.AsyncClient(
            base_url=BASE_URL, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.request(method, path, headers=headers, json=json, params=params)
            except httpx.HTTPError as e:
                raise AirbridgeError(f"Airbridge request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return response.status_code, payload

    async def _request_ok(self, method: str, path: str, token: str, default_error: str, **kwargs: Any) -> dict[str, Any]:
        status, payload = await self._request(method, path, token, **kwargs)
        if not 200 <= status < 300:
            message = error_message(payload, default_error)
            logger.warning(f"Airbridge {method} {path} failed ({status}): {message}")
            raise AirbridgeError(message, status)
        return payload

    async def create_tracking_link(
        self,
        token: str,
        channel: str,
        campaign: str,
        ad_group: str,
        ad_creative: str,
        deeplink_url: str,
    ) -> dict[str, Optional[str]]:
        """
        Create a tracking link.

        Returns:
            Dict with ``short_url`` and ``airbridge_link_id`` (may be None)

        Raises:
            AirbridgeError: On a non-OK response or a response without a short URL
        """
        body = {
            "channel": channel,
            "campaignParams": {
                "campaign": campaign,
                "ad_group": ad_group,
                "ad_creative": ad_creative,
            },
            "isReengagement": "OFF",
            "deeplinkUrl": deeplink_url,
        }
        status, payload = await self._request("POST", "/v1/tracking-links", token, json=body)
        if not 200 <= status < 300:
            raise AirbridgeError(
                f"Airbridge create failed ({status}): {error_message(payload, 'unknown error')}",
                status,
            )

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        tracking_link = data.get("trackingLink") if isinstance(data.get("trackingLink"), dict) else {}
        short_url = tracking_link.get("shortUrl")
        if not short_url:
            raise AirbridgeError("Airbridge response missing trackingLink.shortUrl", status)

        link_id = tracking_link.get("id")
        return {
            "short_url": short_url,
            "airbridge_link_id": str(link_id) if link_id else None,
        }

    async def get_tracking_link(self, identifier: str, id_type: str, token: str) -> dict[str, Any]:
        """Fetch tracking link details by id or shortId."""
        status, payload = await self._request(
            "GET",
            f"/v1/tracking-links/{quote(identifier, safe='')}",
            token,
            params={"idType": id_type},
        )
        if not 200 <= status < 300:
            raise AirbridgeError(error_message(payload, f"status {status}"), status)
        return payload

    async def get_report_metrics(self, app_name: str, token: str) -> dict[str, Any]:
        """List metrics available to the actuals report."""
        return await self._request_ok(
            "GET",
            f"/dataspec/v2/apps/{quote(app_name, safe='')}/actual-report/metrics",
            token,
            "Airbridge 리포트 메타데이터(metrics) 조회 실패",
        )

    async def get_report_fields(self, app_name: str, token: str) -> dict[str, Any]:
        """List fields (dimensions) available to the actuals report."""
        return await self._request_ok(
            "GET",
            f"/dataspec/v2/apps/{quote(app_name, safe='')}/actual-report/fields",
            token,
            "Airbridge 리포트 메타데이터(fields) 조회 실패",
        )

    async def start_actuals_query(self, app_name: str, token: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        Start an asynchronous actuals report query.

        Raises:
            AirbridgeError: On a non-OK response or a response without ``task.taskId``
        """
        status, payload = await self._request(
            "POST",
            f"/reports/api/v7/apps/{quote(app_name, safe='')}/actuals/query",
            token,
            json=body,
        )
        task = payload.get("task") if isinstance(payload.get("task"), dict) else {}
        if not 200 <= status < 300 or not task.get("taskId"):
            raise AirbridgeError(
                error_message(payload, "Airbridge actual-report query 시작 실패"), status
            )
        return payload

    async def get_actuals_query(self, app_name: str, token: str, task_id: str) -> dict[str, Any]:
        """Fetch the current state (and rows, once finished) of a report query."""
        return await self._request_ok(
            "GET",
            f"/reports/api/v7/apps/{quote(app_name, safe='')}/actuals/query/{quote(task_id, safe='')}",
            token,
            "Airbridge actual-report query 조회 실패",
        )

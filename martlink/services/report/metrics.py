"""Parsing helpers for Airbridge report payloads."""

import math
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

CLICK_CANDIDATES = ["clicks", "click", "link_click"]
IMPRESSION_CANDIDATES = ["impressions", "impression"]
INSTALL_CANDIDATES = ["app_installs", "installs"]
DEEPLINK_OPEN_CANDIDATES = ["app_deeplink_opens", "deeplink_opens"]
WEB_OPEN_CANDIDATES = ["web_opens"]
LINK_DIMENSION_CANDIDATES = [
    "short_link_id",
    "campaign_short_id",
    "tracking_link_id",
    "tracking_link",
    "tracking_link_short_id",
    "routing_short_id",
    "short_id",
    "shortid",
]
DEFAULT_LINK_DIMENSION = "campaign_short_id"


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_short_id(short_url: str) -> Optional[str]:
    """Last path segment of a short URL, or None."""
    try:
        parsed = urlparse(short_url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    parts = [part for part in parsed.path.split("/") if part]
    return parts[-1] if parts else None


def extract_items(payload: Any) -> list[dict[str, Any]]:
    """Flatten ``data[].fields[]`` of a dataspec response."""
    items = []
    data = as_dict(payload).get("data")
    if not isinstance(data, list):
        return items
    for group in data:
        fields = as_dict(group).get("fields")
        if not isinstance(fields, list):
            continue
        items.extend(field for field in fields if isinstance(field, dict))
    return items


def pick_key_by_candidates(items: Iterable[dict[str, Any]], candidates: list[str]) -> Optional[str]:
    """
    Pick the first candidate present among item keys.

    Falls back to the first key containing any candidate (case-insensitive).
    """
    keys = []
    for item in items:
        key = item.get("key")
        if isinstance(key, str) and key.strip() and key.strip() not in keys:
            keys.append(key.strip())

    for candidate in candidates:
        if candidate in keys:
            return candidate

    for key in keys:
        lower = key.lower()
        if any(candidate.lower() in lower for candidate in candidates):
            return key
    return None


def _to_number(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str):
        try:
            parsed = float(raw)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def read_metric_value(raw: Any) -> Optional[float]:
    """Read a metric cell that is either a number, a numeric string or ``{"value": ...}``."""
    if isinstance(raw, dict):
        return _to_number(raw.get("value"))
    return _to_number(raw)


def report_rows(payload: Any) -> list[Any]:
    rows = as_dict(as_dict(as_dict(payload).get("actuals")).get("data")).get("rows")
    return rows if isinstance(rows, list) else []


def has_actual_rows(payload: Any) -> bool:
    return len(report_rows(payload)) > 0


def extract_metric_totals(payload: Any, metric_keys: list[str]) -> dict[str, Optional[float]]:
    """Sum each metric over all report rows. Metrics never seen stay None."""
    totals: dict[str, Optional[float]] = {key: None for key in metric_keys}
    for row in report_rows(payload):
        values = as_dict(row).get("values")
        if not isinstance(values, dict):
            continue
        for key in metric_keys:
            value = read_metric_value(values.get(key))
            if value is None:
                continue
            totals[key] = (totals[key] or 0) + value
    return totals


def extract_group_by_value(payload: Any, group_by_keys: list[str], target_key: str) -> Optional[str]:
    """Value of one group-by dimension in the first report row."""
    rows = report_rows(payload)
    if not rows or target_key not in group_by_keys:
        return None
    index = group_by_keys.index(target_key)
    group_bys = as_dict(rows[0]).get("groupBys")
    if not isinstance(group_bys, list) or len(group_bys) <= index:
        return None
    value = group_bys[index]
    return value if isinstance(value, str) and value.strip() else None


def labelled_metrics(
    totals: dict[str, Optional[float]], metric_key_by_label: dict[str, Optional[str]]
) -> dict[str, Optional[float]]:
    """Map totals back to dashboard labels. Resolved keys with no data count as 0."""
    return {
        label: (totals.get(key) or 0) if key else None
        for label, key in metric_key_by_label.items()
    }

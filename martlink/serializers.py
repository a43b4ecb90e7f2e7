"""Model serialization for API responses."""

from typing import Any, Iterable, Optional

from sqlalchemy import inspect

from martlink.services.link.batch import BatchError, LinkTask

LINK_FIELDS = ("campaign_name", "short_url", "created_at", "mart_code", "ad_creative")
LINK_HISTORY_FIELDS = LINK_FIELDS + ("airbridge_link_id",)
MART_FIELDS = ("name", "code", "enabled", "address", "tel", "manager_name", "manager_tel")


def serialize_value(value: Any) -> Any:
    if hasattr(value, "isoformat"):  # datetime
        return value.isoformat()
    return value


def serialize_model(obj: Any, fields: Optional[Iterable[str]] = None) -> dict[str, Any]:
    """
    Serialize a SQLAlchemy model to dictionary.

    Args:
        obj: SQLAlchemy model instance
        fields: Column names to include. Defaults to every mapped column.

    Returns:
        Dictionary representation of the model
    """
    if fields is None:
        fields = [attr.key for attr in inspect(obj).mapper.column_attrs]
    return {field: serialize_value(getattr(obj, field)) for field in fields}


def serialize_batch_error(error: BatchError[LinkTask]) -> dict[str, str]:
    return {
        "mart_code": error.task.mart_code,
        "ad_creative": error.task.ad_creative,
        "message": error.message,
    }

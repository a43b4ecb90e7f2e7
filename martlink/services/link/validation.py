"""Link validation logic."""

import math
import re
from typing import Iterable

from martlink.exceptions import ValidationError


class LinkValidator:
    """Validates and normalizes link input according to business rules."""

    # Validation constants
    CREATIVE_MAX_LENGTH = 40
    ALLOWED_CREATIVES = ("xbanner", "banner", "flyer", "acryl", "sheet", "wobbler", "leaflet")
    CUSTOM_CREATIVE = "custom"

    @staticmethod
    def normalize_creative(value: str) -> str:
        """Lowercase, underscore whitespace and strip characters unsafe in a campaign name."""
        normalized = value.strip().lower()
        normalized = re.sub(r"\s+", "_", normalized)
        normalized = re.sub(r"[^a-z0-9_가-힣-]", "", normalized)
        return normalized[: LinkValidator.CREATIVE_MAX_LENGTH]

    @staticmethod
    def airbridge_creative(normalized: str) -> str:
        """Creative label sent to Airbridge: known creatives as-is, anything else 'custom'."""
        if normalized in LinkValidator.ALLOWED_CREATIVES:
            return normalized
        return LinkValidator.CUSTOM_CREATIVE

    @staticmethod
    def validate_link_input(mart_code: str | None, ad_creative: str | None) -> tuple[str, str, str]:
        """
        Validate mart code and creative.

        Args:
            mart_code: Mart code
            ad_creative: Creative as entered

        Returns:
            Tuple of (mart_code, ad_creative, normalized creative), trimmed

        Raises:
            ValidationError: If either value is empty or the creative normalizes to nothing
        """
        mart_code = mart_code.strip() if isinstance(mart_code, str) else ""
        ad_creative = ad_creative.strip() if isinstance(ad_creative, str) else ""
        if not mart_code or not ad_creative:
            raise ValidationError(
                "mart_code와 ad_creative는 필수입니다.",
                "mart_code" if not mart_code else "ad_creative",
            )

        normalized = LinkValidator.normalize_creative(ad_creative)
        if not normalized:
            raise ValidationError(
                "ad_creative 값이 비어있거나 형식이 올바르지 않습니다.", "ad_creative"
            )
        return mart_code, ad_creative, normalized

    @staticmethod
    def parse_list(value: str | Iterable[str] | None) -> list[str]:
        """Split a comma/newline separated string (or list) into unique trimmed values."""
        if not value:
            return []
        if isinstance(value, str):
            items = re.split(r"[,\n]", value)
        else:
            items = [item for item in value if isinstance(item, str)]

        seen = []
        for item in items:
            item = item.strip()
            if item and item not in seen:
                seen.append(item)
        return seen

    @staticmethod
    def parse_int(value: int | str | None) -> int | None:
        """Parse a query value as an integer, or None if it is missing or not numeric."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        try:
            parsed = float(str(value).strip())
        except ValueError:
            return None
        return int(parsed) if math.isfinite(parsed) else None

    @staticmethod
    def clamp_limit(limit: int | str | None, default: int, maximum: int = 100) -> int:
        """Clamp to 1..maximum. Missing or non-numeric values give the default."""
        parsed = LinkValidator.parse_int(limit)
        if parsed is None:
            return default
        return min(max(parsed, 1), maximum)

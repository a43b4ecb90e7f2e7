"""Load mart records from the Google Sheets spreadsheet."""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import gspread
import requests
from google.oauth2.service_account import Credentials

from martlink.config import Settings
from martlink.exceptions import ConfigurationError, SheetsError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"

MARTS_SHEET = "마트정보"
MANAGER_CONTACTS_SHEET = "매니저연락처"

TRUE_VALUES = {"true", "1", "yes", "y", "on"}
FALSE_VALUES = {"false", "0", "no", "n", "off"}


@dataclass
class SheetLoadResult:
    records: list[dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    skipped_rows: int = 0


def _caused_by_reset(error: BaseException) -> bool:
    """Look for a ConnectionResetError among the causes and args of ``error``."""
    pending = [error]
    seen = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ConnectionResetError):
            return True
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
        pending.extend(linked for linked in (current.__cause__, current.__context__) if linked is not None)
    return False


def is_timeout_error(error: Exception) -> bool:
    """Timeouts and connection resets are retryable. Refused connections and DNS failures are not."""
    if isinstance(error, (requests.exceptions.Timeout, TimeoutError)):
        return True
    if _caused_by_reset(error):
        return True
    message = str(error)
    return "timed out" in message or "ETIMEDOUT" in message or "ECONNRESET" in message


def with_retry(
    fn: Callable[[], T],
    context: str,
    retries: int = 2,
    base_delay: float = 0.6,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying timeouts with exponential backoff. Other errors propagate."""
    for attempt in range(retries + 1):
        try:
            return fn()
        except Exception as e:
            if not is_timeout_error(e) or attempt == retries:
                raise
            logger.warning(f"Google Sheets timeout retry {attempt + 1}/{retries} for {context}")
            sleep(base_delay * (2 ** attempt))
    raise SheetsError(f"Retries exhausted for {context}")


def normalize_private_key(value: str) -> str:
    """Undo the quoting and newline escaping private keys pick up in .env files."""
    normalized = value.strip()
    normalized = re.sub(r"^\\?[\"']", "", normalized)
    normalized = re.sub(r"\\?[\"']$", "", normalized)
    normalized = re.sub(r"\\[\"']", "", normalized)
    normalized = normalized.replace('"', "").replace("'", "")
    normalized = normalized.replace("\r\n", "\n")
    normalized = re.sub(r"\\+n", "\n", normalized)
    normalized = re.sub(r"\\\n", "\n", normalized)
    normalized = re.sub(r"\\$", "", normalized, flags=re.MULTILINE)
    return normalized


def nullable_text(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    return text or None


def parse_mart_id(value: Any) -> Optional[int]:
    raw = str(value).strip() if value is not None else ""
    if not raw or raw.lower() == "mart_id":
        return None
    try:
        parsed = float(raw)
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return int(parsed)


def parse_enabled(value: Any) -> Optional[bool]:
    """Parse the enabled column. Empty means False, unrecognized means None."""
    raw = str(value).strip().lower() if value is not None else ""
    if not raw:
        return False
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    return None


def rows_as_dicts(values: list[list[Any]]) -> list[dict[str, str]]:
    """Turn a worksheet's values (header row first) into row dicts."""
    if not values:
        return []
    header = [str(cell).strip() for cell in values[0]]
    rows = []
    for raw in values[1:]:
        row = {}
        for index, key in enumerate(header):
            if key and key not in row:
                row[key] = str(raw[index]) if index < len(raw) else ""
        rows.append(row)
    return rows


def build_mart_records(
    mart_rows: list[dict[str, str]], manager_rows: list[dict[str, str]]
) -> SheetLoadResult:
    """
    Convert sheet rows into mart records.

    Rows without a numeric mart_id, without a name, or with an unparseable
    enabled value are skipped. Manager phone numbers are joined by name.
    """
    manager_phone_by_name = {}
    for row in manager_rows:
        manager_name = (row.get("매니저이름") or "").strip()
        if not manager_name:
            continue
        manager_phone_by_name[manager_name] = (row.get("전화번호") or "").strip()

    result = SheetLoadResult(total_rows=len(mart_rows))
    for row in mart_rows:
        mart_id = parse_mart_id(row.get("mart_id"))
        if mart_id is None:
            result.skipped_rows += 1
            continue

        name = (row.get("mart_name") or "").strip()
        if not name or name == "mart_name":
            result.skipped_rows += 1
            continue

        enabled = parse_enabled(row.get("enabled"))
        if enabled is None:
            result.skipped_rows += 1
            continue

        manager_name = nullable_text(row.get("manager"))
        result.records.append(
            {
                "mart_id": mart_id,
                "name": name,
                "code": (row.get("code") or "").strip(),
                "address": nullable_text(row.get("mart_address")),
                "tel": nullable_text(row.get("tel")),
                "enabled": enabled,
                "manager_name": manager_name,
                "manager_tel": nullable_text(manager_phone_by_name.get(manager_name)) if manager_name else None,
            }
        )
    return result


class GoogleSheetsClient:
    """Reads the mart and manager-contact worksheets with a service account."""

    def __init__(self, settings: Settings, sleep: Callable[[float], None] = time.sleep):
        missing = settings.get_missing_google_keys()
        if missing:
            raise ConfigurationError(f"Google env 누락: {', '.join(missing)}", missing)
        self.spreadsheet_id = settings.google_sheets_spreadsheet_id
        self.service_account_email = settings.google_service_account_email
        self.private_key = normalize_private_key(settings.google_private_key)
        self.sleep = sleep

    def _authorize(self) -> gspread.Client:
        credentials = Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": self.service_account_email,
                "private_key": self.private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
        return gspread.authorize(credentials)

    def _read_rows(self, spreadsheet: gspread.Spreadsheet, title: str) -> list[dict[str, str]]:
        try:
            worksheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound as e:
            raise SheetsError(f'Sheet "{title}" not found') from e
        values = with_retry(worksheet.get_all_values, f"{title}.get_all_values", sleep=self.sleep)
        return rows_as_dicts(values)

    def load_marts(self) -> SheetLoadResult:
        """
        Load mart records from the spreadsheet.

        Raises:
            SheetsError: If the spreadsheet or a required sheet cannot be read
        """
        try:
            client = self._authorize()
            spreadsheet = with_retry(
                lambda: client.open_by_key(self.spreadsheet_id), "open_by_key", sleep=self.sleep
            )
            manager_rows = self._read_rows(spreadsheet, MANAGER_CONTACTS_SHEET)
            mart_rows = self._read_rows(spreadsheet, MARTS_SHEET)
        except SheetsError:
            raise
        except Exception as e:
            detail = str(e)
            if "unsupported" in detail.lower() or "PEM" in detail:
                detail = (
                    f"{detail} | GOOGLE_PRIVATE_KEY format issue: set one-line PEM with escaped \\n."
                )
            elif is_timeout_error(e):
                detail = f"{detail} | Google Sheets API timeout: 네트워크 상태 확인 후 재시도하세요."
            raise SheetsError(detail) from e

        return build_mart_records(mart_rows, manager_rows)

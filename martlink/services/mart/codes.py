"""Mart code normalization for spreadsheet sync."""

from typing import Any, Optional


def dedupe_by_mart_id(records: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], int]:
    """Keep the last record per mart_id at the first one's position. Returns (records, dropped count)."""
    by_mart_id: dict[int, dict[str, Any]] = {}
    dropped = 0
    for record in records:
        if record["mart_id"] in by_mart_id:
            dropped += 1
        by_mart_id[record["mart_id"]] = record
    return list(by_mart_id.values()), dropped


def _base_code(record: dict[str, Any]) -> str:
    return (record.get("code") or "").strip() or f"mart_{record['mart_id']}"


def _with_code(record: dict[str, Any], code: str) -> dict[str, Any]:
    if code == record.get("code"):
        return record
    return {**record, "code": code}


def ensure_unique_codes(records: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], int]:
    """
    Make codes unique within a batch.

    A repeated code becomes ``<code>_<mart_id>``, then ``<code>_<mart_id>_<n>``
    with n starting at 2. Empty codes become ``mart_<mart_id>``.
    """
    used: set[str] = set()
    adjusted = 0
    normalized = []
    for record in records:
        base = _base_code(record)
        candidate = base
        if candidate in used:
            adjusted += 1
            candidate = f"{base}_{record['mart_id']}"
            sequence = 1
            while candidate in used:
                sequence += 1
                candidate = f"{base}_{record['mart_id']}_{sequence}"
        used.add(candidate)
        normalized.append(_with_code(record, candidate))
    return normalized, adjusted


def ensure_codes_free_in_db(
    records: list[dict[str, Any]],
    reserved_codes: set[str],
    code_by_mart_id: dict[int, str],
) -> tuple[list[dict[str, Any]], int]:
    """
    Rename codes held by other rows in the database.

    A mart may keep the code it already owns. Every rename step is counted.
    """
    used: set[str] = set()
    adjusted = 0
    normalized = []
    for record in records:
        base = _base_code(record)
        current: Optional[str] = code_by_mart_id.get(record["mart_id"])

        def conflicts(code: str) -> bool:
            return code in used or (code in reserved_codes and code != current)

        candidate = base
        sequence = 0
        while conflicts(candidate):
            adjusted += 1
            sequence += 1
            if sequence == 1:
                candidate = f"{base}_{record['mart_id']}"
            else:
                candidate = f"{base}_{record['mart_id']}_{sequence}"
        used.add(candidate)
        normalized.append(_with_code(record, candidate))
    return normalized, adjusted

"""Export of failed days to a flat JSON list and reconciliation of imported lists."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from services.errors import FormatError
from utils.date_utils import format_date, is_valid_date_string


@dataclass
class ImportResult:
    failed_days: dict[str, bool] = field(default_factory=dict)
    total_processed: int = 0
    invalid_count: int = 0
    future_count: int = 0

    @property
    def imported_count(self) -> int:
        return len(self.failed_days)

    @property
    def ignored_count(self) -> int:
        return self.invalid_count + self.future_count

    def summary(self) -> str:
        message = f"Import complete. Loaded {self.imported_count} failed days."
        if self.ignored_count:
            details = []
            if self.invalid_count:
                details.append(f"{self.invalid_count} with an invalid format")
            if self.future_count:
                details.append(f"{self.future_count} in the future")
            message += f" ({self.ignored_count} dates ignored: {', '.join(details)}.)"
        else:
            message += f" (Processed {self.total_processed} dates.)"
        return message


def export_failed_days(failed_days: Mapping[str, object]) -> list[str]:
    return sorted(key for key, marked in failed_days.items() if marked)


def render_export(failed_days: Mapping[str, object]) -> str:
    return json.dumps(export_failed_days(failed_days), indent=2)


def export_filename(today: date, prefix: str = "GoalTracker_FailedDays") -> str:
    return f"{prefix}_{format_date(today)}.json"


def decode_import_payload(raw: bytes | str) -> list[Any]:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise FormatError("The import file must be UTF-8 encoded JSON.") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Could not parse the JSON file: {exc.msg} (line {exc.lineno}).") from exc
    if not isinstance(payload, list):
        raise FormatError("The JSON file must contain an array of dates.")
    return payload


def _coerce_item(item: Any) -> str:
    # null and booleans stringify the way JSON spells them.
    if item is None:
        return "null"
    if isinstance(item, bool):
        return "true" if item else "false"
    return str(item).strip()


def reconcile_import(items: Any, today: date) -> ImportResult:
    """
    Build the replacement failed-day mapping from an imported list.

    Invalid strings and dates after today are counted and dropped. The result
    is meant to replace the current mapping wholesale.
    """
    if not isinstance(items, list):
        raise FormatError("The JSON file must contain an array of dates.")

    today_key = format_date(today)
    result = ImportResult()
    for item in items:
        result.total_processed += 1
        date_key = _coerce_item(item)
        if not is_valid_date_string(date_key):
            result.invalid_count += 1
        elif date_key > today_key:
            result.future_count += 1
        else:
            result.failed_days[date_key] = True
    return result

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from config import Settings
from services.errors import AuthError, StorageError
from services.import_export_service import (
    ImportResult,
    decode_import_payload,
    export_filename,
    reconcile_import,
    render_export,
)
from services.record_store import GoalRecordStore, record_from_session_values, sanitize_record
from services.score_service import format_money
from services.tracker_session import SessionRegistry, TrackerSession
from utils.date_utils import (
    days_in_month,
    format_date,
    format_month_label,
    month_key,
    month_start_offset,
    parse_month_key,
    shift_month,
    today_for_tz,
    weekday_labels,
)

logger = logging.getLogger(__name__)

LOAD_FAILED_WARNING = (
    "Could not load your saved data ({reason}). "
    "The calendar is usable but may not show your latest changes."
)


@dataclass
class ExportPayload:
    filename: str
    content: str


class TrackerService:
    def __init__(
        self,
        store: GoalRecordStore,
        app_settings: Settings,
        clock: Callable[[str | None], date] = today_for_tz,
    ) -> None:
        self.store = store
        self.settings = app_settings
        self.clock = clock
        self.registry = SessionRegistry()

    # ─── Sessions ───

    def today_for(self, tz_name: str | None) -> date:
        return self.clock(tz_name or self.settings.DEFAULT_TIMEZONE)

    def _load_session(self, user_id: int) -> TrackerSession:
        default_start = self.settings.default_start_date
        try:
            record = self.store.load(user_id)
        except StorageError as exc:
            logger.warning("Falling back to defaults for user %s: %s", user_id, exc.message)
            return TrackerSession(
                failed_days={},
                start_date=default_start,
                load_warning=LOAD_FAILED_WARNING.format(reason=exc.message.rstrip(".")),
            )

        sanitized = sanitize_record(record, default_start)
        for key in sanitized.dropped_keys:
            logger.warning("Dropped invalid stored day key %r for user %s", key, user_id)
        return TrackerSession(failed_days=sanitized.failed_days, start_date=sanitized.start_date)

    def session_for(self, user_id: int | None) -> TrackerSession:
        if user_id is None or str(user_id).strip() == "":
            raise AuthError("No authenticated user. Sign in to load your goal data.")
        return self.registry.get_or_load(str(user_id), lambda: self._load_session(int(user_id)))

    def reload(self, user_id: int | None) -> TrackerSession:
        """Drop the working copy (and any unsaved edits) and load the stored record again."""
        if user_id is None:
            raise AuthError("No authenticated user. Sign in to load your goal data.")
        self.registry.discard(str(user_id))
        return self.session_for(user_id)

    # ─── Read models ───

    def snapshot(self, user_id: int | None, tz_name: str | None = None) -> dict[str, Any]:
        session = self.session_for(user_id)
        today = self.today_for(tz_name)
        current = session.snapshot()
        result = session.result(today)
        return {
            "failed_days": {key: True for key in sorted(current.failed_days)},
            "start_date": format_date(current.start_date),
            "today": format_date(today),
            "score": result.score,
            "score_display": format_money(result.score, self.settings.CURRENCY_CODE),
            "current_streak": result.current_streak,
            "save_state": session.state.value,
            "has_unsaved_changes": session.has_unsaved_changes,
            "warning": session.load_warning,
        }

    def calendar(self, user_id: int | None, month: str | None = None, tz_name: str | None = None) -> dict[str, Any]:
        session = self.session_for(user_id)
        today = self.today_for(tz_name)
        reference = parse_month_key(month) if month else today.replace(day=1)
        current = session.snapshot()
        locale = self.settings.CALENDAR_LOCALE

        cells = []
        for day in days_in_month(reference):
            key = format_date(day)
            if day > today:
                status = "future"
            elif day < current.start_date:
                status = "before_start"
            elif current.failed_days.get(key):
                status = "failed"
            else:
                status = "success"
            cells.append({
                "key": key,
                "day": day.day,
                "status": status,
                "is_today": day == today,
                "clickable": status in {"failed", "success"},
            })

        return {
            "month": month_key(reference),
            "label": format_month_label(reference, locale),
            "weekdays": weekday_labels(locale),
            "start_offset": month_start_offset(reference),
            "days": cells,
            "previous_month": month_key(shift_month(reference, -1)),
            "next_month": month_key(shift_month(reference, 1)),
        }

    # ─── Local mutations ───

    def toggle_day(self, user_id: int | None, date_key: str, tz_name: str | None = None) -> bool:
        session = self.session_for(user_id)
        return session.toggle_day(date_key, self.today_for(tz_name))

    def set_start_date(self, user_id: int | None, value: str, tz_name: str | None = None) -> bool:
        session = self.session_for(user_id)
        return session.set_start_date(value, self.today_for(tz_name))

    def import_payload(self, user_id: int | None, raw: bytes | str, tz_name: str | None = None) -> ImportResult:
        session = self.session_for(user_id)
        items = decode_import_payload(raw)
        result = reconcile_import(items, self.today_for(tz_name))
        session.replace_failed_days(result.failed_days)
        logger.info(
            "Imported failed days for user %s: processed=%s imported=%s invalid=%s future=%s",
            user_id,
            result.total_processed,
            result.imported_count,
            result.invalid_count,
            result.future_count,
        )
        return result

    def export_payload(self, user_id: int | None, tz_name: str | None = None) -> ExportPayload:
        session = self.session_for(user_id)
        return ExportPayload(
            filename=export_filename(self.today_for(tz_name), self.settings.EXPORT_FILENAME_PREFIX),
            content=render_export(session.failed_days),
        )

    # ─── Persistence ───

    def save(self, user_id: int | None) -> bool:
        """Push the working copy to the store. Returns False when there was nothing to save."""
        session = self.session_for(user_id)
        pending = session.begin_save()
        if pending is None:
            return False
        try:
            self.store.save(int(user_id), record_from_session_values(pending.failed_days, pending.start_date))
        except StorageError:
            session.fail_save()
            raise
        except Exception as exc:
            session.fail_save()
            logger.exception("Unexpected failure while saving goal record for user %s", user_id)
            raise StorageError("Could not save your changes. Please try again.") from exc
        session.complete_save()
        logger.info("Saved goal record for user %s (%s failed days)", user_id, len(pending.failed_days))
        return True

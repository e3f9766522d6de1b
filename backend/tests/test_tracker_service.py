"""Tests for the tracker service: loading, mutations, import/export and the save flow."""
from __future__ import annotations

import json
import sys
from datetime import date
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings  # noqa: E402
from services.errors import AuthError, FormatError, StorageError, ValidationError  # noqa: E402
from services.record_store import PersistedRecord  # noqa: E402
from services.tracker_service import TrackerService  # noqa: E402
from services.tracker_session import SaveState  # noqa: E402


TODAY = date(2025, 10, 10)


class FakeStore:
    def __init__(self, records=None, fail_load=False, fail_save=False):
        self.records: dict[int, PersistedRecord] = dict(records or {})
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.saved: list[tuple[int, PersistedRecord]] = []

    def load(self, user_id):
        if self.fail_load:
            raise StorageError("Could not load your data: OperationalError.")
        return self.records.get(user_id)

    def save(self, user_id, record):
        if self.fail_save:
            raise StorageError("Could not save your changes: OperationalError. Please try again.")
        self.saved.append((user_id, record))
        self.records[user_id] = record


def _service(store: FakeStore) -> TrackerService:
    return TrackerService(
        store=store,
        app_settings=Settings(DEFAULT_START_DATE="2025-10-06", CURRENCY_CODE="EUR"),
        clock=lambda _tz: TODAY,
    )


# ─── Loading ───


def test_missing_record_uses_defaults():
    snapshot = _service(FakeStore()).snapshot(1)
    assert snapshot["failed_days"] == {}
    assert snapshot["start_date"] == "2025-10-06"
    assert snapshot["today"] == "2025-10-10"
    assert snapshot["score"] == 10
    assert snapshot["current_streak"] == 5
    assert snapshot["save_state"] == "clean"
    assert snapshot["warning"] is None


def test_stored_record_drives_score():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-08": True}, start_date_string="2025-10-06")})
    snapshot = _service(store).snapshot(1)
    assert snapshot["score"] == 2
    assert snapshot["score_display"] == "0.02 EUR"
    assert snapshot["current_streak"] == 2


def test_load_failure_falls_back_with_warning():
    service = _service(FakeStore(fail_load=True))
    snapshot = service.snapshot(1)
    assert snapshot["failed_days"] == {}
    assert snapshot["start_date"] == "2025-10-06"
    assert "Could not load your saved data" in snapshot["warning"]
    # still usable
    service.toggle_day(1, "2025-10-09")
    assert service.snapshot(1)["has_unsaved_changes"] is True


def test_invalid_stored_keys_never_reach_the_session():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-02-30": True, "2025-10-08": True}, start_date_string="2025-10-06")})
    assert _service(store).snapshot(1)["failed_days"] == {"2025-10-08": True}


def test_stored_start_date_with_trailing_newline_falls_back_to_default():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-08": True}, start_date_string="2025-10-01\n")})
    snapshot = _service(store).snapshot(1)
    assert snapshot["start_date"] == "2025-10-06"
    assert snapshot["failed_days"] == {"2025-10-08": True}


def test_missing_identity_is_an_auth_error():
    service = _service(FakeStore())
    with pytest.raises(AuthError):
        service.snapshot(None)
    with pytest.raises(AuthError):
        service.reload(None)


# ─── Mutations and persistence ───


def test_save_pushes_record_and_cleans_session():
    store = FakeStore()
    service = _service(store)
    service.toggle_day(1, "2025-10-08")
    assert service.save(1) is True
    user_id, record = store.saved[-1]
    assert user_id == 1
    assert record.to_document() == {"failedDays": {"2025-10-08": True}, "startDateString": "2025-10-06"}
    assert service.snapshot(1)["save_state"] == "clean"


def test_save_without_changes_is_noop():
    store = FakeStore()
    service = _service(store)
    assert service.save(1) is False
    assert store.saved == []


def test_save_failure_keeps_local_edits_dirty():
    store = FakeStore(fail_save=True)
    service = _service(store)
    service.toggle_day(1, "2025-10-08")
    with pytest.raises(StorageError):
        service.save(1)
    session = service.session_for(1)
    assert session.state == SaveState.DIRTY
    assert session.failed_days == {"2025-10-08": True}

    store.fail_save = False
    assert service.save(1) is True
    assert session.state == SaveState.CLEAN


def test_unexpected_store_exception_is_reported_as_storage_error():
    class BrokenStore(FakeStore):
        def save(self, user_id, record):
            raise KeyError("boom")

    service = _service(BrokenStore())
    service.toggle_day(1, "2025-10-08")
    with pytest.raises(StorageError):
        service.save(1)
    assert service.session_for(1).state == SaveState.DIRTY


def test_future_start_date_rejected_through_service():
    service = _service(FakeStore())
    service.toggle_day(1, "2025-10-08")
    with pytest.raises(ValidationError):
        service.set_start_date(1, "2025-10-11")
    snapshot = service.snapshot(1)
    assert snapshot["start_date"] == "2025-10-06"
    assert snapshot["failed_days"] == {"2025-10-08": True}


def test_import_replaces_and_marks_dirty():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-07": True}, start_date_string="2025-10-06")})
    service = _service(store)
    result = service.import_payload(1, b'["2025-10-09", "2025-10-11", "bad-date"]')
    assert (result.imported_count, result.future_count, result.invalid_count) == (1, 1, 1)
    snapshot = service.snapshot(1)
    assert snapshot["failed_days"] == {"2025-10-09": True}
    assert snapshot["save_state"] == "dirty"


def test_import_of_empty_list_clears_failed_days():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-07": True}, start_date_string="2025-10-06")})
    service = _service(store)
    service.import_payload(1, "[]")
    assert service.snapshot(1)["failed_days"] == {}


def test_bad_import_leaves_state_untouched():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-07": True}, start_date_string="2025-10-06")})
    service = _service(store)
    with pytest.raises(FormatError):
        service.import_payload(1, b'{"failedDays": {}}')
    snapshot = service.snapshot(1)
    assert snapshot["failed_days"] == {"2025-10-07": True}
    assert snapshot["save_state"] == "clean"


def test_export_payload_uses_today_in_filename():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-09": True, "2025-10-07": True}, start_date_string="2025-10-06")})
    payload = _service(store).export_payload(1)
    assert payload.filename == "GoalTracker_FailedDays_2025-10-10.json"
    assert json.loads(payload.content) == ["2025-10-07", "2025-10-09"]


def test_reload_discards_unsaved_edits():
    service = _service(FakeStore())
    service.toggle_day(1, "2025-10-08")
    service.reload(1)
    snapshot = service.snapshot(1)
    assert snapshot["failed_days"] == {}
    assert snapshot["save_state"] == "clean"


def test_calendar_cells_reflect_day_states():
    store = FakeStore({1: PersistedRecord(failed_days={"2025-10-08": True}, start_date_string="2025-10-06")})
    calendar = _service(store).calendar(1, "2025-10")
    assert calendar["month"] == "2025-10"
    assert calendar["start_offset"] == 2  # 2025-10-01 is a Wednesday
    assert calendar["previous_month"] == "2025-09"
    assert calendar["next_month"] == "2025-11"
    assert len(calendar["weekdays"]) == 7
    by_key = {cell["key"]: cell for cell in calendar["days"]}
    assert len(by_key) == 31
    assert by_key["2025-10-05"]["status"] == "before_start"
    assert by_key["2025-10-06"]["status"] == "success"
    assert by_key["2025-10-08"]["status"] == "failed"
    assert by_key["2025-10-10"]["is_today"] is True
    assert by_key["2025-10-11"]["status"] == "future"
    assert by_key["2025-10-11"]["clickable"] is False


def test_calendar_defaults_to_current_month():
    assert _service(FakeStore()).calendar(1)["month"] == "2025-10"


def test_users_have_independent_sessions():
    service = _service(FakeStore())
    service.toggle_day(1, "2025-10-08")
    assert service.snapshot(2)["failed_days"] == {}

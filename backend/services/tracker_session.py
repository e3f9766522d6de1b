from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable

from services.errors import SaveInProgressError, ValidationError
from services.score_service import ScoreStreakResult, compute_score_and_streak
from utils.date_utils import format_date, parse_date_string


class SaveState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"


@dataclass(frozen=True)
class SessionSnapshot:
    failed_days: dict[str, bool]
    start_date: date


class TrackerSession:
    """
    Local-first working copy of one user's record.

    Mutations apply immediately and move the session out of CLEAN; only an
    explicit save (begin_save -> complete_save / fail_save) brings it back.
    """

    def __init__(
        self,
        failed_days: dict[str, bool] | None = None,
        start_date: date | None = None,
        *,
        load_warning: str | None = None,
    ) -> None:
        if start_date is None:
            raise ValueError("start_date is required")
        self._failed_days: dict[str, bool] = dict(failed_days or {})
        self._start_date = start_date
        self._state = SaveState.CLEAN
        self._changed_while_saving = False
        self.load_warning = load_warning
        self._lock = threading.RLock()

    @property
    def state(self) -> SaveState:
        return self._state

    @property
    def has_unsaved_changes(self) -> bool:
        with self._lock:
            return self._state != SaveState.CLEAN

    @property
    def failed_days(self) -> dict[str, bool]:
        with self._lock:
            return dict(self._failed_days)

    @property
    def start_date(self) -> date:
        return self._start_date

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(failed_days=dict(self._failed_days), start_date=self._start_date)

    def result(self, today: date) -> ScoreStreakResult:
        with self._lock:
            return compute_score_and_streak(self._failed_days, self._start_date, today)

    def _mark_mutated(self) -> None:
        if self._state == SaveState.SAVING:
            self._changed_while_saving = True
        else:
            self._state = SaveState.DIRTY

    def toggle_day(self, date_key: str, today: date) -> bool:
        """Flip one day between failed and successful. Returns True when the day is now failed."""
        day = parse_date_string(date_key)
        key = format_date(day)
        if day > today:
            raise ValidationError("You cannot mark future days.")
        with self._lock:
            if day < self._start_date:
                raise ValidationError(
                    f"{key} is before the start date {format_date(self._start_date)}."
                )
            if self._failed_days.get(key):
                del self._failed_days[key]
                now_failed = False
            else:
                self._failed_days[key] = True
                now_failed = True
            self._mark_mutated()
            return now_failed

    def set_start_date(self, value: str, today: date) -> bool:
        """Move the start date. Returns False when the value is unchanged."""
        new_start = parse_date_string(value)
        if new_start > today:
            raise ValidationError("The start date cannot be later than today.")
        with self._lock:
            if new_start == self._start_date:
                return False
            self._start_date = new_start
            self._mark_mutated()
            return True

    def replace_failed_days(self, failed_days: dict[str, bool]) -> None:
        with self._lock:
            self._failed_days = dict(failed_days)
            self._mark_mutated()

    def begin_save(self) -> SessionSnapshot | None:
        """DIRTY -> SAVING. Returns the snapshot to persist, or None when there is nothing to save."""
        with self._lock:
            if self._state == SaveState.SAVING:
                raise SaveInProgressError("A save is already in progress. Please wait for it to finish.")
            if self._state == SaveState.CLEAN:
                return None
            self._state = SaveState.SAVING
            self._changed_while_saving = False
            return SessionSnapshot(failed_days=dict(self._failed_days), start_date=self._start_date)

    def complete_save(self) -> None:
        with self._lock:
            if self._state != SaveState.SAVING:
                raise RuntimeError(f"complete_save called in state {self._state.value}")
            self._state = SaveState.DIRTY if self._changed_while_saving else SaveState.CLEAN
            self._changed_while_saving = False
            self.load_warning = None

    def fail_save(self) -> None:
        with self._lock:
            if self._state != SaveState.SAVING:
                raise RuntimeError(f"fail_save called in state {self._state.value}")
            self._state = SaveState.DIRTY
            self._changed_while_saving = False


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, TrackerSession] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> TrackerSession | None:
        with self._lock:
            return self._sessions.get(user_id)

    def get_or_load(self, user_id: str, loader: Callable[[], TrackerSession]) -> TrackerSession:
        """Return the user's session, loading it outside the registry lock on first use."""
        with self._lock:
            session = self._sessions.get(user_id)
        if session is not None:
            return session
        loaded = loader()
        with self._lock:
            # A concurrent first request for the same user may have won the race.
            return self._sessions.setdefault(user_id, loaded)

    def discard(self, user_id: str) -> None:
        with self._lock:
            self._sessions.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.database import SessionLocal
from db.models import GoalRecord
from services.errors import StorageError
from utils.date_utils import format_date, is_valid_date_string

logger = logging.getLogger(__name__)

FAILED_DAYS_FIELD = "failedDays"
START_DATE_FIELD = "startDateString"


def record_path(namespace: str, user_id: int | str) -> str:
    return f"artifacts/{namespace}/users/{user_id}/goal_data/day_records"


@dataclass
class PersistedRecord:
    failed_days: dict[str, bool] = field(default_factory=dict)
    start_date_string: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            FAILED_DAYS_FIELD: {key: True for key in sorted(self.failed_days) if self.failed_days[key]},
            START_DATE_FIELD: self.start_date_string,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PersistedRecord":
        failed_days = document.get(FAILED_DAYS_FIELD)
        start = document.get(START_DATE_FIELD)
        return cls(
            failed_days=dict(failed_days) if isinstance(failed_days, dict) else {},
            start_date_string=start if isinstance(start, str) else None,
        )


@dataclass
class SanitizedRecord:
    failed_days: dict[str, bool]
    start_date: date
    dropped_keys: list[str]


def sanitize_record(record: PersistedRecord | None, default_start: date) -> SanitizedRecord:
    """Keep only real calendar keys with a truthy marker; fall back to the default start date."""
    if record is None:
        return SanitizedRecord(failed_days={}, start_date=default_start, dropped_keys=[])

    failed_days: dict[str, bool] = {}
    dropped: list[str] = []
    for key, marked in record.failed_days.items():
        if not is_valid_date_string(key):
            dropped.append(str(key))
            continue
        if marked:
            failed_days[key] = True

    start_raw = record.start_date_string
    if start_raw and is_valid_date_string(start_raw):
        return SanitizedRecord(
            failed_days=failed_days,
            start_date=date.fromisoformat(start_raw),
            dropped_keys=dropped,
        )
    return SanitizedRecord(failed_days=failed_days, start_date=default_start, dropped_keys=dropped)


class GoalRecordStore:
    """Document-style persistence of goal records keyed by (namespace, user id)."""

    def __init__(self, namespace: str, session_factory: Callable[[], Session] = SessionLocal) -> None:
        if not (namespace or "").strip():
            raise ValueError("namespace is required")
        self.namespace = namespace.strip()
        self._session_factory = session_factory

    def _find(self, db: Session, user_id: int) -> GoalRecord | None:
        return (
            db.query(GoalRecord)
            .filter(GoalRecord.namespace == self.namespace, GoalRecord.user_id == user_id)
            .first()
        )

    def load(self, user_id: int) -> PersistedRecord | None:
        db = self._session_factory()
        try:
            row = self._find(db, user_id)
            if row is None:
                return None
            try:
                document = json.loads(row.document_json or "{}")
            except json.JSONDecodeError as exc:
                raise StorageError(f"Stored record for user {user_id} is corrupt.") from exc
            if not isinstance(document, dict):
                raise StorageError(f"Stored record for user {user_id} is corrupt.")
            return PersistedRecord.from_document(document)
        except SQLAlchemyError as exc:
            logger.warning("Goal record load failed for user %s in %s: %s", user_id, self.namespace, exc)
            raise StorageError(f"Could not load your data: {exc.__class__.__name__}.") from exc
        finally:
            db.close()

    def save(self, user_id: int, record: PersistedRecord) -> None:
        """Upsert-merge: only the record's own fields are replaced in the stored document."""
        db = self._session_factory()
        try:
            row = self._find(db, user_id)
            if row is None:
                row = GoalRecord(
                    namespace=self.namespace,
                    user_id=user_id,
                    document_path=record_path(self.namespace, user_id),
                    document_json="{}",
                )
                db.add(row)
                document: dict[str, Any] = {}
            else:
                try:
                    existing = json.loads(row.document_json or "{}")
                except json.JSONDecodeError:
                    logger.warning("Overwriting corrupt goal record for user %s in %s", user_id, self.namespace)
                    existing = {}
                document = existing if isinstance(existing, dict) else {}

            document.update(record.to_document())
            row.document_json = json.dumps(document, ensure_ascii=True, sort_keys=True)
            row.updated_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Goal record save failed for user %s in %s: %s", user_id, self.namespace, exc)
            raise StorageError(f"Could not save your changes: {exc.__class__.__name__}. Please try again.") from exc
        finally:
            db.close()


def record_from_session_values(failed_days: dict[str, bool], start_date: date) -> PersistedRecord:
    return PersistedRecord(failed_days=dict(failed_days), start_date_string=format_date(start_date))

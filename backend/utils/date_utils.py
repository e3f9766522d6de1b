import calendar
import locale as _locale
import re
from datetime import datetime, date, timedelta, timezone
from zoneinfo import ZoneInfo

from services.errors import ValidationError

DATE_KEY_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
MONTH_KEY_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}")


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def today_for_tz(tz_name: str | None) -> date:
    """Return today's date in the user's timezone."""
    if tz_name:
        try:
            return datetime.now(ZoneInfo(tz_name)).date()
        except Exception:
            pass
    return today_utc()


def format_date(d: date) -> str:
    """Canonical day key (YYYY-MM-DD) built from the date's own fields."""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def is_valid_date_string(value) -> bool:
    """
    True when `value` is exactly YYYY-MM-DD and names a real calendar day.

    The regex alone accepts 2025-02-30 or 2025-13-01; constructing the date
    rejects anything that would otherwise roll over.
    """
    if not isinstance(value, str) or not DATE_KEY_PATTERN.fullmatch(value):
        return False
    year, month, day = (int(part) for part in value.split("-"))
    try:
        parsed = date(year, month, day)
    except ValueError:
        return False
    return (parsed.year, parsed.month, parsed.day) == (year, month, day)


def parse_date_string(value: str) -> date:
    cleaned = (value or "").strip() if isinstance(value, str) else value
    if not is_valid_date_string(cleaned):
        raise ValidationError(f"Invalid date {value!r}. Use the YYYY-MM-DD format.")
    return date.fromisoformat(cleaned)


def days_in_month(reference: date) -> list[date]:
    """Every day of the month containing `reference`, ascending."""
    first = reference.replace(day=1)
    total = calendar.monthrange(first.year, first.month)[1]
    return [first + timedelta(days=offset) for offset in range(total)]


def month_start_offset(reference: date) -> int:
    """Empty cells before day 1 in a Monday-first grid (Monday=0 .. Sunday=6)."""
    return reference.replace(day=1).weekday()


def shift_month(reference: date, delta: int) -> date:
    """First day of the month `delta` months away from `reference`."""
    index = reference.year * 12 + (reference.month - 1) + int(delta)
    return date(index // 12, index % 12 + 1, 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(value: str) -> date:
    cleaned = (value or "").strip()
    if not MONTH_KEY_PATTERN.fullmatch(cleaned):
        raise ValidationError(f"Invalid month {value!r}. Use the YYYY-MM format.")
    year, month = (int(part) for part in cleaned.split("-"))
    if not 1 <= month <= 12 or year < 1:
        raise ValidationError(f"Invalid month {value!r}. Use the YYYY-MM format.")
    return date(year, month, 1)


def _normalize_locale(name: str) -> str:
    # Accept BCP 47 tags like es-ES as well as POSIX names.
    return name.strip().replace("-", "_")


def weekday_labels(locale: str | None = None) -> list[str]:
    """Monday-first short weekday names, three characters each, capitalized."""
    if locale:
        cal = calendar.LocaleTextCalendar(firstweekday=0, locale=_normalize_locale(locale))
    else:
        cal = calendar.TextCalendar(firstweekday=0)
    try:
        names = [cal.formatweekday(day, 3).strip() for day in cal.iterweekdays()]
    except _locale.Error as exc:
        raise ValidationError(f"Locale {locale!r} is not available on this system.") from exc
    return [name[:3].capitalize() for name in names]


def format_month_label(reference: date, locale: str | None = None) -> str:
    if locale:
        cal = calendar.LocaleTextCalendar(firstweekday=0, locale=_normalize_locale(locale))
    else:
        cal = calendar.TextCalendar(firstweekday=0)
    try:
        return cal.formatmonthname(reference.year, reference.month, 0, withyear=True).strip()
    except _locale.Error as exc:
        raise ValidationError(f"Locale {locale!r} is not available on this system.") from exc

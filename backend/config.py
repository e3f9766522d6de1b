from datetime import date
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

from utils.date_utils import is_valid_date_string


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Goal Tracker"
    APP_NAMESPACE: str = "default-app-id"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/goal_tracker.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8050",
        "https://localhost:8050",
        "https://127.0.0.1:8050",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 72
    ALLOW_ANONYMOUS_SIGNIN: bool = True
    DEFAULT_START_DATE: str = "2025-10-06"
    DEFAULT_TIMEZONE: str = "UTC"
    # Locale for weekday and month labels, e.g. es_ES.UTF-8 for Spanish.
    # Unset keeps the process locale (English "Mon".."Sun" under C/POSIX).
    CALENDAR_LOCALE: str | None = None
    CURRENCY_CODE: str = "EUR"
    EXPORT_FILENAME_PREFIX: str = "GoalTracker_FailedDays"
    MAX_IMPORT_BYTES: int = 1024 * 1024
    AUTH_COOKIE_NAME: str = "goal_tracker_session"
    AUTH_COOKIE_SECURE: bool = False
    AUTH_COOKIE_HTTPONLY: bool = True
    AUTH_COOKIE_SAMESITE: str = "lax"  # strict | lax | none
    AUTH_COOKIE_DOMAIN: str | None = None
    AUTH_COOKIE_PATH: str = "/"
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_CSP: str = (
        "default-src 'self'; "
        "img-src 'self' data:; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "connect-src 'self'; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "form-action 'self';"
    )
    RATE_LIMIT_AUTH_LOGIN_ATTEMPTS: int = 10
    RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS: int = 300
    RATE_LIMIT_AUTH_REGISTER_ATTEMPTS: int = 5
    RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS: int = 600
    RATE_LIMIT_AUTH_ANONYMOUS_ATTEMPTS: int = 20
    RATE_LIMIT_AUTH_ANONYMOUS_WINDOW_SECONDS: int = 600
    RATE_LIMIT_IMPORT_ATTEMPTS: int = 10
    RATE_LIMIT_IMPORT_WINDOW_SECONDS: int = 60

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    @property
    def default_start_date(self) -> date:
        return date.fromisoformat(self.DEFAULT_START_DATE.strip())

    def validate_required_configuration(self) -> None:
        """Fail startup when a field the tracker cannot run without is missing or malformed."""
        errors: list[str] = []
        for field_name in ("APP_NAME", "APP_NAMESPACE", "SECRET_KEY", "DATABASE_URL", "DEFAULT_START_DATE", "CURRENCY_CODE"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{field_name} is required")

        start_raw = (self.DEFAULT_START_DATE or "").strip()
        if start_raw and not is_valid_date_string(start_raw):
            errors.append("DEFAULT_START_DATE must be a real date in YYYY-MM-DD format")

        tz_name = (self.DEFAULT_TIMEZONE or "").strip()
        if not tz_name:
            errors.append("DEFAULT_TIMEZONE is required")
        else:
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                errors.append(f"DEFAULT_TIMEZONE {tz_name!r} is not a known timezone")

        if int(self.MAX_IMPORT_BYTES) <= 0:
            errors.append("MAX_IMPORT_BYTES must be positive")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if len((self.SECRET_KEY or "").strip()) < 16:
            errors.append("SECRET_KEY must be at least 16 characters")
        if not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SECURE must be true in production-like environments")
        if (self.AUTH_COOKIE_SAMESITE or "").strip().lower() == "none" and not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SAMESITE=none requires AUTH_COOKIE_SECURE=true")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

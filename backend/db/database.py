import logging
import time

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)

SLOW_QUERY_MS = 250.0

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)


if _is_sqlite:
    # Enable WAL mode for better concurrent read performance
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@event.listens_for(engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    _ = cursor
    _ = statement
    _ = parameters
    _ = context
    _ = executemany
    conn.info.setdefault("_query_start_time", []).append(time.perf_counter())


@event.listens_for(engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    _ = cursor
    _ = parameters
    _ = context
    _ = executemany
    start_stack = conn.info.get("_query_start_time")
    if not start_stack:
        return
    started = start_stack.pop()
    duration_ms = max((time.perf_counter() - started) * 1000.0, 0.0)
    if duration_ms >= SLOW_QUERY_MS:
        logger.warning("Slow query (%.1f ms): %s", duration_ms, " ".join(str(statement).split())[:200])


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations() -> None:
    """Apply lightweight schema fixes for existing SQLite databases."""
    inspector = inspect(engine)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except Exception:
            return set()

    user_columns = _table_columns("users")
    goal_record_columns = _table_columns("goal_records")
    if not user_columns and not goal_record_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if user_columns:
        if "is_anonymous" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN is_anonymous BOOLEAN DEFAULT 0")
        if "timezone" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN timezone TEXT")
        if "token_version" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN token_version INTEGER DEFAULT 0")

    if goal_record_columns:
        if "document_path" not in goal_record_columns:
            alter_statements.append("ALTER TABLE goal_records ADD COLUMN document_path TEXT")

    with engine.begin() as conn:
        for stmt in alter_statements:
            logger.info("Startup migration: %s", stmt)
            conn.execute(text(stmt))

        if user_columns:
            # Backfill nulls for any rows created before defaults existed.
            conn.execute(text(
                """
                UPDATE users
                SET is_anonymous = COALESCE(is_anonymous, 0),
                    token_version = COALESCE(token_version, 0)
                """
            ))

        if goal_record_columns:
            conn.execute(text(
                """
                UPDATE goal_records
                SET document_path = 'artifacts/' || namespace || '/users/' || user_id || '/goal_data/day_records'
                WHERE document_path IS NULL
                """
            ))
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_goal_records_namespace_user
                ON goal_records (namespace, user_id)
                """
            ))

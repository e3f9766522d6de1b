from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=True)  # NULL for anonymous accounts
    display_name = Column(Text, nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    timezone = Column(Text, nullable=True)  # falls back to settings.DEFAULT_TIMEZONE
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    goal_records = relationship("GoalRecord", back_populates="user", cascade="all, delete-orphan")


class GoalRecord(Base):
    """One stored goal document per (namespace, user)."""

    __tablename__ = "goal_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    document_path = Column(Text, nullable=False)
    document_json = Column(Text, nullable=False, default="{}")  # {"failedDays": {...}, "startDateString": ...}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="goal_records")

    __table_args__ = (
        Index("idx_goal_records_namespace_user", "namespace", "user_id", unique=True),
    )


class RateLimitAuditEvent(Base):
    __tablename__ = "rate_limit_audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(Text, nullable=False)
    scope_key = Column(Text, nullable=False)
    blocked = Column(Boolean, nullable=False, default=False)
    retry_after_seconds = Column(Integer)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address = Column(Text)
    details_json = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_rate_limit_audit_endpoint", "endpoint", "created_at"),
    )

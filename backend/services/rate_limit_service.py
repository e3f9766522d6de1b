from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from db.database import SessionLocal
from db.models import RateLimitAuditEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    endpoint: str
    limit: int
    window_seconds: int


class SlidingWindowLimiter:
    """Per-key sliding window of hit timestamps, shared by all worker threads."""

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, *, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        now = time.time()
        window = max(int(window_seconds), 1)
        max_hits = max(int(limit), 1)
        with self._lock:
            bucket = self._hits[key]
            cutoff = now - window
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= max_hits:
                retry_after = int(max(bucket[0] + window - now, 1))
                return False, retry_after, 0
            bucket.append(now)
            return True, 0, max(max_hits - len(bucket), 0)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_LIMITER = SlidingWindowLimiter()


def reset_rate_limits() -> None:
    _LIMITER.reset()


def _hash_scope(scope_key: str) -> str:
    return hashlib.sha256((scope_key or "").encode("utf-8")).hexdigest()[:24]


def record_blocked_request(
    *,
    rule: RateLimitRule,
    scope_key: str,
    retry_after_seconds: int,
    user_id: int | None = None,
    ip_address: str | None = None,
    details: dict | None = None,
) -> None:
    logger.warning(
        "Rate limit hit on %s (scope=%s, retry_after=%ss)",
        rule.endpoint,
        _hash_scope(scope_key),
        retry_after_seconds,
    )
    db = SessionLocal()
    try:
        db.add(
            RateLimitAuditEvent(
                endpoint=rule.endpoint,
                scope_key=_hash_scope(scope_key),
                blocked=True,
                retry_after_seconds=int(retry_after_seconds) or None,
                user_id=user_id,
                ip_address=(ip_address or "").strip()[:128] or None,
                details_json=json.dumps(
                    {**(details or {}), "limit": rule.limit, "window_seconds": rule.window_seconds},
                    ensure_ascii=True,
                ),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not record rate limit event for %s: %s", rule.endpoint, exc)
    finally:
        db.close()


def enforce_rate_limit(
    *,
    rule: RateLimitRule,
    scope_key: str,
    user_id: int | None = None,
    ip_address: str | None = None,
    details: dict | None = None,
) -> tuple[bool, int]:
    allowed, retry_after, _remaining = _LIMITER.check(
        key=f"{rule.endpoint}:{scope_key}",
        limit=rule.limit,
        window_seconds=rule.window_seconds,
    )
    if not allowed:
        record_blocked_request(
            rule=rule,
            scope_key=scope_key,
            retry_after_seconds=retry_after,
            user_id=user_id,
            ip_address=ip_address,
            details=details,
        )
    return allowed, retry_after

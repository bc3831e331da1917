import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import InterfaceError, OperationalError

from taskguard.config import RATE_LIMIT_DEFAULT, RATE_LIMIT_FAIL_OPEN, RATE_LIMITS
from taskguard.models.enums import JobEvent
from taskguard.repositories.rate_window_repository import RateWindowRepository
from taskguard.services.error_taxonomy import ApplicationError

logger = logging.getLogger(__name__)

_STORE_ERRORS = (OperationalError, InterfaceError)

@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    blocked: bool = False

class RateLimitExceededError(ApplicationError):
    default_retryable = True

    def __init__(self, limit_type: str, result: RateLimitResult):
        super().__init__(f"Rate limit exceeded for {limit_type}", code="RATE_LIMITED",
                         details={"reset_at": result.reset_at, "blocked": result.blocked})
        self.result = result

class RateLimiter:
    """
    Fixed-window admission control backed by the rate_window table.

    Windows are aligned to ``floor(now / window) * window``. Admission is a
    conditional increment (``request_count < limit``), so concurrent callers
    never admit more than ``limit`` requests per window. If the store is
    unreachable the request is allowed (or refused when fail-open is off).
    """

    def __init__(self, repo: RateWindowRepository, events=None, fail_open: bool = RATE_LIMIT_FAIL_OPEN):
        self.repo = repo
        self.events = events
        self.fail_open = fail_open
        self.limits: Dict[str, Dict[str, int]] = {k: dict(v) for k, v in RATE_LIMITS.items()}

    @staticmethod
    def hash_identifier(identifier: str) -> str:
        return hashlib.sha256(str(identifier).encode("utf-8")).hexdigest()

    def configure(self, limit_type: str, limit: int, window: int):
        if limit < 1 or window < 1:
            raise ValueError("limit and window must be positive")
        self.limits[limit_type] = {"limit": limit, "window": window}

    def _resolve(self, limit_type: str, limit: Optional[int], window: Optional[int]) -> Tuple[int, int]:
        conf = self.limits.get(limit_type, RATE_LIMIT_DEFAULT)
        return (limit or conf["limit"], window or conf["window"])

    @staticmethod
    def _window(window: int, now: float) -> int:
        return int(now // window) * window

    def _degraded(self, limit_type: str, limit: int, reset_at: float, error: Exception) -> RateLimitResult:
        self.repo.session.rollback()
        logger.warning(
            "Rate limit store unavailable, %s request",
            "allowing" if self.fail_open else "refusing",
            extra={"limit_type": limit_type, "error": str(error)},
        )
        return RateLimitResult(self.fail_open, limit if self.fail_open else 0, reset_at, limit)

    def check_and_hit(self, identifier: str, limit_type: str = "api",
                      limit: Optional[int] = None, window: Optional[int] = None) -> RateLimitResult:
        limit, window = self._resolve(limit_type, limit, window)
        key = self.hash_identifier(identifier)
        window_start = self._window(window, time.time())
        reset_at = float(window_start + window)

        try:
            block = self.repo.active_block(key)
            if block:
                blocked_until = block.expires_at
                self.repo.session.rollback()
                return RateLimitResult(False, 0, blocked_until, limit, blocked=True)

            self.repo.ensure_window(key, limit_type, window_start, reset_at)
            allowed = self.repo.increment_below(key, limit_type, window_start, limit)
            used = self.repo.count(key, limit_type, window_start)
            self.repo.session.commit()
        except _STORE_ERRORS as e:
            return self._degraded(limit_type, limit, reset_at, e)

        if not allowed:
            logger.info("Rate limit reached", extra={"limit_type": limit_type, "limit": limit})
        return RateLimitResult(allowed, max(0, limit - used), reset_at, limit)

    def check(self, identifier: str, limit_type: str = "api",
              limit: Optional[int] = None, window: Optional[int] = None) -> RateLimitResult:
        """Read-only: report whether a request would be admitted without counting it."""
        limit, window = self._resolve(limit_type, limit, window)
        key = self.hash_identifier(identifier)
        window_start = self._window(window, time.time())
        reset_at = float(window_start + window)

        try:
            block = self.repo.active_block(key)
            blocked_until = block.expires_at if block else None
            used = self.repo.count(key, limit_type, window_start)
            self.repo.session.rollback()
        except _STORE_ERRORS as e:
            return self._degraded(limit_type, limit, reset_at, e)

        if blocked_until is not None:
            return RateLimitResult(False, 0, blocked_until, limit, blocked=True)
        return RateLimitResult(used < limit, max(0, limit - used), reset_at, limit)

    def hit(self, identifier: str, limit_type: str = "api", window: Optional[int] = None):
        """Count a request unconditionally, e.g. a failed login that was already served."""
        _, window = self._resolve(limit_type, None, window)
        key = self.hash_identifier(identifier)
        window_start = self._window(window, time.time())
        try:
            self.repo.ensure_window(key, limit_type, window_start, float(window_start + window))
            self.repo.increment(key, limit_type, window_start)
            self.repo.session.commit()
        except _STORE_ERRORS as e:
            self.repo.session.rollback()
            logger.warning("Rate limit hit not recorded", extra={"limit_type": limit_type, "error": str(e)})

    def attempt(self, identifier: str, limit_type: str, callback: Callable[[], Any],
                limit: Optional[int] = None, window: Optional[int] = None) -> Any:
        result = self.check_and_hit(identifier, limit_type, limit, window)
        if not result.allowed:
            raise RateLimitExceededError(limit_type, result)
        return callback()

    def reset(self, identifier: str, limit_type: str) -> int:
        removed = self.repo.delete_windows(self.hash_identifier(identifier), limit_type)
        self.repo.session.commit()
        return removed

    def block(self, identifier: str, duration: int = 3600, reason: str = "") -> float:
        key = self.hash_identifier(identifier)
        expires_at = time.time() + duration
        self.repo.put_block(key, expires_at, reason)
        self.repo.session.commit()
        logger.warning("Identifier blocked", extra={"identifier_hash": key, "duration": duration, "reason": reason})
        if self.events:
            self.events.emit(JobEvent.RATE_LIMIT_BLOCKED, identifier_hash=key, duration=duration, reason=reason)
        return expires_at

    def unblock(self, identifier: str) -> bool:
        key = self.hash_identifier(identifier)
        removed = self.repo.delete_block(key)
        self.repo.session.commit()
        if removed and self.events:
            self.events.emit(JobEvent.RATE_LIMIT_UNBLOCKED, identifier_hash=key)
        return removed > 0

    def is_blocked(self, identifier: str) -> bool:
        try:
            blocked = self.repo.active_block(self.hash_identifier(identifier)) is not None
        except _STORE_ERRORS:
            blocked = False
        self.repo.session.rollback()
        return blocked

    def cleanup(self) -> int:
        removed = self.repo.delete_expired()
        self.repo.session.commit()
        return removed

    @staticmethod
    def headers(result: RateLimitResult) -> Dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset_at)),
        }
        if not result.allowed:
            h["Retry-After"] = str(max(0, math.ceil(result.reset_at - time.time())))
        return h

"""In-memory per-user rate limiting for model calls.

Each (user, operation) pair gets a fixed one-hour window. The first call
opens the window; calls beyond the operation's quota are refused until the
window expires. State lives in process memory only.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60 * 60

DEFAULT_LIMITS = {
    "newsletters": 20,
    "extraction": 50,
    "analysis": 100,
}
DEFAULT_LIMIT = 10


class RateLimitExceeded(Exception):
    """Raised when a user's quota for an operation is exhausted."""

    def __init__(self, user_id: str, operation: str, reset_at: datetime):
        self.user_id = user_id
        self.operation = operation
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded for {operation}. "
            f"Please try again after {reset_at.strftime('%H:%M:%S')} UTC"
        )


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window hourly quotas keyed by user and operation.

    Example:
        >>> limiter = RateLimiter({"extraction": 50})
        >>> limiter.check("user-1", "extraction")  # raises when over quota
    """

    def __init__(
        self,
        limits: dict[str, int] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.limits = {**DEFAULT_LIMITS, **(limits or {})}
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def _limit(self, operation: str) -> int:
        return self.limits.get(operation, DEFAULT_LIMIT)

    def is_allowed(self, user_id: str, operation: str = "default") -> bool:
        """Consume one call from the quota; False if none remain."""
        now = self._clock()
        key = f"{user_id}:{operation}"
        window = self._windows.get(key)

        if window is None or now > window.reset_at:
            self._windows[key] = _Window(count=1, reset_at=now + WINDOW_SECONDS)
            return True

        if window.count < self._limit(operation):
            window.count += 1
            return True

        return False

    def check(self, user_id: str, operation: str = "default") -> None:
        """Consume one call or raise RateLimitExceeded."""
        if not self.is_allowed(user_id, operation):
            reset_at = self.reset_time(user_id, operation)
            logger.warning("Rate limit hit | user=%s operation=%s reset=%s", user_id, operation, reset_at.isoformat())
            raise RateLimitExceeded(user_id, operation, reset_at)

    def remaining(self, user_id: str, operation: str = "default") -> int:
        """Calls left in the current window."""
        window = self._windows.get(f"{user_id}:{operation}")
        limit = self._limit(operation)
        if window is None or self._clock() > window.reset_at:
            return limit
        return max(0, limit - window.count)

    def reset_time(self, user_id: str, operation: str = "default") -> datetime:
        """When the current window ends (one hour from now if none is open)."""
        window = self._windows.get(f"{user_id}:{operation}")
        reset_at = window.reset_at if window else self._clock() + WINDOW_SECONDS
        return datetime.fromtimestamp(reset_at, timezone.utc)

    def cleanup(self) -> int:
        """Drop expired windows. Returns the number removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

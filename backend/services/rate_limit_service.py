"""Attempt throttling for the unauthenticated auth endpoints.

Each rule admits ``limit`` attempts per scope inside a sliding window of
``window_seconds``. State is per process; a restart forgets every window.
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimitExceeded(Exception):
    def __init__(self, rule: RateLimitRule, retry_after: int):
        super().__init__(f"Rate limit exceeded for {rule.name}")
        self.rule = rule
        self.retry_after = retry_after


class SlidingWindowLimiter:
    """Keeps the attempt times still inside each (rule, scope) window."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._attempts: dict[tuple[str, str], list[float]] = {}
        self._lock = threading.Lock()

    def hit(self, rule: RateLimitRule, scope: str) -> RateLimitDecision:
        now = self._clock()
        window = max(float(rule.window_seconds), 1.0)
        capacity = max(int(rule.limit), 1)
        key = (rule.name, scope)
        with self._lock:
            recent = [at for at in self._attempts.get(key, ()) if now - at < window]
            if len(recent) >= capacity:
                self._attempts[key] = recent
                wait = recent[0] + window - now
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(math.ceil(wait), 1))
            recent.append(now)
            self._attempts[key] = recent
            return RateLimitDecision(allowed=True, remaining=capacity - len(recent))

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


_limiter = SlidingWindowLimiter()


def get_rate_limiter() -> SlidingWindowLimiter:
    return _limiter


def login_rule() -> RateLimitRule:
    return RateLimitRule(
        name="auth.login",
        limit=settings.RATE_LIMIT_AUTH_LOGIN_ATTEMPTS,
        window_seconds=settings.RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS,
    )


def register_rule() -> RateLimitRule:
    return RateLimitRule(
        name="auth.register",
        limit=settings.RATE_LIMIT_AUTH_REGISTER_ATTEMPTS,
        window_seconds=settings.RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS,
    )


def require_within_limit(
    rule: RateLimitRule,
    scope: str,
    *,
    limiter: SlidingWindowLimiter | None = None,
) -> RateLimitDecision:
    """Count one attempt; raises :class:`RateLimitExceeded` once over the limit."""
    decision = (limiter or _limiter).hit(rule, scope)
    if not decision.allowed:
        # Scopes carry emails; only a digest reaches the log.
        digest = hashlib.sha256(scope.encode("utf-8")).hexdigest()[:16]
        logger.warning(f"{rule.name} throttled scope={digest} retry_after={decision.retry_after}s")
        raise RateLimitExceeded(rule, decision.retry_after)
    return decision

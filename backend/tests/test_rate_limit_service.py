from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.rate_limit_service import (  # noqa: E402
    RateLimitExceeded,
    RateLimitRule,
    SlidingWindowLimiter,
    login_rule,
    require_within_limit,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_window_admits_limit_then_blocks_until_oldest_attempt_expires():
    clock = _FakeClock()
    limiter = SlidingWindowLimiter(clock=clock)
    rule = RateLimitRule(name="auth.login", limit=2, window_seconds=60)

    first = limiter.hit(rule, "1.2.3.4:a@example.com")
    assert first.allowed is True and first.remaining == 1
    clock.now += 10
    assert limiter.hit(rule, "1.2.3.4:a@example.com").remaining == 0

    clock.now += 5
    blocked = limiter.hit(rule, "1.2.3.4:a@example.com")
    assert blocked.allowed is False
    assert blocked.retry_after == 45

    clock.now += 45
    assert limiter.hit(rule, "1.2.3.4:a@example.com").allowed is True


def test_scopes_and_rules_are_counted_separately():
    limiter = SlidingWindowLimiter(clock=_FakeClock())
    login = RateLimitRule(name="auth.login", limit=1, window_seconds=60)
    register = RateLimitRule(name="auth.register", limit=1, window_seconds=60)

    assert limiter.hit(login, "a").allowed is True
    assert limiter.hit(login, "b").allowed is True
    assert limiter.hit(register, "a").allowed is True
    assert limiter.hit(login, "a").allowed is False

    limiter.reset()
    assert limiter.hit(login, "a").allowed is True


def test_require_within_limit_raises_with_retry_after(caplog):
    limiter = SlidingWindowLimiter(clock=_FakeClock())
    rule = RateLimitRule(name="auth.register", limit=1, window_seconds=30)
    require_within_limit(rule, "10.0.0.1:someone@example.com", limiter=limiter)

    with pytest.raises(RateLimitExceeded) as excinfo:
        require_within_limit(rule, "10.0.0.1:someone@example.com", limiter=limiter)

    assert excinfo.value.retry_after == 30
    assert "someone@example.com" not in caplog.text


def test_login_rule_reads_settings(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "RATE_LIMIT_AUTH_LOGIN_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS", 120)
    rule = login_rule()
    assert (rule.name, rule.limit, rule.window_seconds) == ("auth.login", 3, 120)

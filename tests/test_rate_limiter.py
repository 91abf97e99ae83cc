"""Tests for the sliding-window rate limiter."""

import logging
from datetime import datetime, timedelta

from safeguard.models.enums import RateLimitOutcome
from safeguard.models.security import RateLimitRecord
from safeguard.services.rate_limiter import RateLimiter

from tests.conftest import FailingRepository, unreachable_postgres


def test_limit_then_window_expiry(repository):
    limiter = RateLimiter(repository)
    start = datetime(2024, 1, 1, 12, 0, 0)

    decisions = [limiter.check("1.2.3.4", "login", limit=5, window_seconds=60, now=start) for _ in range(5)]
    assert all(d.allowed for d in decisions)
    assert decisions[-1].current_count == 5

    sixth = limiter.check("1.2.3.4", "login", limit=5, window_seconds=60, now=start)
    assert not sixth.allowed
    assert sixth.outcome == RateLimitOutcome.DENIED

    later = limiter.check("1.2.3.4", "login", limit=5, window_seconds=60, now=start + timedelta(seconds=61))
    assert later.allowed


def test_window_end_is_inclusive(repository):
    limiter = RateLimiter(repository)
    start = datetime(2024, 1, 1, 12, 0, 0)
    limiter.check("k", "post", limit=1, window_seconds=60, now=start)

    at_edge = limiter.check("k", "post", limit=1, window_seconds=60, now=start + timedelta(seconds=60))
    assert not at_edge.allowed


def test_denied_requests_are_not_recorded(repository):
    limiter = RateLimiter(repository)
    now = datetime(2024, 1, 1)
    for _ in range(4):
        limiter.check("k", "post", limit=2, window_seconds=60, now=now)

    assert len(repository.find(RateLimitRecord)) == 2


def test_keys_are_independent(repository):
    limiter = RateLimiter(repository)
    now = datetime(2024, 1, 1)
    limiter.check("k", "post", limit=1, window_seconds=60, now=now)

    assert limiter.check("k", "comment", limit=1, window_seconds=60, now=now).allowed
    assert limiter.check("other", "post", limit=1, window_seconds=60, now=now).allowed


def test_defaults_come_from_config(repository, config):
    config.set("rate_limit_default_limit", 1)
    limiter = RateLimiter(repository, config)

    assert limiter.check("k", "post").allowed
    decision = limiter.check("k", "post")
    assert not decision.allowed
    assert decision.window_seconds == 60


def test_storage_failure_fails_open(caplog):
    limiter = RateLimiter(FailingRepository(failing={"find"}))

    with caplog.at_level(logging.WARNING):
        decision = limiter.check("k", "post", limit=1, window_seconds=60)

    assert decision.allowed
    assert decision.outcome == RateLimitOutcome.UNKNOWN
    assert "unknown" in caplog.text


def test_purge_expired_removes_old_records(repository):
    limiter = RateLimiter(repository)
    now = datetime(2024, 1, 1, 12, 0, 0)
    limiter.check("k", "post", limit=10, window_seconds=60, now=now - timedelta(minutes=5))
    limiter.check("k", "post", limit=10, window_seconds=60, now=now)

    removed = limiter.purge_expired(older_than_seconds=60, now=now)

    assert removed == 1
    assert len(repository.find(RateLimitRecord)) == 1


def test_unreachable_database_fails_open(caplog):
    limiter = RateLimiter(unreachable_postgres())

    with caplog.at_level(logging.WARNING):
        decision = limiter.check("1.2.3.4", "login", limit=5, window_seconds=60)

    assert decision.allowed
    assert decision.outcome == RateLimitOutcome.UNKNOWN
    assert "unknown" in caplog.text

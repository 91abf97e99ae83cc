"""Tests for the security threat detector."""

from datetime import datetime, timedelta

import pytest

from safeguard.lib.errors import InvalidTransitionError
from safeguard.models.enums import (
    AlertStatus, SecurityEventType, Severity, ThreatStatus, ThreatType
)
from safeguard.models.security import (
    BlockedIP, SecurityAlert, SecurityEvent, SecurityFilters, SecurityThreat
)
from safeguard.services.ip_registry import IPBlockRegistry
from safeguard.services.security_service import ThreatDetector, is_bot_user_agent

from tests.conftest import FailingRepository

BROWSER = "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"


def failed_login(ip="203.0.113.5", at=None):
    event = SecurityEvent(
        ip_address=ip, user_id="victim", user_agent=BROWSER,
        event_type=SecurityEventType.FAILED_LOGIN,
    )
    if at is not None:
        event = event.model_copy(update={"created_at": at, "updated_at": at})
    return event


def test_six_failed_logins_raise_one_brute_force_threat(engine, repository):
    for _ in range(6):
        engine.record_event(failed_login())

    threats = repository.find(SecurityThreat)
    assert len(threats) == 1
    assert threats[0].type == ThreatType.BRUTE_FORCE
    assert threats[0].severity == Severity.HIGH

    blocks = repository.find(BlockedIP)
    assert len(blocks) == 1
    assert blocks[0].active
    assert blocks[0].reason == threats[0].description
    assert blocks[0].reason == "6 failed login attempts from 203.0.113.5 in 15 minutes"
    assert engine.is_ip_blocked("203.0.113.5")
    assert len(repository.find(SecurityAlert)) == 1


def test_five_failed_logins_are_tolerated(engine, repository):
    for _ in range(5):
        engine.record_event(failed_login())

    assert repository.find(SecurityThreat) == []
    assert not engine.is_ip_blocked("203.0.113.5")


def test_burst_beyond_threshold_does_not_duplicate_threat(engine, repository):
    for _ in range(9):
        engine.record_event(failed_login())

    assert len(repository.find(SecurityThreat)) == 1


def test_failures_outside_window_are_ignored(engine, repository):
    old = datetime.utcnow() - timedelta(minutes=20)
    for _ in range(5):
        engine.record_event(failed_login(at=old))
    engine.record_event(failed_login())

    assert repository.find(SecurityThreat) == []


def test_failures_are_counted_per_ip(engine, repository):
    for i in range(6):
        engine.record_event(failed_login(ip=f"198.51.100.{i}"))

    assert repository.find(SecurityThreat) == []


def test_suspicious_activity_is_left_for_review(engine, repository):
    result = engine.record_event(SecurityEvent(
        ip_address="192.0.2.1", user_agent=BROWSER,
        event_type=SecurityEventType.SUSPICIOUS_ACTIVITY,
    ))

    assert [t.type for t in result.threats] == [ThreatType.SUSPICIOUS_ACTIVITY]
    assert result.threats[0].severity == Severity.MEDIUM
    assert len(result.alerts) == 1
    assert result.blocked is None
    assert not engine.is_ip_blocked("192.0.2.1")


def test_bot_user_agent_is_blocked(engine):
    result = engine.record_event(SecurityEvent(
        ip_address="192.0.2.9", user_agent="curl/7.68.0",
        event_type=SecurityEventType.LOGIN,
    ))

    assert [t.type for t in result.threats] == [ThreatType.BOT]
    assert result.blocked is not None
    assert result.blocked.reason == "Automated user agent: curl/7.68.0"
    assert engine.is_ip_blocked("192.0.2.9")


def test_bot_markers():
    assert is_bot_user_agent("Googlebot/2.1")
    assert is_bot_user_agent("python-requests/2.31")
    assert not is_bot_user_agent(BROWSER)
    assert not is_bot_user_agent(None)


def test_event_timestamp_alias():
    at = datetime(2024, 5, 1, 8, 30)
    event = SecurityEvent(ip_address="1.1.1.1", event_type="login", timestamp=at)

    assert event.created_at == at
    assert event.timestamp == at


def test_alert_transitions(engine):
    result = engine.record_event(SecurityEvent(
        ip_address="192.0.2.1", event_type=SecurityEventType.SUSPICIOUS_ACTIVITY,
    ))
    alert_id = result.alerts[0].id
    detector = engine.threat_detector

    acknowledged = detector.update_alert(alert_id, AlertStatus.ACKNOWLEDGED, assigned_to="analyst")
    assert acknowledged.assigned_to == "analyst"

    resolved = detector.update_alert(alert_id, AlertStatus.RESOLVED, resolution="false alarm")
    assert resolved.status == AlertStatus.RESOLVED

    with pytest.raises(InvalidTransitionError):
        detector.update_alert(alert_id, AlertStatus.ACTIVE)


def test_threat_status_update(engine):
    result = engine.record_event(SecurityEvent(
        ip_address="192.0.2.1", event_type=SecurityEventType.SUSPICIOUS_ACTIVITY,
    ))

    threat = engine.threat_detector.update_threat(result.threats[0].id, ThreatStatus.FALSE_POSITIVE)
    assert threat.status == ThreatStatus.FALSE_POSITIVE


def test_alert_listing_filters(engine):
    engine.record_event(SecurityEvent(ip_address="192.0.2.1", event_type=SecurityEventType.SUSPICIOUS_ACTIVITY))
    engine.record_event(SecurityEvent(ip_address="192.0.2.2", user_agent="wget/1.21", event_type=SecurityEventType.LOGIN))

    bots = engine.threat_detector.get_alerts(SecurityFilters(type=ThreatType.BOT))
    assert [a.ip_address for a in bots] == ["192.0.2.2"]

    by_ip = engine.threat_detector.get_alerts(SecurityFilters(ip_address="192.0.2.1"))
    assert len(by_ip) == 1


def test_history_failure_counts_zero():
    repository = FailingRepository(failing={"count"})
    detector = ThreatDetector(repository, IPBlockRegistry(repository))

    for _ in range(6):
        detector.record_event(failed_login())

    assert repository.find(SecurityThreat) == []

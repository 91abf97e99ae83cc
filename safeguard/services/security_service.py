"""
Security Threat Detector.
Stores request events, runs the detection checks over recent history and
turns every hit into a threat plus a triage alert. Brute force and bot
traffic auto-block the source IP; everything else waits for a human.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from safeguard.lib.config import SecurityConfig
from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import InvalidTransitionError, PersistenceError
from safeguard.lib.locks import KeyedLock, retry_on_conflict
from safeguard.lib.metrics import MetricsExporter
from safeguard.models.enums import (
    AUTO_BLOCK_THREATS, AlertStatus, SecurityEventType, Severity,
    ThreatStatus, ThreatType
)
from safeguard.models.security import (
    BlockedIP, SecurityAlert, SecurityEvent, SecurityFilters, SecurityThreat
)
from safeguard.services.ip_registry import IPBlockRegistry

logger = logging.getLogger(__name__)


BOT_USER_AGENT_MARKERS = ['bot', 'crawler', 'spider', 'scraper', 'curl', 'wget', 'python', 'java']

ALERT_TRANSITIONS = {
    AlertStatus.ACTIVE: {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.DISMISSED},
    AlertStatus.ACKNOWLEDGED: {AlertStatus.RESOLVED, AlertStatus.DISMISSED},
    AlertStatus.RESOLVED: set(),
    AlertStatus.DISMISSED: set(),
}


@dataclass
class DetectionResult:
    """Everything one event produced."""
    event: SecurityEvent
    threats: List[SecurityThreat] = field(default_factory=list)
    alerts: List[SecurityAlert] = field(default_factory=list)
    blocked: Optional[BlockedIP] = None


class ThreatDetector:

    def __init__(
        self,
        repository: ModerationRepository,
        ip_registry: IPBlockRegistry,
        config: Optional[SecurityConfig] = None,
    ):
        self.repository = repository
        self.ip_registry = ip_registry
        self.config = config or SecurityConfig()
        self._locks = KeyedLock("ip_detect")

    def record_event(self, event: SecurityEvent) -> DetectionResult:
        """
        Persist the event, then evaluate it.
        Same-IP events are serialized so concurrent failed logins produce a
        single brute force threat.
        """
        with self._locks.hold(event.ip_address):
            event = self.repository.insert(event)
            result = DetectionResult(event=event)

            for threat_type, severity, description in self._checks(event):
                threat, alert = self._raise_threat(event, threat_type, severity, description)
                result.threats.append(threat)
                result.alerts.append(alert)

                if threat_type in AUTO_BLOCK_THREATS and result.blocked is None:
                    result.blocked = self.ip_registry.block(
                        event.ip_address,
                        reason=description,
                        duration=self.config.get_int('ip_block_default_hours'),
                    )
                elif threat_type not in AUTO_BLOCK_THREATS:
                    logger.info(f"Threat {threat.id} ({threat_type.value}) from {event.ip_address} left for manual review")

        return result

    def _checks(self, event: SecurityEvent) -> List[Tuple[ThreatType, Severity, str]]:
        hits = []

        if event.event_type == SecurityEventType.FAILED_LOGIN and not self._brute_force_open(event):
            limit = self.config.get_int('failed_login_limit')
            window = self.config.get_int('failed_login_window_minutes')
            failures = self._recent_failed_logins(event, window)
            if failures > limit:
                hits.append((
                    ThreatType.BRUTE_FORCE,
                    Severity.HIGH,
                    f"{failures} failed login attempts from {event.ip_address} in {window} minutes",
                ))

        if event.event_type == SecurityEventType.SUSPICIOUS_ACTIVITY:
            hits.append((
                ThreatType.SUSPICIOUS_ACTIVITY,
                Severity.MEDIUM,
                f"Suspicious activity reported from {event.ip_address}",
            ))

        if is_bot_user_agent(event.user_agent):
            hits.append((
                ThreatType.BOT,
                Severity.MEDIUM,
                f"Automated user agent: {event.user_agent}",
            ))

        return hits

    def _recent_failed_logins(self, event: SecurityEvent, window_minutes: int) -> int:
        """Failed logins from the event's IP in the trailing window, including this one."""
        try:
            return self.repository.count(SecurityEvent, Query(
                equals={'ip_address': event.ip_address, 'event_type': SecurityEventType.FAILED_LOGIN},
                start_date=event.created_at - timedelta(minutes=window_minutes),
                end_date=event.created_at,
            ))
        except PersistenceError as e:
            logger.warning(f"Failed login history unknown for {event.ip_address}, counting 0: {e}")
            MetricsExporter.record_lookup_failure("failed_login_history")
            return 0

    def _brute_force_open(self, event: SecurityEvent) -> bool:
        """An unresolved brute force threat for this IP already covers the burst."""
        try:
            open_threats = self.repository.find(SecurityThreat, Query(
                equals={'source': event.ip_address, 'type': ThreatType.BRUTE_FORCE},
                start_date=event.created_at - timedelta(
                    minutes=self.config.get_int('failed_login_window_minutes')),
            ))
        except PersistenceError as e:
            logger.warning(f"Threat history unknown for {event.ip_address}: {e}")
            MetricsExporter.record_lookup_failure("threat_history")
            return False
        return any(t.status in (ThreatStatus.ACTIVE, ThreatStatus.INVESTIGATING) for t in open_threats)

    def _raise_threat(
        self,
        event: SecurityEvent,
        threat_type: ThreatType,
        severity: Severity,
        description: str,
    ) -> Tuple[SecurityThreat, SecurityAlert]:
        mitigation = "ip_blocked" if threat_type in AUTO_BLOCK_THREATS else None
        threat = self.repository.insert(SecurityThreat(
            type=threat_type,
            severity=severity,
            source=event.ip_address,
            description=description,
            mitigation=mitigation,
            event_id=event.id,
        ))
        alert = self.repository.insert(SecurityAlert(
            threat_id=threat.id,
            user_id=event.user_id,
            ip_address=event.ip_address,
            severity=severity,
            title=f"{threat_type.value.replace('_', ' ').title()} detected",
            description=description,
        ))
        logger.warning(f"Threat {threat_type.value}/{severity.value} from {event.ip_address}: {description}")
        MetricsExporter.record_threat(threat_type.value, severity.value)
        return threat, alert

    # Triage

    def update_alert(
        self,
        alert_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> SecurityAlert:
        def apply() -> SecurityAlert:
            alert = self.repository.require(SecurityAlert, alert_id)
            if alert.status == status:
                return alert
            if status not in ALERT_TRANSITIONS[alert.status]:
                raise InvalidTransitionError(
                    f"Alert {alert_id} cannot move from {alert.status.value} to {status.value}"
                )
            changes = {'status': status}
            if assigned_to is not None:
                changes['assigned_to'] = assigned_to
            if resolution is not None:
                changes['resolution'] = resolution
            return self.repository.update(alert.touched(**changes))

        alert = retry_on_conflict(apply)
        logger.info(f"Alert {alert_id} is now {alert.status.value}")
        return alert

    def update_threat(self, threat_id: str, status: ThreatStatus, mitigation: Optional[str] = None) -> SecurityThreat:
        def apply() -> SecurityThreat:
            threat = self.repository.require(SecurityThreat, threat_id)
            changes = {'status': status}
            if mitigation is not None:
                changes['mitigation'] = mitigation
            return self.repository.update(threat.touched(**changes))

        return retry_on_conflict(apply)

    def get_alerts(self, filters: Optional[SecurityFilters] = None, limit: Optional[int] = None) -> List[SecurityAlert]:
        filters = filters or SecurityFilters()
        query = Query(start_date=filters.start_date, end_date=filters.end_date, limit=limit)
        query.where(
            severity=filters.severity,
            status=filters.status,
            ip_address=filters.ip_address,
            user_id=filters.user_id,
        )
        alerts = self.repository.find(SecurityAlert, query)
        if filters.type is not None:
            threat_ids = {
                t.id for t in self.repository.find(SecurityThreat, Query(equals={'type': filters.type}))
            }
            alerts = [a for a in alerts if a.threat_id in threat_ids]
        return alerts

    def get_threats(self, filters: Optional[SecurityFilters] = None, limit: Optional[int] = None) -> List[SecurityThreat]:
        filters = filters or SecurityFilters()
        query = Query(start_date=filters.start_date, end_date=filters.end_date, limit=limit)
        query.where(type=filters.type, severity=filters.severity, source=filters.ip_address)
        return self.repository.find(SecurityThreat, query)


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    lowered = user_agent.lower()
    return any(marker in lowered for marker in BOT_USER_AGENT_MARKERS)

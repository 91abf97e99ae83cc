"""
Security data models.
Request events, detected threats, triage alerts, rate limits, IP blocks and
the SecurityConfig key/value map.
"""

from datetime import datetime, timedelta
from typing import ClassVar, Optional, Dict, Any, Union

from pydantic import BaseModel, Field, model_validator

from safeguard.models.base import Entity
from safeguard.models.enums import (
    SecurityEventType, Severity, ThreatType, ThreatStatus,
    AlertStatus, RateLimitOutcome, ConfigCategory
)


class SecurityEvent(Entity):
    """
    A request-level event (login, failed login, ...).
    Stored so the detector can look back over recent history.
    """
    collection: ClassVar[str] = "security_events"

    ip_address: str
    user_id: Optional[str] = None
    user_agent: str = ""
    event_type: SecurityEventType
    severity: Severity = Severity.LOW
    details: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _timestamp_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("timestamp") and not data.get("created_at"):
            data = {**data, "created_at": data["timestamp"]}
        return data

    @property
    def timestamp(self) -> datetime:
        return self.created_at


class SecurityThreat(Entity):
    collection: ClassVar[str] = "security_threats"

    type: ThreatType
    severity: Severity
    source: str  # IP address
    target: str = "system"
    description: str = ""
    status: ThreatStatus = ThreatStatus.ACTIVE
    mitigation: Optional[str] = None
    event_id: Optional[str] = None


class SecurityAlert(Entity):
    """Human triage item derived 1:1 from a SecurityThreat."""
    collection: ClassVar[str] = "security_alerts"

    threat_id: str
    rule_id: str = "auto_detection"
    user_id: Optional[str] = None
    ip_address: str
    severity: Severity
    title: str
    description: str = ""
    status: AlertStatus = AlertStatus.ACTIVE
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None


class RateLimitRecord(Entity):
    """One counted request; created_at is the window position."""
    collection: ClassVar[str] = "rate_limits"

    identifier: str
    action: str
    count: int = 1


class RateLimitDecision(BaseModel):
    allowed: bool
    outcome: RateLimitOutcome
    current_count: int = 0
    limit: int
    window_seconds: int


class BlockedIP(Entity):
    """
    Block record for an IP (row id == ip_address).
    `duration` (hours) is advisory; expiry is applied by a separate sweep.
    """
    collection: ClassVar[str] = "blocked_ips"

    ip_address: str
    reason: str = ""
    duration: Optional[int] = None
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _key_by_ip(cls, data: Any) -> Any:
        if isinstance(data, dict) and "ip_address" in data and not data.get("id"):
            data = {**data, "id": data["ip_address"]}
        return data

    def expires_at(self) -> Optional[datetime]:
        if self.duration is None:
            return None
        return self.updated_at + timedelta(hours=self.duration)


ConfigValue = Union[bool, int, float, str]


class SecurityConfigEntry(Entity):
    """A typed key/value setting (row id == key)."""
    collection: ClassVar[str] = "security_config"

    key: str
    value: ConfigValue
    value_type: str  # "bool" | "int" | "float" | "str"
    category: ConfigCategory
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _key_by_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and "key" in data and not data.get("id"):
            data = {**data, "id": data["key"]}
        return data


class SecurityFilters(BaseModel):
    type: Optional[ThreatType] = None
    severity: Optional[Severity] = None
    status: Optional[AlertStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None

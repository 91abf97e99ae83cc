"""
Analytics rollup models returned by the analytics aggregator.
"""

from datetime import datetime
from typing import List, Dict

from pydantic import BaseModel, Field

from safeguard.models.enums import HealthStatus


class CountBucket(BaseModel):
    key: str
    count: int


class ModerationAnalytics(BaseModel):
    total_reports: int = 0
    resolved_reports: int = 0
    pending_reports: int = 0
    auto_moderated_count: int = 0
    auto_moderation_rate: float = 0.0
    average_resolution_time: float = 0.0  # Hours
    resolution_efficiency: int = 100
    top_violation_types: List[CountBucket] = Field(default_factory=list)
    records_by_status: Dict[str, int] = Field(default_factory=dict)
    queue_by_priority: Dict[str, int] = Field(default_factory=dict)
    queue_by_status: Dict[str, int] = Field(default_factory=dict)
    open_queue_size: int = 0
    pending_appeals: int = 0
    actions_by_type: Dict[str, int] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class SecurityAnalytics(BaseModel):
    total_threats: int = 0
    active_threats: int = 0
    threats_by_type: List[CountBucket] = Field(default_factory=list)
    threats_by_severity: List[CountBucket] = Field(default_factory=list)
    alerts_by_status: Dict[str, int] = Field(default_factory=dict)
    blocked_ips: int = 0
    rate_limited_requests: int = 0
    security_score: int = 0
    security_level: str = "poor"
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class ReportAnalytics(BaseModel):
    total_reports: int = 0
    reports_by_category: List[CountBucket] = Field(default_factory=list)
    reports_by_status: List[CountBucket] = Field(default_factory=list)
    top_reporters: List[CountBucket] = Field(default_factory=list)
    resolution_rate: int = 0
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class DashboardSummary(BaseModel):
    """Combined view used by the dashboard API."""
    moderation: ModerationAnalytics
    security: SecurityAnalytics
    reports: ReportAnalytics
    security_health_score: int
    health_status: HealthStatus
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

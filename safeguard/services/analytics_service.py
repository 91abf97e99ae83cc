"""
Analytics Aggregator - read-only rollups over moderation, security and
reporting data.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional

from safeguard.lib.config import SecurityConfig
from safeguard.lib.database import ModerationRepository, Query
from safeguard.models.analytics import (
    CountBucket, DashboardSummary, ModerationAnalytics, ReportAnalytics,
    SecurityAnalytics
)
from safeguard.models.content import ModerationRecord
from safeguard.models.enums import (
    AppealStatus, HealthStatus, QueueStatus, ReportStatus, SubmissionStatus,
    ThreatStatus
)
from safeguard.models.reports import ContentReport, ReportSubmission
from safeguard.models.review import ModerationAction, ModerationQueueEntry
from safeguard.models.security import (
    BlockedIP, RateLimitRecord, SecurityAlert, SecurityThreat
)
from safeguard.models.user import AppealRequest

logger = logging.getLogger(__name__)


def count_buckets(values: Iterable[str], top: Optional[int] = None) -> List[CountBucket]:
    """Counts per distinct value, most common first."""
    return [CountBucket(key=k, count=c) for k, c in Counter(values).most_common(top)]


def security_score(total_threats: int, blocked_ips: int) -> int:
    threat_score = max(0, 100 - total_threats * 2)
    block_score = min(100, blocked_ips * 5)
    return round((threat_score + block_score) / 2)


def security_health_score(total_threats: int, blocked_ips: int, score: int) -> int:
    threat_score = max(0, 100 - total_threats * 2)
    block_score = min(100, blocked_ips * 5)
    return round((threat_score + block_score + score) / 3)


def resolution_efficiency(total: int, resolved: int, average_hours: float) -> int:
    if total == 0:
        return 100
    resolution_rate = resolved / total * 100
    time_score = max(0.0, 100 - average_hours / 24) if average_hours > 0 else 100
    return round((resolution_rate + time_score) / 2)


class AnalyticsService:
    """
    Rollups for the dashboard.
    Every method reads; nothing here writes to the repository.
    """

    # Dashboard thresholds
    QUEUE_WARNING = 50
    QUEUE_CRITICAL = 100
    PENDING_APPEALS_WARNING = 20

    def __init__(self, repository: ModerationRepository, config: Optional[SecurityConfig] = None):
        self.repository = repository
        self.config = config or SecurityConfig()

    def moderation_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ModerationAnalytics:
        window = dict(start_date=start_date, end_date=end_date)
        reports = self.repository.find(ContentReport, Query(**window))
        records = self.repository.find(ModerationRecord, Query(**window))
        queue = self.repository.find(ModerationQueueEntry, Query(**window))
        actions = self.repository.find(ModerationAction, Query(**window))

        resolved = [r for r in reports if r.status == ReportStatus.RESOLVED]
        pending = [r for r in reports if r.status == ReportStatus.PENDING]
        auto_moderated = sum(1 for r in records if not r.manual_review_required)

        durations = [
            (r.updated_at - r.created_at).total_seconds() / 3600
            for r in resolved if r.updated_at > r.created_at
        ]
        average_hours = sum(durations) / len(durations) if durations else 0.0

        open_queue = [e for e in queue if e.status != QueueStatus.RESOLVED]
        pending_appeals = self.repository.count(
            AppealRequest, Query(equals={'status': AppealStatus.PENDING})
        )

        return ModerationAnalytics(
            total_reports=len(reports),
            resolved_reports=len(resolved),
            pending_reports=len(pending),
            auto_moderated_count=auto_moderated,
            auto_moderation_rate=auto_moderated / len(reports) if reports else 0.0,
            average_resolution_time=round(average_hours, 2),
            resolution_efficiency=resolution_efficiency(len(reports), len(resolved), average_hours),
            top_violation_types=count_buckets((r.reason.value for r in reports), top=5),
            records_by_status=dict(Counter(r.status.value for r in records)),
            queue_by_priority=dict(Counter(e.priority.value for e in open_queue)),
            queue_by_status=dict(Counter(e.status.value for e in queue)),
            open_queue_size=len(open_queue),
            pending_appeals=pending_appeals,
            actions_by_type=dict(Counter(a.action_type.value for a in actions)),
        )

    def security_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> SecurityAnalytics:
        window = dict(start_date=start_date, end_date=end_date)
        threats = self.repository.find(SecurityThreat, Query(**window))
        alerts = self.repository.find(SecurityAlert, Query(**window))
        blocked = self.repository.count(BlockedIP, Query(equals={'active': True}))
        rate_limited = sum(r.count for r in self.repository.find(RateLimitRecord, Query(**window)))

        score = security_score(len(threats), blocked)
        return SecurityAnalytics(
            total_threats=len(threats),
            active_threats=sum(1 for t in threats if t.status == ThreatStatus.ACTIVE),
            threats_by_type=count_buckets(t.type.value for t in threats),
            threats_by_severity=count_buckets(t.severity.value for t in threats),
            alerts_by_status=dict(Counter(a.status.value for a in alerts)),
            blocked_ips=blocked,
            rate_limited_requests=rate_limited,
            security_score=score,
            security_level=self.security_level(score),
        )

    def security_level(self, score: int) -> str:
        if score >= self.config.get_int('security_level_good'):
            return "good"
        if score >= self.config.get_int('security_level_fair'):
            return "fair"
        return "poor"

    def report_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ReportAnalytics:
        submissions = self.repository.find(
            ReportSubmission, Query(start_date=start_date, end_date=end_date)
        )
        resolved = sum(1 for s in submissions if s.status == SubmissionStatus.RESOLVED)
        return ReportAnalytics(
            total_reports=len(submissions),
            reports_by_category=count_buckets(s.template_id for s in submissions),
            reports_by_status=count_buckets(s.status.value for s in submissions),
            top_reporters=count_buckets((s.reporter_id for s in submissions), top=10),
            resolution_rate=round(resolved / len(submissions) * 100) if submissions else 0,
        )

    def dashboard(self) -> DashboardSummary:
        moderation = self.moderation_analytics()
        security = self.security_analytics()
        reports = self.report_analytics()
        health_score = security_health_score(
            security.total_threats, security.blocked_ips, security.security_score
        )
        summary = DashboardSummary(
            moderation=moderation,
            security=security,
            reports=reports,
            security_health_score=health_score,
            health_status=self.health_status(moderation, health_score),
            insights=self.insights(moderation, security),
            recommendations=self.recommendations(moderation, security),
        )
        logger.debug(f"Dashboard computed: {summary.health_status.value}")
        return summary

    def health_status(self, moderation: ModerationAnalytics, health_score: int) -> HealthStatus:
        efficiency = moderation.resolution_efficiency
        if moderation.open_queue_size > self.QUEUE_CRITICAL or efficiency < 50 or health_score < 50:
            return HealthStatus.CRITICAL
        if moderation.open_queue_size > self.QUEUE_WARNING or efficiency < 70 or health_score < 70:
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    @staticmethod
    def insights(moderation: ModerationAnalytics, security: SecurityAnalytics) -> List[str]:
        insights = []
        auto_rate = moderation.auto_moderation_rate * 100
        if moderation.total_reports:
            if auto_rate > 80:
                insights.append('High auto-moderation rate indicates effective automated filtering')
            elif auto_rate < 50:
                insights.append('Low auto-moderation rate - consider improving automated filters')
        if security.total_threats > 100:
            insights.append('High threat count - consider strengthening security measures')
        if security.blocked_ips > 50:
            insights.append('Many blocked IPs - consider reviewing blocking criteria')
        return insights or ['No specific insights available']

    def recommendations(self, moderation: ModerationAnalytics, security: SecurityAnalytics) -> List[str]:
        recommendations = []
        if moderation.total_reports and moderation.auto_moderation_rate * 100 < 70:
            recommendations.append('Improve automated moderation by updating content filters')
        if moderation.average_resolution_time > 24:
            recommendations.append('Improve response time by increasing moderator capacity')
        if security.security_score < 70:
            recommendations.append('Enhance security measures to improve overall security score')
        if moderation.open_queue_size > self.QUEUE_WARNING:
            recommendations.append('High moderation queue - consider increasing moderator capacity')
        if moderation.pending_appeals > self.PENDING_APPEALS_WARNING:
            recommendations.append('Many pending appeals - consider faster appeal processing')
        return recommendations or ['Moderation system is performing well']

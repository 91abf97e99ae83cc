"""
Engine composition root - wires the services together.
"""
import logging
import os
import time
from datetime import datetime
from typing import Dict, List, Optional

from safeguard.lib.config import SecurityConfig, configure_logging
from safeguard.lib.database import InMemoryRepository, ModerationRepository, PostgresRepository
from safeguard.lib.kafka_client import MessageBroker
from safeguard.lib.metrics import MetricsExporter
from safeguard.lib.notifications import KafkaDispatcher, NotificationDispatcher
from safeguard.models.content import BehaviorSnapshot, ContentItem, ModerationRecord
from safeguard.models.enums import AppealStatus
from safeguard.models.review import ModerationAction
from safeguard.models.security import RateLimitDecision, SecurityEvent
from safeguard.models.user import AppealRequest, UserModerationStatus
from safeguard.services.analytics_service import AnalyticsService
from safeguard.services.appeal_service import AppealService
from safeguard.services.classifier_service import (
    BehaviorAnalyzer, ImageAnalyzer, PatternClassifier
)
from safeguard.services.ip_registry import IPBlockRegistry
from safeguard.services.moderation_service import ModerationService
from safeguard.services.rate_limiter import RateLimiter
from safeguard.services.reporting_service import ReportingService
from safeguard.services.security_service import DetectionResult, ThreatDetector
from safeguard.services.user_status_service import UserStatusService

logger = logging.getLogger(__name__)


class SafeguardEngine:
    """
    Owns one instance of every service, built from explicitly passed
    collaborators. Nothing is shared through module globals.
    """

    def __init__(
        self,
        repository: Optional[ModerationRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[SecurityConfig] = None,
        image_analyzer: Optional[ImageAnalyzer] = None,
        behavior_analyzer: Optional[BehaviorAnalyzer] = None,
        metrics: Optional[MetricsExporter] = None,
        moderator_ids: Optional[List[str]] = None,
    ):
        self.repository = repository or InMemoryRepository()
        self.config = config or SecurityConfig(self.repository)
        self.dispatcher = dispatcher if self.config.get('notifications_enabled') else None
        self.metrics = metrics

        if dispatcher is not None and self.dispatcher is None:
            logger.info("Notifications disabled by security config")

        self.classifier = PatternClassifier(self.config, image_analyzer, behavior_analyzer)
        self.rate_limiter = RateLimiter(self.repository, self.config)
        self.ip_registry = IPBlockRegistry(self.repository)
        self.threat_detector = ThreatDetector(self.repository, self.ip_registry, self.config)
        self.user_status = UserStatusService(self.repository, self.dispatcher)
        self.moderation = ModerationService(self.repository, self.classifier, self.user_status, self.config)
        self.appeals = AppealService(self.repository, self.user_status, self.dispatcher)
        self.reporting = ReportingService(self.repository, self.dispatcher, self.moderation, moderator_ids)
        self.analytics = AnalyticsService(self.repository, self.config)

        logger.info("Safeguard engine initialized")

    @classmethod
    def from_env(cls) -> "SafeguardEngine":
        """PostgreSQL storage, Kafka notifications and a metrics server from env."""
        repository = PostgresRepository()
        repository.create_schema()
        config = SecurityConfig(repository)
        config.load()
        moderators = [m for m in os.getenv('SAFEGUARD_MODERATORS', '').split(',') if m]
        return cls(
            repository=repository,
            dispatcher=KafkaDispatcher(MessageBroker()),
            config=config,
            metrics=MetricsExporter(port=int(os.getenv('METRICS_PORT', '8000'))),
            moderator_ids=moderators,
        )

    # Content

    @MetricsExporter.track("moderate_content")
    def moderate_content(self, item: ContentItem, behavior: Optional[BehaviorSnapshot] = None) -> ModerationRecord:
        return self.moderation.moderate_content(item, behavior)

    @MetricsExporter.track("take_action")
    def take_action(self, action: ModerationAction) -> ModerationAction:
        return self.moderation.take_action(action)

    # Security

    @MetricsExporter.track("record_event")
    def record_event(self, event: SecurityEvent) -> DetectionResult:
        return self.threat_detector.record_event(event)

    def check_rate_limit(
        self,
        identifier: str,
        action: str,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> RateLimitDecision:
        return self.rate_limiter.check(identifier, action, limit, window_seconds)

    def is_ip_blocked(self, ip_address: str) -> bool:
        return self.ip_registry.is_blocked(ip_address)

    # Users and appeals

    def get_user_status(self, user_id: str) -> UserModerationStatus:
        return self.user_status.get_status(user_id)

    def block_user(self, user_id: str, reason: str, duration: Optional[int] = None) -> ModerationAction:
        return self.user_status.block_user(user_id, reason, duration)

    def unblock_user(self, user_id: str) -> UserModerationStatus:
        return self.user_status.unblock_user(user_id)

    def create_appeal(self, user_id: str, action_id: str, reason: str, evidence: Optional[List[str]] = None) -> AppealRequest:
        return self.appeals.create_appeal(user_id, action_id, reason, evidence)

    def review_appeal(self, appeal_id: str, decision: AppealStatus, reviewer_id: Optional[str] = None,
                      moderator_notes: Optional[str] = None) -> AppealRequest:
        return self.appeals.review_appeal(appeal_id, decision, reviewer_id, moderator_notes)

    # Maintenance

    def run_maintenance(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Expire advisory IP blocks and purge stale rate limit records."""
        now = now or datetime.utcnow()
        expired = self.ip_registry.sweep_expired(now)
        purged = self.rate_limiter.purge_expired(now=now)
        self.moderation.refresh_queue_depth()
        return {"expired_blocks": len(expired), "purged_rate_limits": purged}

    def start(self, interval_seconds: int = 60):
        """Serve metrics and run maintenance sweeps until interrupted."""
        if self.metrics is not None:
            self.metrics.start()
        logger.info("Safeguard maintenance loop started")
        try:
            while True:
                self.run_maintenance()
                time.sleep(interval_seconds)
        except KeyboardInterrupt:
            logger.info("Shutting down safeguard engine...")
            if isinstance(self.repository, PostgresRepository):
                self.repository.close()
            if isinstance(self.dispatcher, KafkaDispatcher):
                self.dispatcher.broker.close()


if __name__ == '__main__':
    configure_logging()
    SafeguardEngine.from_env().start()

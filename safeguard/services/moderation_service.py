"""
Moderation Queue Manager.
Turns classifier output into moderation records and review-queue entries,
and applies moderator actions to content, queue and user status.
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from safeguard.lib.config import SecurityConfig
from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import DuplicateError, InvalidTransitionError, NotFoundError
from safeguard.lib.locks import KeyedLock, retry_on_conflict
from safeguard.lib.metrics import MetricsExporter
from safeguard.models.content import (
    BehaviorSnapshot, ContentFilter, ContentItem, FilterResult, ModerationRecord
)
from safeguard.models.enums import (
    TERMINAL_ACTIONS, ActionType, ModerationStatus, QueueStatus,
    ReportReason, ReviewPriority
)
from safeguard.models.reports import ContentReport
from safeguard.models.review import (
    SYSTEM_MODERATOR, ModerationAction, ModerationFilters, ModerationQueueEntry
)
from safeguard.services.classifier_service import PatternClassifier, keyword_tags
from safeguard.services.user_status_service import UserStatusService

logger = logging.getLogger(__name__)


HIGH_SEVERITY_REASONS = {'violence', 'hate_speech'}

RECORD_STATUS_AFTER = {
    ActionType.APPROVE: ModerationStatus.APPROVED,
    ActionType.REMOVE: ModerationStatus.REJECTED,
    ActionType.SUSPEND: ModerationStatus.REJECTED,
    ActionType.BAN: ModerationStatus.REJECTED,
    ActionType.WARN: ModerationStatus.FLAGGED,
    ActionType.FLAG: ModerationStatus.FLAGGED,
}


class ModerationService:
    """
    Review queue orchestration.
    Invariant: at most one open queue entry per content_id.
    """

    def __init__(
        self,
        repository: ModerationRepository,
        classifier: PatternClassifier,
        user_status: UserStatusService,
        config: Optional[SecurityConfig] = None,
    ):
        self.repository = repository
        self.classifier = classifier
        self.user_status = user_status
        self.config = config or SecurityConfig()
        self._locks = KeyedLock("content")

    # Intake

    def moderate_content(
        self,
        item: ContentItem,
        behavior: Optional[BehaviorSnapshot] = None,
    ) -> ModerationRecord:
        """
        Classify an item, store its record and queue it for review when needed.
        An item already moderated is returned as stored, without re-scoring.
        """
        with self._locks.hold(item.id):
            existing = self.get_record(item.id)
            if existing is not None:
                logger.debug(f"Content {item.id} already moderated")
                return existing

            start_time = time.time()
            filters = self.repository.find(ContentFilter, Query(equals={'enabled': True}))
            result = self.classifier.classify(item, behavior=behavior, filters=filters)
            reasons = list(dict.fromkeys(result.reasons + keyword_tags(item.text)))
            review_required = self.requires_review(result.score, reasons)

            if result.blocked:
                status = ModerationStatus.REJECTED
            elif review_required or result.flagged:
                status = ModerationStatus.FLAGGED
            else:
                status = ModerationStatus.APPROVED

            record = self.repository.insert(ModerationRecord(
                content_id=item.id,
                content_type=item.content_type,
                user_id=item.user_id,
                status=status,
                flagged_reasons=reasons,
                auto_moderation_score=result.score,
                manual_review_required=review_required,
            ))

            if review_required:
                self._enqueue(record)

        MetricsExporter.record_content(self._decision(result), item.content_type, time.time() - start_time)
        for reason in reasons:
            MetricsExporter.record_violation(reason)
        logger.info(f"Content {item.id} moderated: {status.value} score={result.score:.3f} reasons={reasons}")
        return record

    @staticmethod
    def _decision(result: FilterResult) -> str:
        if result.blocked:
            return "blocked"
        if result.flagged:
            return "flagged"
        return "passed"

    def requires_review(self, score: float, reasons: List[str]) -> bool:
        return score > self.config.get_float('manual_review_threshold') or bool(reasons)

    def calc_priority(self, score: float, reasons: List[str]) -> ReviewPriority:
        if score > self.config.get_float('priority_urgent_score') or HIGH_SEVERITY_REASONS & set(reasons):
            return ReviewPriority.URGENT
        if score > self.config.get_float('priority_high_score') or len(reasons) > 2:
            return ReviewPriority.HIGH
        if score > self.config.get_float('priority_medium_score') or reasons:
            return ReviewPriority.MEDIUM
        return ReviewPriority.LOW

    def _enqueue(self, record: ModerationRecord) -> ModerationQueueEntry:
        """Open a queue entry unless one is already open for the content."""
        open_entry = self.get_open_entry(record.content_id)
        if open_entry is not None:
            return open_entry
        try:
            entry = self.repository.insert(ModerationQueueEntry(
                content_id=record.content_id,
                content_type=record.content_type,
                user_id=record.user_id,
                priority=self.calc_priority(record.auto_moderation_score, record.flagged_reasons),
                auto_score=record.auto_moderation_score,
                manual_review_required=True,
            ))
        except DuplicateError:
            # Another process opened it first
            return self.get_open_entry(record.content_id)
        logger.info(f"Queued {record.content_id} for review at {entry.priority.value} priority")
        self.refresh_queue_depth()
        return entry

    # Queue

    def get_record(self, content_id: str) -> Optional[ModerationRecord]:
        records = self.repository.find(ModerationRecord, Query(equals={'content_id': content_id}, limit=1))
        return records[0] if records else None

    def get_open_entry(self, content_id: str) -> Optional[ModerationQueueEntry]:
        entries = self.repository.find(ModerationQueueEntry, Query(
            equals={'content_id': content_id},
            not_equals={'status': QueueStatus.RESOLVED},
            limit=1,
        ))
        return entries[0] if entries else None

    def get_queue(self, filters: Optional[ModerationFilters] = None) -> List[ModerationQueueEntry]:
        """Queue entries, highest priority first, oldest first within a priority."""
        filters = filters or ModerationFilters()
        query = Query(start_date=filters.start_date, end_date=filters.end_date, descending=False)
        query.where(
            content_type=filters.content_type,
            status=filters.status,
            priority=filters.priority,
            user_id=filters.user_id,
            assigned_moderator_id=filters.moderator_id,
        )
        entries = self.repository.find(ModerationQueueEntry, query)
        entries.sort(key=lambda e: (-e.priority.rank, e.created_at))
        if filters.limit is not None:
            entries = entries[:filters.limit]
        return entries

    def assign(self, entry_id: str, moderator_id: str) -> ModerationQueueEntry:
        def apply() -> ModerationQueueEntry:
            entry = self.repository.require(ModerationQueueEntry, entry_id)
            if entry.status == QueueStatus.RESOLVED:
                raise InvalidTransitionError(f"Queue entry {entry_id} is already resolved")
            if entry.status == QueueStatus.IN_REVIEW and entry.assigned_moderator_id == moderator_id:
                return entry
            return self.repository.update(entry.touched(
                status=QueueStatus.IN_REVIEW,
                assigned_moderator_id=moderator_id,
            ))

        entry = retry_on_conflict(apply)
        logger.info(f"Queue entry {entry_id} assigned to {moderator_id}")
        return entry

    def claim_next(self, moderator_id: str) -> Optional[ModerationQueueEntry]:
        """Assign the highest-priority, oldest pending entry to a moderator."""
        for candidate in self.get_queue(ModerationFilters(status=QueueStatus.PENDING)):
            with self._locks.hold(candidate.content_id):
                current = self.repository.get(ModerationQueueEntry, candidate.id)
                if current is None or current.status != QueueStatus.PENDING:
                    continue
                return self.assign(candidate.id, moderator_id)
        return None

    def resolve(self, entry_id: str) -> ModerationQueueEntry:
        """Close an entry. Resolving a resolved entry is a no-op."""
        def apply() -> ModerationQueueEntry:
            entry = self.repository.require(ModerationQueueEntry, entry_id)
            if entry.status == QueueStatus.RESOLVED:
                return entry
            return self.repository.update(entry.touched(
                status=QueueStatus.RESOLVED,
                resolved_at=datetime.utcnow(),
            ))

        entry = retry_on_conflict(apply)
        self.refresh_queue_depth()
        return entry

    def refresh_queue_depth(self) -> Dict[str, int]:
        depth = {p.value: 0 for p in ReviewPriority}
        for entry in self.repository.find(ModerationQueueEntry, Query(not_equals={'status': QueueStatus.RESOLVED})):
            depth[entry.priority.value] += 1
        for priority, count in depth.items():
            MetricsExporter.update_queue_depth(priority, count)
        return depth

    # Actions

    def take_action(self, action: ModerationAction) -> ModerationAction:
        """
        Record a moderator decision and apply it.
        The target user is the action's user_id, the content id for user
        content, or the author of the moderated content.
        """
        target_user = self._target_user(action)
        if target_user is not None and action.user_id != target_user:
            action = action.model_copy(update={'user_id': target_user})
        action = self.repository.insert(action)
        source = "system" if action.moderator_id == SYSTEM_MODERATOR else "moderator"
        MetricsExporter.record_action(action.action_type.value, source)

        if target_user is not None:
            self.user_status.apply(target_user, action.action_type)

        with self._locks.hold(action.content_id):
            record = self.get_record(action.content_id)
            if record is not None:
                self._update_record(record, action)
            if action.action_type in TERMINAL_ACTIONS:
                entry = self.get_open_entry(action.content_id)
                if entry is not None:
                    self.resolve(entry.id)

        logger.info(
            f"Action {action.action_type.value} on {action.content_id} by {action.moderator_id}"
            f" (user={target_user})"
        )
        return action

    def _target_user(self, action: ModerationAction) -> Optional[str]:
        if action.user_id:
            return action.user_id
        if action.content_type == "user":
            return action.content_id
        record = self.get_record(action.content_id)
        return record.user_id if record is not None else None

    def _update_record(self, record: ModerationRecord, action: ModerationAction) -> ModerationRecord:
        status = RECORD_STATUS_AFTER[action.action_type]

        def apply() -> ModerationRecord:
            current = self.repository.require(ModerationRecord, record.id)
            return self.repository.update(current.touched(
                status=status,
                moderator_notes=action.reason or current.moderator_notes,
            ))

        return retry_on_conflict(apply)

    def get_actions(self, content_id: Optional[str] = None, user_id: Optional[str] = None) -> List[ModerationAction]:
        query = Query().where(content_id=content_id, user_id=user_id)
        return self.repository.find(ModerationAction, query)

    # Reports

    def report_content(
        self,
        reporter_id: str,
        content_id: str,
        content_type: str,
        reason: ReportReason,
        description: str = "",
        reported_user_id: Optional[str] = None,
        evidence_urls: Optional[List[str]] = None,
    ) -> ContentReport:
        """
        Store a user report and flag the content for review.
        A report for content never seen before creates its record.
        """
        with self._locks.hold(content_id):
            record = self.get_record(content_id)
            if record is None:
                if reported_user_id is None:
                    raise NotFoundError(ModerationRecord.collection, content_id)
                record = self.repository.insert(ModerationRecord(
                    content_id=content_id,
                    content_type=content_type,
                    user_id=reported_user_id,
                    status=ModerationStatus.FLAGGED,
                    flagged_reasons=[reason.value],
                    manual_review_required=True,
                ))
            else:
                def apply() -> ModerationRecord:
                    current = self.repository.require(ModerationRecord, record.id)
                    status = current.status
                    if status in (ModerationStatus.PENDING, ModerationStatus.APPROVED):
                        status = ModerationStatus.FLAGGED
                    return self.repository.update(current.touched(
                        status=status,
                        flagged_reasons=list(dict.fromkeys(current.flagged_reasons + [reason.value])),
                        manual_review_required=True,
                    ))
                record = retry_on_conflict(apply)

            report = self.repository.insert(ContentReport(
                reporter_id=reporter_id,
                reported_user_id=reported_user_id or record.user_id,
                content_id=content_id,
                content_type=content_type,
                reason=reason,
                description=description,
                evidence_urls=evidence_urls or [],
                priority=self.calc_priority(record.auto_moderation_score, record.flagged_reasons),
            ))
            self._enqueue(record)

        logger.info(f"Content {content_id} reported by {reporter_id} for {reason.value}")
        return report

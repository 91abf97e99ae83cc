"""
Reporting Service.
Report categories and templates, templated report submissions, and the
moderator/reporter notifications around them.
"""

import logging
from typing import Dict, List, Optional

from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import InvalidTransitionError
from safeguard.lib.locks import retry_on_conflict
from safeguard.lib.notifications import NotificationDispatcher
from safeguard.models.enums import (
    ActionType, CategoryAutoAction, NotificationType, ReportStatus,
    SubmissionStatus
)
from safeguard.models.reports import (
    ContentReport, ReportCategory, ReportFilters, ReportSubmission, ReportTemplate
)
from safeguard.models.review import SYSTEM_MODERATOR, ModerationAction
from safeguard.services.moderation_service import ModerationService

logger = logging.getLogger(__name__)


SUBMISSION_TRANSITIONS = {
    SubmissionStatus.DRAFT: {SubmissionStatus.SUBMITTED},
    SubmissionStatus.SUBMITTED: {
        SubmissionStatus.UNDER_REVIEW, SubmissionStatus.RESOLVED,
        SubmissionStatus.REJECTED, SubmissionStatus.DISMISSED,
    },
    SubmissionStatus.UNDER_REVIEW: {
        SubmissionStatus.RESOLVED, SubmissionStatus.REJECTED, SubmissionStatus.DISMISSED,
    },
    SubmissionStatus.RESOLVED: set(),
    SubmissionStatus.REJECTED: set(),
    SubmissionStatus.DISMISSED: set(),
}

REPORT_TRANSITIONS = {
    ReportStatus.PENDING: {ReportStatus.REVIEWING, ReportStatus.RESOLVED, ReportStatus.DISMISSED},
    ReportStatus.REVIEWING: {ReportStatus.RESOLVED, ReportStatus.DISMISSED},
    ReportStatus.RESOLVED: set(),
    ReportStatus.DISMISSED: set(),
}

OPEN_SUBMISSIONS = {SubmissionStatus.SUBMITTED, SubmissionStatus.UNDER_REVIEW}

AUTO_ACTIONS = {
    CategoryAutoAction.FLAG: ActionType.FLAG,
    CategoryAutoAction.REMOVE: ActionType.REMOVE,
    CategoryAutoAction.SUSPEND: ActionType.SUSPEND,
}


class ReportingService:

    def __init__(
        self,
        repository: ModerationRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        moderation: Optional[ModerationService] = None,
        moderator_ids: Optional[List[str]] = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.moderation = moderation
        self.moderator_ids = list(moderator_ids or [])

    # Categories and templates

    def create_category(self, category: ReportCategory) -> ReportCategory:
        category = self.repository.insert(category)
        logger.info(f"Report category {category.name} created")
        return category

    def get_categories(self, include_disabled: bool = False) -> List[ReportCategory]:
        query = Query(order_by='name', descending=False)
        if not include_disabled:
            query.where(enabled=True)
        return self.repository.find(ReportCategory, query)

    def create_template(self, template: ReportTemplate) -> ReportTemplate:
        self.repository.require(ReportCategory, template.category_id)
        template = self.repository.insert(template)
        logger.info(f"Report template {template.name} created")
        return template

    def get_templates(self, category_id: Optional[str] = None) -> List[ReportTemplate]:
        return self.repository.find(
            ReportTemplate, Query(order_by='name', descending=False).where(category_id=category_id)
        )

    # Submissions

    def submit_report(self, submission: ReportSubmission) -> ReportSubmission:
        """
        Validate a submission against its template and file it.
        Missing required fields raise ValueError.
        """
        template = self.repository.require(ReportTemplate, submission.template_id)
        missing = [f for f in template.required_fields if submission.data.get(f) in (None, "")]
        if missing:
            raise ValueError(f"Report is missing required fields: {', '.join(missing)}")

        changes = {'status': SubmissionStatus.SUBMITTED, 'priority': template.priority}
        if template.auto_assign and submission.assigned_moderator_id is None:
            changes['assigned_moderator_id'] = self._least_loaded_moderator()
        submission = self.repository.insert(submission.model_copy(update=changes))
        logger.info(f"Report {submission.id} submitted by {submission.reporter_id}")

        self._apply_category_action(template, submission)
        self._notify_moderators(submission)
        return submission

    def _least_loaded_moderator(self) -> Optional[str]:
        if not self.moderator_ids:
            return None
        load: Dict[str, int] = {m: 0 for m in self.moderator_ids}
        for queued in self.repository.find(ReportSubmission):
            if queued.assigned_moderator_id in load and queued.status in OPEN_SUBMISSIONS:
                load[queued.assigned_moderator_id] += 1
        return min(self.moderator_ids, key=lambda m: load[m])

    def _apply_category_action(self, template: ReportTemplate, submission: ReportSubmission) -> None:
        category = self.repository.get(ReportCategory, template.category_id)
        if category is None or not category.enabled or self.moderation is None:
            return
        action_type = AUTO_ACTIONS.get(category.auto_action)
        if action_type is None:
            return
        self.moderation.take_action(ModerationAction(
            moderator_id=SYSTEM_MODERATOR,
            content_id=submission.content_id,
            content_type=submission.content_type,
            action_type=action_type,
            reason=f"Automatic {category.auto_action.value} for report category {category.name}",
            severity=category.severity,
        ))

    def get_submissions(self, filters: Optional[ReportFilters] = None) -> List[ReportSubmission]:
        filters = filters or ReportFilters()
        query = Query(start_date=filters.start_date, end_date=filters.end_date)
        query.where(
            template_id=filters.category,
            status=filters.status,
            priority=filters.priority,
            reporter_id=filters.reporter_id,
            assigned_moderator_id=filters.moderator_id,
            content_type=filters.content_type,
        )
        return self.repository.find(ReportSubmission, query)

    def update_status(
        self,
        submission_id: str,
        status: SubmissionStatus,
        resolution: Optional[str] = None,
        moderator_id: Optional[str] = None,
    ) -> ReportSubmission:
        changed = {"value": False}

        def apply() -> ReportSubmission:
            changed["value"] = False
            submission = self.repository.require(ReportSubmission, submission_id)
            if submission.status == status:
                return submission
            if status not in SUBMISSION_TRANSITIONS[submission.status]:
                raise InvalidTransitionError(
                    f"Report {submission_id} cannot move from {submission.status.value} to {status.value}"
                )
            changes = {'status': status}
            if resolution is not None:
                changes['resolution'] = resolution
            if moderator_id is not None:
                changes['assigned_moderator_id'] = moderator_id
            changed["value"] = True
            return self.repository.update(submission.touched(**changes))

        submission = retry_on_conflict(apply)
        logger.info(f"Report {submission_id} is now {submission.status.value}")
        if changed["value"]:
            self._notify_reporter(submission)
        return submission

    # Content reports

    def get_content_reports(
        self,
        status: Optional[ReportStatus] = None,
        content_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ContentReport]:
        return self.repository.find(
            ContentReport, Query(limit=limit).where(status=status, content_id=content_id)
        )

    def update_content_report(
        self,
        report_id: str,
        status: ReportStatus,
        resolution: Optional[str] = None,
        moderator_id: Optional[str] = None,
    ) -> ContentReport:
        def apply() -> ContentReport:
            report = self.repository.require(ContentReport, report_id)
            if report.status == status:
                return report
            if status not in REPORT_TRANSITIONS[report.status]:
                raise InvalidTransitionError(
                    f"Content report {report_id} cannot move from {report.status.value} to {status.value}"
                )
            changes = {'status': status}
            if resolution is not None:
                changes['resolution'] = resolution
            if moderator_id is not None:
                changes['assigned_moderator_id'] = moderator_id
            return self.repository.update(report.touched(**changes))

        return retry_on_conflict(apply)

    # Notifications

    def _notify_moderators(self, submission: ReportSubmission) -> None:
        if self.dispatcher is None:
            return
        recipients = (
            [submission.assigned_moderator_id] if submission.assigned_moderator_id
            else self.moderator_ids
        )
        for moderator_id in recipients:
            self.dispatcher.send(
                moderator_id,
                NotificationType.REPORT_SUBMITTED,
                "New Report Submitted",
                "A new report has been submitted and requires review.",
                {"report_id": submission.id},
            )

    def _notify_reporter(self, submission: ReportSubmission) -> None:
        if self.dispatcher is None:
            return
        if submission.status == SubmissionStatus.RESOLVED:
            notification_type = NotificationType.REPORT_RESOLVED
        elif submission.status in (SubmissionStatus.REJECTED, SubmissionStatus.DISMISSED):
            notification_type = NotificationType.REPORT_REJECTED
        else:
            return
        self.dispatcher.send(
            submission.reporter_id,
            notification_type,
            "Report Status Update",
            f"Your report has been {submission.status.value}.",
            {"report_id": submission.id},
        )


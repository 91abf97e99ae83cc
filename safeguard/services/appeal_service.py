"""
Appeal Workflow.
pending -> under_review -> approved | denied. Approval reverses the user's
status through the explicit unblock before the decision is written.
"""

import logging
from typing import List, Optional

from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import (
    CompensationFailedError, InvalidTransitionError, PersistenceError
)
from safeguard.lib.locks import KeyedLock, retry_on_conflict
from safeguard.lib.metrics import MetricsExporter
from safeguard.lib.notifications import NotificationDispatcher
from safeguard.models.enums import AppealStatus, NotificationType, UserAppealStatus
from safeguard.models.review import ModerationAction
from safeguard.models.user import AppealRequest
from safeguard.services.user_status_service import UserStatusService

logger = logging.getLogger(__name__)


class AppealService:

    UNBLOCK_ATTEMPTS = 5

    def __init__(
        self,
        repository: ModerationRepository,
        user_status: UserStatusService,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.repository = repository
        self.user_status = user_status
        self.dispatcher = dispatcher
        self._locks = KeyedLock("appeal")

    def create_appeal(
        self,
        user_id: str,
        action_id: str,
        reason: str,
        evidence: Optional[List[str]] = None,
    ) -> AppealRequest:
        action = self.repository.require(ModerationAction, action_id)
        if action.user_id is not None and action.user_id != user_id:
            raise InvalidTransitionError(f"Action {action_id} was not taken against user {user_id}")

        appeal = self.repository.insert(AppealRequest(
            user_id=user_id,
            action_id=action_id,
            reason=reason,
            evidence=evidence or [],
        ))
        self.user_status.set_appeal_status(user_id, UserAppealStatus.PENDING)
        logger.info(f"Appeal {appeal.id} filed by {user_id} against action {action_id}")
        self._notify(appeal, NotificationType.APPEAL_SUBMITTED, "Appeal received",
                     "Your appeal has been submitted and will be reviewed")
        return appeal

    def start_review(self, appeal_id: str, reviewer_id: str) -> AppealRequest:
        with self._locks.hold(appeal_id):
            def apply() -> AppealRequest:
                appeal = self.repository.require(AppealRequest, appeal_id)
                if appeal.status == AppealStatus.UNDER_REVIEW:
                    return appeal
                if appeal.status != AppealStatus.PENDING:
                    raise InvalidTransitionError(
                        f"Appeal {appeal_id} is {appeal.status.value}, cannot start review"
                    )
                return self.repository.update(appeal.touched(
                    status=AppealStatus.UNDER_REVIEW, reviewer_id=reviewer_id
                ))

            return retry_on_conflict(apply)

    def review_appeal(
        self,
        appeal_id: str,
        decision: AppealStatus,
        reviewer_id: Optional[str] = None,
        moderator_notes: Optional[str] = None,
    ) -> AppealRequest:
        """
        Decide an appeal. Repeating the stored decision is a no-op; changing
        a decided appeal is rejected.
        """
        if decision not in (AppealStatus.APPROVED, AppealStatus.DENIED):
            raise InvalidTransitionError(f"{decision.value} is not an appeal decision")

        with self._locks.hold(appeal_id):
            appeal = self.repository.require(AppealRequest, appeal_id)
            if appeal.status == decision:
                return appeal
            if appeal.is_decided:
                raise InvalidTransitionError(f"Appeal {appeal_id} was already {appeal.status.value}")

            if decision == AppealStatus.APPROVED:
                self._reverse(appeal)

            def apply() -> AppealRequest:
                current = self.repository.require(AppealRequest, appeal_id)
                return self.repository.update(current.touched(
                    status=decision,
                    reviewer_id=reviewer_id or current.reviewer_id,
                    moderator_notes=moderator_notes,
                ))

            appeal = retry_on_conflict(apply)

        user_appeal_status = (
            UserAppealStatus.APPROVED if decision == AppealStatus.APPROVED else UserAppealStatus.DENIED
        )
        self.user_status.set_appeal_status(appeal.user_id, user_appeal_status)
        MetricsExporter.record_appeal(decision.value)
        logger.info(f"Appeal {appeal_id} {decision.value}")

        if decision == AppealStatus.APPROVED:
            self._notify(appeal, NotificationType.APPEAL_APPROVED, "Appeal approved",
                         "Your appeal was approved and your account has been restored")
        else:
            self._notify(appeal, NotificationType.APPEAL_DENIED, "Appeal denied",
                         "Your appeal was reviewed and the original action stands")
        return appeal

    def _reverse(self, appeal: AppealRequest) -> None:
        try:
            retry_on_conflict(
                lambda: self.user_status.unblock_user(appeal.user_id),
                attempts=self.UNBLOCK_ATTEMPTS,
            )
        except PersistenceError as e:
            logger.error(f"Compensating unblock for appeal {appeal.id} (user {appeal.user_id}) failed: {e}")
            MetricsExporter.record_compensation_failure()
            raise CompensationFailedError(
                f"Could not restore user {appeal.user_id} for appeal {appeal.id}"
            ) from e

    def get_appeals(self, user_id: Optional[str] = None, status: Optional[AppealStatus] = None) -> List[AppealRequest]:
        return self.repository.find(AppealRequest, Query().where(user_id=user_id, status=status))

    def _notify(self, appeal: AppealRequest, notification_type: NotificationType, title: str, message: str) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.send(
            appeal.user_id, notification_type, title, message,
            {"appeal_id": appeal.id, "action_id": appeal.action_id},
        )

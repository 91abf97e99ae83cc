"""
User Status State Machine.
Moderation actions move a user between active, warned, suspended and banned;
appeals and operators can reverse that with an explicit unblock.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from safeguard.lib.database import ModerationRepository
from safeguard.lib.errors import DuplicateError
from safeguard.lib.locks import KeyedLock, retry_on_conflict
from safeguard.lib.metrics import MetricsExporter
from safeguard.lib.notifications import NotificationDispatcher
from safeguard.models.enums import (
    ActionType, NotificationType, Severity, UserAppealStatus, UserStatus
)
from safeguard.models.review import SYSTEM_MODERATOR, ModerationAction
from safeguard.models.user import UserModerationStatus

logger = logging.getLogger(__name__)


def apply_action(current: UserModerationStatus, action_type: ActionType, at: Optional[datetime] = None) -> UserModerationStatus:
    """
    Pure transition for one action. Returns `current` unchanged for actions
    that do not move the user (flag, remove).
    """
    at = at or datetime.utcnow()
    if action_type == ActionType.WARN:
        return current.touched(
            status=UserStatus.WARNED,
            warnings=current.warnings + 1,
            updated_at=at,
        )
    if action_type == ActionType.SUSPEND:
        return current.touched(
            status=UserStatus.SUSPENDED,
            violations=current.violations + 1,
            restrictions=["posting"],
            last_violation=at,
            updated_at=at,
        )
    if action_type == ActionType.BAN:
        return current.touched(
            status=UserStatus.BANNED,
            violations=current.violations + 1,
            restrictions=["all"],
            last_violation=at,
            updated_at=at,
        )
    if action_type == ActionType.APPROVE:
        return current.touched(status=UserStatus.ACTIVE, restrictions=[], updated_at=at)
    return current


class UserStatusService:
    """Only writer of UserModerationStatus rows."""

    def __init__(self, repository: ModerationRepository, dispatcher: Optional[NotificationDispatcher] = None):
        self.repository = repository
        self.dispatcher = dispatcher
        self._locks = KeyedLock("user")

    def get_status(self, user_id: str) -> UserModerationStatus:
        """Stored status, or a zero baseline (not persisted) for unknown users."""
        status = self.repository.get(UserModerationStatus, user_id)
        return status or UserModerationStatus(user_id=user_id)

    def _load_or_create(self, user_id: str) -> UserModerationStatus:
        status = self.repository.get(UserModerationStatus, user_id)
        if status is not None:
            return status
        try:
            return self.repository.insert(UserModerationStatus(user_id=user_id))
        except DuplicateError:
            return self.repository.require(UserModerationStatus, user_id)

    def _write(self, user_id: str, change) -> Tuple[UserModerationStatus, UserModerationStatus]:
        """
        Serialize per user and retry lost conditional writes.
        Returns the row as read and the row as stored; they are the same
        object when the change was a no-op.
        """
        def apply() -> Tuple[UserModerationStatus, UserModerationStatus]:
            current = self._load_or_create(user_id)
            updated = change(current)
            if updated is current:
                return current, current
            return current, self.repository.update(updated)

        with self._locks.hold(user_id):
            return retry_on_conflict(apply)

    def apply(self, user_id: str, action_type: ActionType) -> UserModerationStatus:
        before, status = self._write(user_id, lambda current: apply_action(current, action_type))
        if status.status != before.status:
            logger.info(f"User {user_id}: {before.status.value} -> {status.status.value} ({action_type.value})")
            MetricsExporter.record_user_transition(status.status.value)
            self._notify_change(status, action_type.value)
        return status

    def unblock_user(self, user_id: str) -> UserModerationStatus:
        """Back to active with no restrictions; counters are kept. Idempotent."""
        def change(current: UserModerationStatus) -> UserModerationStatus:
            if current.status == UserStatus.ACTIVE and not current.restrictions:
                return current
            return current.touched(status=UserStatus.ACTIVE, restrictions=[])

        before, status = self._write(user_id, change)
        if status is not before:
            logger.info(f"User {user_id} unblocked")
            MetricsExporter.record_user_transition(UserStatus.ACTIVE.value)
        return status

    def restrict_user(self, user_id: str, restrictions: List[str]) -> UserModerationStatus:
        """Remove named capabilities without a full suspension."""
        def change(current: UserModerationStatus) -> UserModerationStatus:
            merged = list(dict.fromkeys(current.restrictions + restrictions))
            if current.status == UserStatus.RESTRICTED and merged == current.restrictions:
                return current
            return current.touched(status=UserStatus.RESTRICTED, restrictions=merged)

        before, status = self._write(user_id, change)
        if status is not before:
            logger.info(f"User {user_id} restricted: {status.restrictions}")
            if before.status != status.status:
                MetricsExporter.record_user_transition(UserStatus.RESTRICTED.value)
            self._notify_change(status, "restrict")
        return status

    def block_user(self, user_id: str, reason: str, duration: Optional[int] = None) -> ModerationAction:
        """Ban a user directly through a system action."""
        action = self.repository.insert(ModerationAction(
            moderator_id=SYSTEM_MODERATOR,
            content_id=user_id,
            content_type="user",
            user_id=user_id,
            action_type=ActionType.BAN,
            reason=reason,
            duration=duration,
            severity=Severity.HIGH,
        ))
        MetricsExporter.record_action(ActionType.BAN.value, SYSTEM_MODERATOR)
        self.apply(user_id, ActionType.BAN)
        return action

    def set_appeal_status(self, user_id: str, appeal_status: UserAppealStatus) -> UserModerationStatus:
        _, status = self._write(user_id, lambda current: (
            current if current.appeal_status == appeal_status
            else current.touched(appeal_status=appeal_status)
        ))
        return status

    def _notify_change(self, status: UserModerationStatus, cause: str) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.send(
            status.user_id,
            NotificationType.STATUS_CHANGED,
            "Account status updated",
            f"Your account status is now {status.status.value}",
            {"status": status.status.value, "cause": cause, "restrictions": status.restrictions},
        )

"""
User moderation status and appeal data models.
"""

from datetime import datetime
from typing import ClassVar, Optional, List, Any

from pydantic import Field, model_validator

from safeguard.models.base import Entity
from safeguard.models.enums import UserStatus, UserAppealStatus, AppealStatus


class UserModerationStatus(Entity):
    """
    Moderation standing of one user (row id == user_id).
    Only the user status state machine writes this.
    """
    collection: ClassVar[str] = "user_moderation_status"

    user_id: str
    status: UserStatus = UserStatus.ACTIVE
    warnings: int = 0
    violations: int = 0
    restrictions: List[str] = Field(default_factory=list)
    last_violation: Optional[datetime] = None
    appeal_status: UserAppealStatus = UserAppealStatus.NONE

    @model_validator(mode="before")
    @classmethod
    def _key_by_user(cls, data: Any) -> Any:
        if isinstance(data, dict) and "user_id" in data and not data.get("id"):
            data = {**data, "id": data["user_id"]}
        return data

    def can(self, capability: str) -> bool:
        """Whether the user still holds a capability such as "posting"."""
        if "all" in self.restrictions:
            return False
        return capability not in self.restrictions


class AppealRequest(Entity):
    """
    User request to reverse a moderation action.
    Approval triggers the explicit unblock on the user's status.
    """
    collection: ClassVar[str] = "appeal_requests"

    user_id: str
    action_id: str
    reason: str
    evidence: List[str] = Field(default_factory=list)
    status: AppealStatus = AppealStatus.PENDING
    moderator_notes: Optional[str] = None
    reviewer_id: Optional[str] = None

    @property
    def is_decided(self) -> bool:
        return self.status in (AppealStatus.APPROVED, AppealStatus.DENIED)

"""
Human review data models.
The moderation queue and the append-only action log.
"""

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from safeguard.models.base import Entity
from safeguard.models.enums import (
    ReviewPriority, QueueStatus, ActionType, Severity
)


SYSTEM_MODERATOR = "system"


class ModerationQueueEntry(Entity):
    """
    Review task for flagged content.
    At most one non-resolved entry exists per content_id.
    """
    collection: ClassVar[str] = "moderation_queue"

    content_id: str
    content_type: str
    user_id: str
    priority: ReviewPriority = ReviewPriority.LOW
    status: QueueStatus = QueueStatus.PENDING
    auto_score: float = Field(ge=0.0, le=1.0, default=0.0)
    manual_review_required: bool = True
    assigned_moderator_id: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status != QueueStatus.RESOLVED


class ModerationAction(Entity):
    """
    A decision taken on content or a user.
    `moderator_id` is "system" for automatic actions.
    """
    collection: ClassVar[str] = "moderation_actions"

    moderator_id: str = SYSTEM_MODERATOR
    content_id: str
    content_type: str
    user_id: Optional[str] = None  # Target user; resolved from the content when omitted
    action_type: ActionType
    reason: str = ""
    duration: Optional[int] = None  # Hours, for temporary actions
    severity: Severity = Severity.MEDIUM


class ModerationFilters(BaseModel):
    """Filters for listing the queue."""
    content_type: Optional[str] = None
    status: Optional[QueueStatus] = None
    priority: Optional[ReviewPriority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    moderator_id: Optional[str] = None
    user_id: Optional[str] = None
    limit: Optional[int] = None

"""
Reporting data models.
User-filed content reports, report categories/templates and notifications.
"""

from datetime import datetime
from typing import ClassVar, Optional, List, Dict, Any

from pydantic import BaseModel, Field

from safeguard.models.base import Entity
from safeguard.models.enums import (
    ReportReason, ReportStatus, SubmissionStatus, ReviewPriority,
    Severity, CategoryAutoAction, NotificationType
)


class ContentReport(Entity):
    """A user report against a piece of content."""
    collection: ClassVar[str] = "content_reports"

    reporter_id: str
    reported_user_id: Optional[str] = None
    content_id: str
    content_type: str
    reason: ReportReason
    description: str = ""
    evidence_urls: List[str] = Field(default_factory=list)
    status: ReportStatus = ReportStatus.PENDING
    priority: ReviewPriority = ReviewPriority.MEDIUM
    assigned_moderator_id: Optional[str] = None
    resolution: Optional[str] = None


class ReportCategory(Entity):
    collection: ClassVar[str] = "report_categories"

    name: str
    description: str = ""
    severity: Severity = Severity.MEDIUM
    auto_action: CategoryAutoAction = CategoryAutoAction.NONE
    enabled: bool = True


class ReportTemplate(Entity):
    """Form definition a ReportSubmission is filled against."""
    collection: ClassVar[str] = "report_templates"

    name: str
    category_id: str
    description: str = ""
    required_fields: List[str] = Field(default_factory=list)
    optional_fields: List[str] = Field(default_factory=list)
    auto_assign: bool = False
    priority: ReviewPriority = ReviewPriority.MEDIUM


class ReportSubmission(Entity):
    """A filled-in report template."""
    collection: ClassVar[str] = "report_submissions"

    reporter_id: str
    template_id: str
    content_id: str
    content_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.DRAFT
    priority: ReviewPriority = ReviewPriority.MEDIUM
    assigned_moderator_id: Optional[str] = None
    resolution: Optional[str] = None


class ReportFilters(BaseModel):
    category: Optional[str] = None  # template_id
    status: Optional[SubmissionStatus] = None
    priority: Optional[ReviewPriority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    reporter_id: Optional[str] = None
    moderator_id: Optional[str] = None
    content_type: Optional[str] = None


class Notification(Entity):
    """A message delivered to a user or moderator."""
    collection: ClassVar[str] = "report_notifications"

    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False

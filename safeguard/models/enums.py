"""
Enumeration definitions for the Safeguard moderation and security engine.
Content and queue states, user status, security threat taxonomy.
"""

from enum import Enum


class ModerationStatus(str, Enum):
    """Status of a classified content item."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"


class QueueStatus(str, Enum):
    """Lifecycle of a human review queue entry."""
    PENDING = "pending"           # Awaiting a moderator
    IN_REVIEW = "in_review"       # Assigned to a moderator
    RESOLVED = "resolved"         # Closed by a terminal action


class ReviewPriority(str, Enum):
    """Priority tiers for the human review queue."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ReviewPriority.LOW: 1,
    ReviewPriority.MEDIUM: 2,
    ReviewPriority.HIGH: 3,
    ReviewPriority.URGENT: 4,
}


class Severity(str, Enum):
    """Severity shared by actions, filters, threats and alerts."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionType(str, Enum):
    """Moderation actions a moderator (or the system) can take."""
    APPROVE = "approve"
    FLAG = "flag"
    REMOVE = "remove"
    WARN = "warn"
    SUSPEND = "suspend"
    BAN = "ban"


# Actions that close the review queue entry for a content item
TERMINAL_ACTIONS = frozenset({
    ActionType.APPROVE,
    ActionType.REMOVE,
    ActionType.WARN,
    ActionType.SUSPEND,
    ActionType.BAN,
})


class UserStatus(str, Enum):
    """User moderation state."""
    ACTIVE = "active"
    WARNED = "warned"
    SUSPENDED = "suspended"
    BANNED = "banned"
    RESTRICTED = "restricted"


class AppealStatus(str, Enum):
    """Appeal lifecycle. APPROVED and DENIED are terminal."""
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    DENIED = "denied"


class UserAppealStatus(str, Enum):
    """Appeal state mirrored onto the user status row."""
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ReportReason(str, Enum):
    """Reasons a user can give when reporting content."""
    SPAM = "spam"
    HARASSMENT = "harassment"
    INAPPROPRIATE = "inappropriate"
    FAKE = "fake"
    VIOLENCE = "violence"
    HATE_SPEECH = "hate_speech"
    OTHER = "other"


class ReportStatus(str, Enum):
    """Status of a simple content report."""
    PENDING = "pending"
    REVIEWING = "reviewing"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class SubmissionStatus(str, Enum):
    """Status of a template-driven report submission."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    DISMISSED = "dismissed"


class CategoryAutoAction(str, Enum):
    """Automatic action configured on a report category."""
    NONE = "none"
    FLAG = "flag"
    REMOVE = "remove"
    SUSPEND = "suspend"


class FilterType(str, Enum):
    """What a custom content filter inspects."""
    TEXT = "text"
    IMAGE = "image"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"
    BEHAVIOR = "behavior"


class FilterAction(str, Enum):
    """What a custom content filter does on match."""
    BLOCK = "block"
    FLAG = "flag"
    REPLACE = "replace"
    ALLOW = "allow"


class SecurityEventType(str, Enum):
    """Request events fed to the threat detector."""
    LOGIN = "login"
    LOGOUT = "logout"
    FAILED_LOGIN = "failed_login"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DATA_ACCESS = "data_access"
    CONTENT_CREATION = "content_creation"


class ThreatType(str, Enum):
    """Security threat taxonomy."""
    SPAM = "spam"
    BOT = "bot"
    MALWARE = "malware"
    PHISHING = "phishing"
    DDOS = "ddos"
    BRUTE_FORCE = "brute_force"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


# Threat types mitigated by blocking the source IP
AUTO_BLOCK_THREATS = frozenset({ThreatType.BRUTE_FORCE, ThreatType.BOT})


class ThreatStatus(str, Enum):
    ACTIVE = "active"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class RateLimitOutcome(str, Enum):
    """
    Outcome of a rate limit check.
    UNKNOWN means the check could not be evaluated and the request was
    allowed through (fail-open).
    """
    ALLOWED = "allowed"
    DENIED = "denied"
    UNKNOWN = "unknown"


class ConfigCategory(str, Enum):
    """Categories of SecurityConfig entries."""
    AUTHENTICATION = "authentication"
    RATE_LIMITING = "rate_limiting"
    CONTENT_FILTERING = "content_filtering"
    MONITORING = "monitoring"
    NOTIFICATIONS = "notifications"


class NotificationType(str, Enum):
    """Kinds of messages sent through the notification dispatcher."""
    REPORT_SUBMITTED = "report_submitted"
    REPORT_RESOLVED = "report_resolved"
    REPORT_REJECTED = "report_rejected"
    STATUS_CHANGED = "status_changed"
    APPEAL_SUBMITTED = "appeal_submitted"
    APPEAL_APPROVED = "appeal_approved"
    APPEAL_DENIED = "appeal_denied"


class HealthStatus(str, Enum):
    """Overall dashboard health."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

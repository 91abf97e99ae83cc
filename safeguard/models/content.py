"""
Content, filter and moderation record data models.
Pydantic models for type safety and validation.
"""

from typing import ClassVar, Optional, List, Dict, Any

from pydantic import BaseModel, Field

from safeguard.models.base import Entity
from safeguard.models.enums import (
    ModerationStatus, FilterType, FilterAction, Severity
)


class ContentItem(BaseModel):
    """
    A piece of user content handed to the engine for classification.
    Transient: the engine persists the ModerationRecord, not the item.
    """
    id: str
    content_type: str
    user_id: str
    text: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BehaviorSnapshot(BaseModel):
    """Per-user posting behaviour supplied by the caller."""
    posts_per_minute: float = 0.0
    repetitive_content: float = Field(ge=0.0, le=1.0, default=0.0)
    spam_score: float = Field(ge=0.0, le=1.0, default=0.0)


class ContentFilter(Entity):
    """
    Operator-defined filter applied on top of the built-in pattern families.
    `pattern` is a case-insensitive substring unless `is_regex` is set.
    """
    collection: ClassVar[str] = "content_filters"

    name: str
    type: FilterType = FilterType.TEXT
    pattern: str
    is_regex: bool = False
    action: FilterAction = FilterAction.FLAG
    severity: Severity = Severity.MEDIUM
    enabled: bool = True
    description: str = ""


class FilterResult(BaseModel):
    """Outcome of the pattern classifier."""
    passed: bool = True
    blocked: bool = False
    flagged: bool = False
    score: float = Field(ge=0.0, le=1.0, default=0.0)
    reasons: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    family_scores: Dict[str, float] = Field(default_factory=dict)

    def add_reason(self, reason: str, suggestion: Optional[str] = None) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)
        if suggestion and suggestion not in self.suggestions:
            self.suggestions.append(suggestion)

    def block(self) -> None:
        self.blocked = True
        self.passed = False

    def merge(self, other: "FilterResult") -> None:
        """Fold an image/behaviour sub-check result into this one."""
        if other.blocked:
            self.block()
        if other.flagged:
            self.flagged = True
        for reason in other.reasons:
            self.add_reason(reason)
        for suggestion in other.suggestions:
            if suggestion not in self.suggestions:
                self.suggestions.append(suggestion)


class ModerationRecord(Entity):
    """
    Moderation state for one content item.
    Created once per content_id; only moderation actions change it afterwards.
    """
    collection: ClassVar[str] = "content_moderation"

    content_id: str
    content_type: str
    user_id: str
    status: ModerationStatus = ModerationStatus.PENDING
    flagged_reasons: List[str] = Field(default_factory=list)
    auto_moderation_score: float = Field(ge=0.0, le=1.0, default=0.0)
    manual_review_required: bool = False
    moderator_notes: Optional[str] = None

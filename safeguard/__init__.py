"""
Safeguard - content moderation and security threat decision engine

This package scores user content and request events and drives the
moderation workflow around them:
- PatternClassifier: rule-based content scoring
- SafeguardEngine: wires classifier, review queue, user status, threat
  detection, rate limiting, appeals and analytics together

Usage:
    from safeguard import SafeguardEngine, ContentItem

    engine = SafeguardEngine()
    record = engine.moderate_content(
        ContentItem(id="post-1", content_type="post", user_id="u1", text="hello")
    )
"""

from safeguard.engine import SafeguardEngine
from safeguard.models.content import BehaviorSnapshot, ContentItem
from safeguard.models.review import ModerationAction
from safeguard.models.security import SecurityEvent
from safeguard.services.classifier_service import PatternClassifier

__all__ = [
    'SafeguardEngine',
    'PatternClassifier',
    'ContentItem',
    'BehaviorSnapshot',
    'ModerationAction',
    'SecurityEvent',
]

"""
Pattern Classifier - rule-based content scoring.
Scores text against four pattern families plus URL, capitalization and
repetition heuristics, then folds in image and behaviour checks.
Pure: no storage access, never raises on malformed input.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Iterable, List, Optional

from safeguard.lib.config import SecurityConfig
from safeguard.models.content import (
    BehaviorSnapshot, ContentFilter, ContentItem, FilterResult
)
from safeguard.models.enums import FilterAction, FilterType, Severity

logger = logging.getLogger(__name__)


SPAM_PATTERNS = [
    r'(?:buy|sell|purchase|order|discount|offer|deal|sale|promo|promotion)',
    r'(?:click|link|url|website|visit|check|out)',
    r'(?:free|money|cash|earn|income|profit|revenue)',
    r'(?:win|winner|prize|reward|bonus|gift)',
    r'(?:limited|time|urgent|act|now|today|immediately)',
    r'(?:guaranteed|promise|satisfaction|refund|return)',
]

HARASSMENT_PATTERNS = [
    r'(?:hate|stupid|idiot|moron|dumb|retard|fool)',
    r'(?:kill|die|death|murder|suicide|harm)',
    r'(?:threat|threaten|warning|consequence)',
    r'(?:harass|bully|intimidate|scare)',
    r'(?:discriminate|racist|sexist|homophobic)',
]

INAPPROPRIATE_PATTERNS = [
    r'(?:nude|naked|sex|sexual|porn|pornography)',
    r'(?:drug|alcohol|drunk|high|stoned)',
    r'(?:violence|fight|attack|assault|abuse)',
    r'(?:weapon|gun|knife|bomb|explosive)',
    r'(?:illegal|crime|criminal|theft|fraud)',
]

FAKE_PATTERNS = [
    r'(?:fake|scam|fraud|phishing|malware)',
    r'(?:clickbait|misleading|false|lie|deceive)',
    r'(?:bot|automated|spam|mass|bulk)',
    r'(?:impersonate|pretend|fake|identity)',
]

URL_PATTERNS = [
    r'https?://[^\s]+',
    r'www\.[^\s]+',
    r'[a-zA-Z0-9-]+\.[a-zA-Z]{2,}',
]

EMAIL_PATTERNS = [
    r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}',
]

PHONE_PATTERNS = [
    r'(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}',
    r'(?:\+?[1-9]\d{1,14})',
]

SHORTENER_DOMAINS = ['bit.ly', 'tinyurl.com', 'short.link', 'goo.gl']
EXECUTABLE_EXTENSIONS = ['.exe', '.bat', '.cmd', '.scr', '.pif']

# Substring -> reason tag
KEYWORD_TAGS = [
    ('spam', 'spam'),
    ('hate', 'hate_speech'),
    ('harassment', 'harassment'),
    ('violence', 'violence'),
]

REPLACEABLE_WORDS = ['spam', 'scam', 'fake', 'hate', 'violence']

SEVERITY_WEIGHTS: Dict[Severity, float] = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.8,
    Severity.MEDIUM: 0.5,
    Severity.LOW: 0.2,
}

# family -> (threshold, reason tag, suggestion)
FAMILY_THRESHOLDS = {
    'spam': (0.5, 'spam', 'Review content for promotional language'),
    'harassment': (0.3, 'harassment', 'Review content for inappropriate language'),
    'inappropriate': (0.3, 'inappropriate', 'Review content for inappropriate material'),
    'fake': (0.4, 'fake', 'Verify content authenticity'),
}


def _compile(patterns: Iterable[str]) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


_SPAM = _compile(SPAM_PATTERNS)
_HARASSMENT = _compile(HARASSMENT_PATTERNS)
_INAPPROPRIATE = _compile(INAPPROPRIATE_PATTERNS)
_FAKE = _compile(FAKE_PATTERNS)
_URLS = [re.compile(p) for p in URL_PATTERNS]
_EMAILS = [re.compile(p) for p in EMAIL_PATTERNS]
_PHONES = [re.compile(p) for p in PHONE_PATTERNS]

_FAMILIES = {
    'spam': _SPAM,
    'harassment': _HARASSMENT,
    'inappropriate': _INAPPROPRIATE,
    'fake': _FAKE,
}


def family_score(text: str, patterns: List[re.Pattern]) -> float:
    """Fraction of a family's patterns that match the text."""
    if not patterns:
        return 0.0
    matches = sum(1 for p in patterns if p.search(text))
    return matches / len(patterns)


def repetition_score(text: str) -> float:
    """Distinct words longer than 3 chars seen more than once, over total words."""
    words = text.lower().split()
    if not words:
        return 0.0
    counts = Counter(w for w in words if len(w) > 3)
    repeated = sum(1 for c in counts.values() if c > 1)
    return repeated / len(words)


def caps_ratio(text: str) -> float:
    if not text:
        return 0.0
    return sum(1 for c in text if 'A' <= c <= 'Z') / len(text)


def keyword_tags(text: Optional[str]) -> List[str]:
    """Coarse reason tags from plain keywords; used for queue priority."""
    if not text:
        return []
    lowered = text.lower()
    return [tag for keyword, tag in KEYWORD_TAGS if keyword in lowered]


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def extract_urls(text: str) -> List[str]:
    return _unique(m for p in _URLS for m in p.findall(text or ''))


def extract_emails(text: str) -> List[str]:
    return _unique(m for p in _EMAILS for m in p.findall(text or ''))


def extract_phones(text: str) -> List[str]:
    return _unique(m for p in _PHONES for m in p.findall(text or ''))


def sanitize_text(text: Optional[str]) -> str:
    """Collapse whitespace, runs of punctuation and repeated capitals."""
    if not text:
        return ''
    sanitized = re.sub(r'\s+', ' ', text).strip()
    sanitized = re.sub(r'!{3,}', '!!!', sanitized)
    sanitized = re.sub(r'\?{3,}', '???', sanitized)
    sanitized = re.sub(r'\.{3,}', '...', sanitized)
    sanitized = re.sub(r'([A-Z])\1{2,}', r'\1\1', sanitized)
    return sanitized


def replace_inappropriate_content(text: str, replacement: str = '[FILTERED]') -> str:
    filtered = text
    for word in REPLACEABLE_WORDS:
        filtered = re.sub(rf'\b{word}\b', replacement, filtered, flags=re.IGNORECASE)
    return filtered


def mask_sensitive_content(text: str) -> str:
    masked = _EMAILS[0].sub('[EMAIL]', text)
    masked = _PHONES[0].sub('[PHONE]', masked)
    masked = _URLS[0].sub('[URL]', masked)
    return masked


def risk_level(score: float) -> Severity:
    if score >= 0.8:
        return Severity.CRITICAL
    if score >= 0.6:
        return Severity.HIGH
    if score >= 0.3:
        return Severity.MEDIUM
    return Severity.LOW


def recommendations(score: float) -> List[str]:
    level = risk_level(score)
    if level == Severity.CRITICAL:
        return ['Content should be blocked immediately', 'Review for policy violations']
    if level == Severity.HIGH:
        return ['Content requires manual review', 'Consider flagging for moderation']
    if level == Severity.MEDIUM:
        return ['Monitor content for further issues', 'Consider automated monitoring']
    return ['Content appears safe', 'Continue normal monitoring']


class ImageAnalyzer(ABC):
    """Scores image content; the result is added to the text score."""

    @abstractmethod
    def score(self, image_urls: List[str]) -> float:
        pass


class BehaviorAnalyzer(ABC):
    """Scores a user's recent behaviour; the result is added to the text score."""

    @abstractmethod
    def score(self, user_id: str, snapshot: Optional[BehaviorSnapshot]) -> float:
        pass


class NoOpImageAnalyzer(ImageAnalyzer):
    def score(self, image_urls: List[str]) -> float:
        return 0.0


class NoOpBehaviorAnalyzer(BehaviorAnalyzer):
    def score(self, user_id: str, snapshot: Optional[BehaviorSnapshot]) -> float:
        return 0.0


class PatternClassifier:
    """
    Rule-based classifier.

    The final score is `total / max` over the pattern families, repetition
    and every matching custom filter (URL and caps penalties add to the total
    only), plus the pluggable analyzer scores, clamped to [0, 1].
    """

    def __init__(
        self,
        config: Optional[SecurityConfig] = None,
        image_analyzer: Optional[ImageAnalyzer] = None,
        behavior_analyzer: Optional[BehaviorAnalyzer] = None,
    ):
        self.config = config or SecurityConfig()
        self.image_analyzer = image_analyzer or NoOpImageAnalyzer()
        self.behavior_analyzer = behavior_analyzer or NoOpBehaviorAnalyzer()

    def classify(
        self,
        item: ContentItem,
        behavior: Optional[BehaviorSnapshot] = None,
        filters: Optional[List[ContentFilter]] = None,
    ) -> FilterResult:
        """Score one content item. Disabled filters are ignored."""
        enabled = [f for f in (filters or []) if f.enabled]
        result = self.analyze_text(item.text or '', enabled)

        if item.images:
            result.merge(self.analyze_images(item.images, enabled))
        if behavior is not None:
            result.merge(self.analyze_behavior(behavior))

        extra = self.image_analyzer.score(item.images) + self.behavior_analyzer.score(item.user_id, behavior)
        if extra:
            result.score = min(1.0, max(0.0, result.score + extra))
            self._apply_thresholds(result)

        logger.debug(
            f"Classified {item.id}: score={result.score:.3f} "
            f"blocked={result.blocked} flagged={result.flagged} reasons={result.reasons}"
        )
        return result

    def analyze_text(self, text: str, filters: Optional[List[ContentFilter]] = None) -> FilterResult:
        result = FilterResult()
        if not text or not text.strip():
            return result

        total = 0.0
        maximum = 0

        for family, patterns in _FAMILIES.items():
            score = family_score(text, patterns)
            result.family_scores[family] = score
            total += score
            maximum += 1
            threshold, tag, suggestion = FAMILY_THRESHOLDS[family]
            if score > threshold:
                result.add_reason(tag, suggestion)

        url_count = len(_URLS[0].findall(text))
        if url_count > self.config.get_int('url_limit'):
            total += self.config.get_float('url_penalty')
            result.add_reason('excessive_urls', 'Limit number of URLs in content')

        if (len(text) > self.config.get_int('caps_min_length')
                and caps_ratio(text) > self.config.get_float('caps_ratio_threshold')):
            total += self.config.get_float('caps_penalty')
            result.add_reason('excessive_caps', 'Avoid excessive use of capital letters')

        repetition = repetition_score(text)
        result.family_scores['repetition'] = repetition
        total += repetition
        maximum += 1
        if repetition > self.config.get_float('repetition_threshold'):
            result.add_reason('repetitive_content', 'Avoid repetitive content')

        for content_filter in filters or []:
            targets = self._filter_targets(content_filter.type, text)
            if targets is None or not self._matches(content_filter, targets):
                continue
            total += SEVERITY_WEIGHTS[content_filter.severity]
            maximum += 1
            self._apply_filter_action(result, content_filter)

        result.score = min(1.0, max(0.0, total / maximum)) if maximum else 0.0
        self._apply_thresholds(result)
        return result

    def analyze_images(self, image_urls: List[str], filters: Optional[List[ContentFilter]] = None) -> FilterResult:
        result = FilterResult()
        if not image_urls:
            return result

        if len(image_urls) > self.config.get_int('max_images'):
            result.flagged = True
            result.add_reason('excessive_images', 'Limit number of images in content')

        if any(domain in url for url in image_urls for domain in SHORTENER_DOMAINS):
            result.flagged = True
            result.add_reason('suspicious_image_urls', 'Use direct image URLs instead of shortened links')

        if any(ext in url.lower() for url in image_urls for ext in EXECUTABLE_EXTENSIONS):
            result.block()
            result.add_reason('inappropriate_file_types', 'Only use image files (jpg, png, gif, etc.)')

        for content_filter in filters or []:
            if content_filter.type == FilterType.IMAGE and self._matches(content_filter, image_urls):
                self._apply_filter_action(result, content_filter)
        return result

    def analyze_behavior(self, snapshot: BehaviorSnapshot) -> FilterResult:
        result = FilterResult()

        if snapshot.posts_per_minute > self.config.get_float('max_posts_per_minute'):
            result.flagged = True
            result.add_reason('rapid_posting', 'Slow down posting frequency')

        if snapshot.repetitive_content > self.config.get_float('repetitive_content_threshold'):
            result.flagged = True
            result.add_reason('repetitive_behavior', 'Vary content to avoid repetition')

        if snapshot.spam_score > self.config.get_float('behavior_spam_threshold'):
            result.block()
            result.add_reason('spam_behavior', 'Review posting patterns')

        return result

    def _apply_thresholds(self, result: FilterResult) -> None:
        if result.score > self.config.get_float('block_threshold'):
            result.block()
        elif result.score > self.config.get_float('flag_threshold'):
            result.flagged = True

    @staticmethod
    def _apply_filter_action(result: FilterResult, content_filter: ContentFilter) -> None:
        if content_filter.action == FilterAction.BLOCK:
            result.block()
        elif content_filter.action == FilterAction.FLAG:
            result.flagged = True
        suggestion = None
        if content_filter.action == FilterAction.REPLACE:
            suggestion = f"Replace text matching filter '{content_filter.name}'"
        result.add_reason(content_filter.description or content_filter.name, suggestion)

    @staticmethod
    def _matches(content_filter: ContentFilter, values: List[str]) -> bool:
        if not content_filter.is_regex:
            needle = content_filter.pattern.lower()
            return any(needle in value.lower() for value in values)
        try:
            pattern = re.compile(content_filter.pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Skipping filter {content_filter.name} with invalid pattern: {e}")
            return False
        return any(pattern.search(value) for value in values)

    @staticmethod
    def _filter_targets(filter_type: FilterType, text: str) -> Optional[List[str]]:
        """Values a text-side filter is matched against; None for image/behaviour filters."""
        if filter_type == FilterType.TEXT:
            return [text]
        if filter_type == FilterType.URL:
            return extract_urls(text)
        if filter_type == FilterType.EMAIL:
            return extract_emails(text)
        if filter_type == FilterType.PHONE:
            return extract_phones(text)
        return None

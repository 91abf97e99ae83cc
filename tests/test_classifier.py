"""Tests for the pattern classifier and text utilities."""

import pytest

from safeguard.models.content import BehaviorSnapshot, ContentFilter, ContentItem
from safeguard.models.enums import FilterAction, FilterType, Severity
from safeguard.services.classifier_service import (
    SPAM_PATTERNS, ImageAnalyzer, NoOpBehaviorAnalyzer, NoOpImageAnalyzer,
    PatternClassifier, extract_emails, extract_urls, keyword_tags,
    mask_sensitive_content, recommendations, replace_inappropriate_content,
    repetition_score, risk_level, sanitize_text
)


class FixedImageAnalyzer(ImageAnalyzer):
    def __init__(self, value):
        self.value = value

    def score(self, image_urls):
        return self.value


def item(text=None, images=None):
    return ContentItem(id="c1", content_type="post", user_id="u1", text=text, images=images or [])


def test_empty_text_passes_with_zero_score():
    for text in ("", "   ", None):
        result = PatternClassifier().classify(item(text))
        assert result.score == 0
        assert result.passed
        assert not result.blocked
        assert not result.flagged


def test_single_spam_pattern_scores_one_sixth_of_family():
    result = PatternClassifier().classify(item("discount"))

    assert result.family_scores["spam"] == pytest.approx(1 / len(SPAM_PATTERNS))
    # Four pattern families plus repetition make up the denominator
    assert result.score == pytest.approx((1 / len(SPAM_PATTERNS)) / 5)
    assert result.passed
    assert not result.flagged


def test_score_above_block_threshold_blocks():
    classifier = PatternClassifier(image_analyzer=FixedImageAnalyzer(0.75))
    result = classifier.classify(item("hello there"))

    assert result.score == pytest.approx(0.75)
    assert result.blocked
    assert not result.passed


def test_score_in_flag_band_flags_without_blocking():
    classifier = PatternClassifier(image_analyzer=FixedImageAnalyzer(0.5))
    result = classifier.classify(item("hello there"))

    assert result.flagged
    assert not result.blocked
    assert result.passed


def test_score_at_flag_threshold_is_not_flagged():
    classifier = PatternClassifier(image_analyzer=FixedImageAnalyzer(0.4))
    result = classifier.classify(item("hello there"))

    assert not result.flagged


def test_noop_analyzers_score_zero():
    assert NoOpImageAnalyzer().score(["a.png"]) == 0.0
    assert NoOpBehaviorAnalyzer().score("u1", BehaviorSnapshot(spam_score=1.0)) == 0.0


def test_family_threshold_adds_reason_tag_without_flagging():
    result = PatternClassifier().classify(item("you stupid idiot, I will kill you"))

    assert "harassment" in result.reasons
    assert result.family_scores["harassment"] == pytest.approx(0.4)
    assert not result.flagged


def test_excessive_caps_and_urls_are_tagged():
    shouting = PatternClassifier().classify(item("THIS IS ALL SHOUTING TEXT"))
    assert "excessive_caps" in shouting.reasons

    links = " ".join(f"https://example.com/{i}" for i in range(4))
    linked = PatternClassifier().classify(item(links))
    assert "excessive_urls" in linked.reasons


def test_repetition_counts_distinct_repeated_long_words():
    assert repetition_score("spam spam spam eggs") == pytest.approx(1 / 4)
    assert repetition_score("a a a a") == 0


def test_custom_block_filter_forces_block():
    content_filter = ContentFilter(
        name="banned", pattern="forbidden", action=FilterAction.BLOCK,
        severity=Severity.LOW, description="Banned phrase",
    )
    result = PatternClassifier().classify(item("this is forbidden"), filters=[content_filter])

    assert result.blocked
    assert "Banned phrase" in result.reasons


def test_custom_flag_filter_forces_flag():
    content_filter = ContentFilter(name="watch", pattern=r"w[a4]tch", is_regex=True, action=FilterAction.FLAG)
    result = PatternClassifier().classify(item("W4TCH this"), filters=[content_filter])

    assert result.flagged
    assert "watch" in result.reasons


def test_matching_filters_raise_the_score():
    filters = [
        ContentFilter(name=f"f{i}", pattern="xyzzy", action=FilterAction.ALLOW, severity=Severity.CRITICAL)
        for i in range(20)
    ]
    result = PatternClassifier().classify(item("xyzzy"), filters=filters)

    # 20 / (5 + 20)
    assert result.score == pytest.approx(0.8)
    assert result.blocked


def test_disabled_and_invalid_filters_are_ignored():
    filters = [
        ContentFilter(name="off", pattern="hello", action=FilterAction.BLOCK, enabled=False),
        ContentFilter(name="broken", pattern="([", is_regex=True, action=FilterAction.BLOCK),
    ]
    result = PatternClassifier().classify(item("hello there"), filters=filters)

    assert not result.blocked
    assert result.passed


def test_email_filter_matches_extracted_addresses():
    content_filter = ContentFilter(
        name="no-contact", type=FilterType.EMAIL, pattern="@example.com", action=FilterAction.FLAG,
    )
    result = PatternClassifier().classify(item("write to bob@example.com"), filters=[content_filter])

    assert result.flagged


def test_image_checks():
    classifier = PatternClassifier()

    executable = classifier.classify(item("", images=["http://cdn.test/setup.exe"]))
    assert executable.blocked
    assert "inappropriate_file_types" in executable.reasons

    shortened = classifier.classify(item("", images=["https://bit.ly/abc"]))
    assert shortened.flagged
    assert not shortened.blocked

    many = classifier.classify(item("", images=[f"https://cdn.test/{i}.png" for i in range(11)]))
    assert many.flagged
    assert "excessive_images" in many.reasons


def test_behaviour_checks():
    classifier = PatternClassifier()

    spammy = classifier.classify(item("hello there"), behavior=BehaviorSnapshot(spam_score=0.9))
    assert spammy.blocked

    rapid = classifier.classify(item("hello there"), behavior=BehaviorSnapshot(posts_per_minute=6))
    assert rapid.flagged
    assert "rapid_posting" in rapid.reasons

    calm = classifier.classify(item("hello there"), behavior=BehaviorSnapshot(posts_per_minute=5))
    assert not calm.flagged


def test_keyword_tags():
    assert keyword_tags("I hate violence") == ["hate_speech", "violence"]
    assert keyword_tags("Stop the SPAM") == ["spam"]
    assert keyword_tags(None) == []


def test_text_utilities():
    assert sanitize_text("Hello    world!!!!!") == "Hello world!!!"
    assert sanitize_text("NOOOOO") == "NOO"
    assert mask_sensitive_content("mail me at a@b.com") == "mail me at [EMAIL]"
    assert replace_inappropriate_content("this is spam") == "this is [FILTERED]"
    assert "https://x.com/a" in extract_urls("see https://x.com/a")
    assert extract_emails("a@b.com and a@b.com") == ["a@b.com"]


def test_risk_levels_and_recommendations():
    assert risk_level(0.85) == Severity.CRITICAL
    assert risk_level(0.65) == Severity.HIGH
    assert risk_level(0.3) == Severity.MEDIUM
    assert risk_level(0.1) == Severity.LOW
    assert recommendations(0.1) == ["Content appears safe", "Continue normal monitoring"]

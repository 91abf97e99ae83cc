"""Tests for report categories, templates and submissions."""

import pytest

from safeguard.lib.errors import InvalidTransitionError, NotFoundError
from safeguard.models.enums import (
    CategoryAutoAction, ModerationStatus, NotificationType, ReportReason,
    ReportStatus, ReviewPriority, SubmissionStatus, UserStatus
)
from safeguard.models.reports import (
    ReportCategory, ReportFilters, ReportSubmission, ReportTemplate
)


@pytest.fixture
def reporting(engine):
    return engine.reporting


def make_template(reporting, auto_action=CategoryAutoAction.NONE, **overrides):
    category = reporting.create_category(ReportCategory(name="abuse", auto_action=auto_action))
    fields = dict(
        name="Abuse report",
        category_id=category.id,
        required_fields=["details"],
        priority=ReviewPriority.HIGH,
    )
    fields.update(overrides)
    return reporting.create_template(ReportTemplate(**fields))


def submission(template, content_id="post-1", reporter_id="reporter", **data):
    return ReportSubmission(
        reporter_id=reporter_id,
        template_id=template.id,
        content_id=content_id,
        content_type="post",
        data=data,
    )


def test_categories_hide_disabled(reporting):
    reporting.create_category(ReportCategory(name="spam"))
    reporting.create_category(ReportCategory(name="legacy", enabled=False))

    assert [c.name for c in reporting.get_categories()] == ["spam"]
    assert len(reporting.get_categories(include_disabled=True)) == 2


def test_template_requires_category(reporting):
    with pytest.raises(NotFoundError):
        reporting.create_template(ReportTemplate(name="orphan", category_id="missing"))


def test_missing_required_fields_are_rejected(reporting):
    template = make_template(reporting)

    with pytest.raises(ValueError, match="details"):
        reporting.submit_report(submission(template))
    with pytest.raises(ValueError):
        reporting.submit_report(submission(template, details=""))


def test_submission_takes_template_priority(reporting):
    template = make_template(reporting)

    filed = reporting.submit_report(submission(template, details="spam links"))

    assert filed.status == SubmissionStatus.SUBMITTED
    assert filed.priority == ReviewPriority.HIGH
    assert filed.assigned_moderator_id is None


def test_auto_assign_balances_moderators(reporting):
    template = make_template(reporting, auto_assign=True)

    assigned = [
        reporting.submit_report(submission(template, content_id=f"post-{i}", details="x")).assigned_moderator_id
        for i in range(3)
    ]

    assert assigned == ["mod-a", "mod-b", "mod-a"]


def test_moderators_are_notified(reporting, dispatcher):
    template = make_template(reporting)
    reporting.submit_report(submission(template, details="x"))

    assert [n.type for n in dispatcher.for_user("mod-a")] == [NotificationType.REPORT_SUBMITTED]
    assert [n.type for n in dispatcher.for_user("mod-b")] == [NotificationType.REPORT_SUBMITTED]


def test_assigned_moderator_alone_is_notified(reporting, dispatcher):
    template = make_template(reporting, auto_assign=True)
    reporting.submit_report(submission(template, details="x"))

    assert len(dispatcher.for_user("mod-a")) == 1
    assert dispatcher.for_user("mod-b") == []


def test_category_auto_action_applies_through_moderation(engine, reporting, make_item):
    record = engine.moderate_content(make_item("hello there", user_id="author", content_id="post-1"))
    template = make_template(reporting, auto_action=CategoryAutoAction.SUSPEND)

    reporting.submit_report(submission(template, content_id=record.content_id, details="x"))

    assert engine.get_user_status("author").status == UserStatus.SUSPENDED
    assert engine.moderation.get_record(record.content_id).status == ModerationStatus.REJECTED
    actions = engine.moderation.get_actions(content_id=record.content_id)
    assert [a.moderator_id for a in actions] == ["system"]


def test_resolution_notifies_reporter_once(reporting, dispatcher):
    template = make_template(reporting)
    filed = reporting.submit_report(submission(template, details="x"))

    reporting.update_status(filed.id, SubmissionStatus.UNDER_REVIEW, moderator_id="mod-a")
    resolved = reporting.update_status(filed.id, SubmissionStatus.RESOLVED, resolution="removed")
    reporting.update_status(filed.id, SubmissionStatus.RESOLVED)

    assert resolved.assigned_moderator_id == "mod-a"
    assert resolved.resolution == "removed"
    assert [n.type for n in dispatcher.for_user("reporter")] == [NotificationType.REPORT_RESOLVED]


def test_dismissal_notifies_rejection(reporting, dispatcher):
    template = make_template(reporting)
    filed = reporting.submit_report(submission(template, details="x"))

    reporting.update_status(filed.id, SubmissionStatus.DISMISSED)

    assert [n.type for n in dispatcher.for_user("reporter")] == [NotificationType.REPORT_REJECTED]


def test_closed_report_cannot_reopen(reporting):
    template = make_template(reporting)
    filed = reporting.submit_report(submission(template, details="x"))
    reporting.update_status(filed.id, SubmissionStatus.RESOLVED)

    with pytest.raises(InvalidTransitionError):
        reporting.update_status(filed.id, SubmissionStatus.UNDER_REVIEW)


def test_submission_filters(reporting):
    template = make_template(reporting)
    reporting.submit_report(submission(template, reporter_id="alice", details="x"))
    other = reporting.submit_report(submission(template, reporter_id="bob", details="x"))
    reporting.update_status(other.id, SubmissionStatus.RESOLVED)

    assert [s.reporter_id for s in reporting.get_submissions(ReportFilters(reporter_id="alice"))] == ["alice"]
    resolved = reporting.get_submissions(ReportFilters(status=SubmissionStatus.RESOLVED))
    assert [s.id for s in resolved] == [other.id]
    assert len(reporting.get_submissions(ReportFilters(category=template.id))) == 2


def test_content_report_lifecycle(engine, reporting, make_item):
    record = engine.moderate_content(make_item("hello there", user_id="author"))
    report = engine.moderation.report_content("reporter", record.content_id, "post", ReportReason.SPAM)

    pending = reporting.get_content_reports(status=ReportStatus.PENDING)
    assert [r.id for r in pending] == [report.id]

    reviewing = reporting.update_content_report(report.id, ReportStatus.REVIEWING, moderator_id="mod-a")
    assert reviewing.assigned_moderator_id == "mod-a"

    done = reporting.update_content_report(report.id, ReportStatus.RESOLVED, resolution="warned")
    assert done.resolution == "warned"
    with pytest.raises(InvalidTransitionError):
        reporting.update_content_report(report.id, ReportStatus.PENDING)

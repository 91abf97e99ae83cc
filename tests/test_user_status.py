"""Tests for the user status state machine."""

from concurrent.futures import ThreadPoolExecutor

from prometheus_client import REGISTRY

from safeguard.models.enums import ActionType, NotificationType, UserStatus
from safeguard.models.review import ModerationAction
from safeguard.models.user import UserModerationStatus
from safeguard.services.user_status_service import apply_action


def test_warn_warn_ban_sequence(engine):
    for action_type in (ActionType.WARN, ActionType.WARN, ActionType.BAN):
        engine.user_status.apply("u1", action_type)

    status = engine.get_user_status("u1")
    assert status.warnings == 2
    assert status.violations == 1
    assert status.status == UserStatus.BANNED
    assert status.restrictions == ["all"]
    assert status.last_violation is not None


def test_suspend_restricts_posting(engine):
    status = engine.user_status.apply("u1", ActionType.SUSPEND)

    assert status.status == UserStatus.SUSPENDED
    assert status.restrictions == ["posting"]
    assert not status.can("posting")
    assert status.can("commenting")


def test_approve_clears_restrictions_but_keeps_counters(engine):
    engine.user_status.apply("u1", ActionType.SUSPEND)
    status = engine.user_status.apply("u1", ActionType.APPROVE)

    assert status.status == UserStatus.ACTIVE
    assert status.restrictions == []
    assert status.violations == 1


def test_flag_and_remove_leave_user_unchanged(engine):
    engine.user_status.apply("u1", ActionType.WARN)
    before = engine.get_user_status("u1")

    engine.user_status.apply("u1", ActionType.FLAG)
    after = engine.user_status.apply("u1", ActionType.REMOVE)

    assert after.status == UserStatus.WARNED
    assert after.warnings == 1
    assert after.version == before.version


def test_unknown_user_has_zero_baseline(engine):
    status = engine.get_user_status("nobody")

    assert status.status == UserStatus.ACTIVE
    assert status.warnings == 0
    assert status.violations == 0


def test_apply_action_is_pure():
    current = UserModerationStatus(user_id="u1")
    updated = apply_action(current, ActionType.BAN)

    assert current.status == UserStatus.ACTIVE
    assert current.restrictions == []
    assert updated.status == UserStatus.BANNED
    assert apply_action(current, ActionType.FLAG) is current


def test_unblock_is_idempotent_and_keeps_counters(engine):
    engine.user_status.apply("u1", ActionType.WARN)
    engine.user_status.apply("u1", ActionType.BAN)

    first = engine.unblock_user("u1")
    second = engine.unblock_user("u1")

    assert first.status == UserStatus.ACTIVE
    assert first.restrictions == []
    assert second.version == first.version
    assert second.warnings == 1
    assert second.violations == 1


def test_restrict_user_merges_capabilities(engine):
    engine.user_status.restrict_user("u1", ["posting"])
    status = engine.user_status.restrict_user("u1", ["messaging", "posting"])

    assert status.status == UserStatus.RESTRICTED
    assert status.restrictions == ["posting", "messaging"]


def test_block_user_records_system_ban(engine, repository):
    action = engine.block_user("u1", "abuse", duration=24)

    assert action.moderator_id == "system"
    assert action.action_type == ActionType.BAN
    assert repository.get(ModerationAction, action.id) is not None
    assert engine.get_user_status("u1").status == UserStatus.BANNED


def test_status_change_notifies_user(engine, dispatcher):
    engine.user_status.apply("u1", ActionType.WARN)

    sent = dispatcher.for_user("u1")
    assert [n.type for n in sent] == [NotificationType.STATUS_CHANGED]
    assert sent[0].data["status"] == "warned"


def test_concurrent_warnings_are_all_counted(engine):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: engine.user_status.apply("u1", ActionType.WARN), range(20)))

    assert engine.get_user_status("u1").warnings == 20


def transitions_to(status):
    return REGISTRY.get_sample_value("safeguard_user_transitions_total", {"status": status}) or 0.0


def test_repeated_unblock_records_one_transition(engine):
    engine.user_status.apply("u1", ActionType.BAN)
    before = transitions_to("active")

    engine.unblock_user("u1")
    engine.unblock_user("u1")
    engine.unblock_user("u2")

    assert transitions_to("active") - before == 1


def test_repeated_restriction_notifies_once(engine, dispatcher):
    engine.user_status.restrict_user("u1", ["posting"])
    engine.user_status.restrict_user("u1", ["posting"])

    assert len(dispatcher.for_user("u1")) == 1


def test_concurrent_bans_notify_once(engine, dispatcher):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: engine.user_status.apply("u1", ActionType.BAN), range(20)))

    status = engine.get_user_status("u1")
    assert status.status == UserStatus.BANNED
    assert status.violations == 20
    assert [n.data["status"] for n in dispatcher.for_user("u1")] == ["banned"]

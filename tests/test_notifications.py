"""Tests for notification dispatchers and the Kafka broker wrapper."""

import logging

from kafka.errors import KafkaError

from safeguard.engine import SafeguardEngine
from safeguard.lib.kafka_client import NOTIFICATION_TOPIC, MessageBroker
from safeguard.lib.notifications import (
    InMemoryDispatcher, KafkaDispatcher, RepositoryDispatcher
)
from safeguard.models.enums import ActionType, NotificationType
from safeguard.models.reports import Notification


class FakeMetadata:
    partition = 0
    offset = 42


class FakeFuture:

    def __init__(self, error=None):
        self.error = error

    def get(self, timeout=None):
        if self.error is not None:
            raise self.error
        return FakeMetadata()


class FakeProducer:

    def __init__(self, error=None):
        self.error = error
        self.sent = []
        self.closed = False

    def send(self, topic, value=None, key=None):
        self.sent.append((topic, value, key))
        return FakeFuture(self.error)

    def close(self):
        self.closed = True


def test_broker_publishes_keyed_by_user():
    producer = FakeProducer()
    broker = MessageBroker(producer=producer)

    assert broker.publish_notification({"user_id": "u1", "title": "hi"})

    topic, value, key = producer.sent[0]
    assert topic == NOTIFICATION_TOPIC
    assert key == "u1"
    assert value["title"] == "hi"


def test_broker_reports_send_failure():
    broker = MessageBroker(producer=FakeProducer(error=KafkaError("no leader")))

    assert broker.publish("topic", {"a": 1}) is False


def test_broker_close():
    producer = FakeProducer()
    MessageBroker(producer=producer).close()

    assert producer.closed


def test_kafka_dispatcher_serializes_notification():
    producer = FakeProducer()
    dispatcher = KafkaDispatcher(MessageBroker(producer=producer))

    notification = dispatcher.send("u1", NotificationType.STATUS_CHANGED, "Status", "now warned", {"status": "warned"})

    assert notification is not None
    _, value, _ = producer.sent[0]
    assert value["type"] == "status_changed"
    assert value["data"] == {"status": "warned"}


def test_delivery_failure_is_contained(caplog):
    dispatcher = KafkaDispatcher(MessageBroker(producer=FakeProducer(error=KafkaError("down"))))

    with caplog.at_level(logging.WARNING):
        result = dispatcher.send("u1", NotificationType.APPEAL_DENIED, "Appeal", "denied")

    assert result is None
    assert "not delivered" in caplog.text


def test_repository_dispatcher_stores_notifications(repository):
    dispatcher = RepositoryDispatcher(repository)

    dispatcher.send("u1", NotificationType.REPORT_RESOLVED, "Report", "resolved")

    stored = repository.find(Notification)
    assert [n.user_id for n in stored] == ["u1"]
    assert not stored[0].read


def test_broken_dispatcher_does_not_block_transition(engine, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(engine.dispatcher, "notify", explode)

    status = engine.user_status.apply("u1", ActionType.WARN)

    assert status.warnings == 1


def test_notifications_can_be_disabled(repository, config):
    config.set("notifications_enabled", False)
    dispatcher = InMemoryDispatcher()
    engine = SafeguardEngine(repository=repository, dispatcher=dispatcher, config=config)

    engine.user_status.apply("u1", ActionType.WARN)

    assert dispatcher.sent == []

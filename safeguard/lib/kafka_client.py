"""
Kafka message broker client
"""
import os
import json
import logging
from typing import Dict, Any, Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

logger = logging.getLogger(__name__)

NOTIFICATION_TOPIC = 'moderation-notifications'


class MessageBroker:
    """Kafka producer wrapper"""

    def __init__(self, bootstrap_servers: Optional[str] = None, producer=None):
        self.bootstrap_servers = bootstrap_servers or os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092')
        self.producer = producer
        if self.producer is None:
            self._initialize_producer()

    def _initialize_producer(self):
        """Initialize Kafka producer"""
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',
                retries=3,
                max_in_flight_requests_per_connection=1
            )
            logger.info(f"Kafka producer initialized: {self.bootstrap_servers}")
        except KafkaError as e:
            logger.error(f"Failed to initialize Kafka producer: {e}")
            raise

    def publish(self, topic: str, message: Dict[str, Any], key: Optional[str] = None) -> bool:
        """Publish message to topic"""
        try:
            future = self.producer.send(topic, value=message, key=key)
            record_metadata = future.get(timeout=10)
            logger.debug(f"Message sent to {topic} partition {record_metadata.partition} offset {record_metadata.offset}")
            return True
        except KafkaError as e:
            logger.error(f"Failed to send message to {topic}: {e}")
            return False

    def publish_notification(self, notification: Dict[str, Any]) -> bool:
        """Publish to the notification topic, keyed by recipient"""
        return self.publish(NOTIFICATION_TOPIC, notification, key=notification.get('user_id'))

    def close(self):
        if self.producer:
            self.producer.close()
        logger.info("Kafka connections closed")

"""
Kafka producer for publishing relationship notifications
"""
from aiokafka import AIOKafkaProducer
from typing import Optional, Dict, Any
import json
import logging
from datetime import datetime, timezone

from .config import settings
from .domain.models import NotificationKind
from .domain.repositories import INotificationDispatcher

logger = logging.getLogger(__name__)


class KafkaProducerManager(INotificationDispatcher):
    """Kafka producer manager for publishing events"""

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        """Start Kafka producer"""
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka is disabled")
            return

        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                key_serializer=lambda v: str(v).encode("utf-8") if v else None,
            )
            await self.producer.start()
            logger.info("Kafka producer started successfully")
        except Exception as e:
            logger.warning(f"Failed to start Kafka producer: {e}. Continuing without Kafka.")
            self.producer = None

    async def stop(self):
        """Stop Kafka producer"""
        if self.producer:
            await self.producer.stop()
            logger.info("Kafka producer stopped")

    async def publish_event(self, topic: str, key: str, event_data: Dict[str, Any]):
        """
        Publish event to Kafka topic

        Args:
            topic: Kafka topic name
            key: Message key (the recipient account id)
            event_data: Event data to publish
        """
        if not self.producer:
            logger.debug(f"Kafka disabled, skipping event: {topic}")
            return

        try:
            await self.producer.send(topic, value=event_data, key=key)
            logger.info(f"Published event to {topic}: {key}")
        except Exception as e:
            logger.error(f"Error publishing event to {topic}: {e}")

    def _topic_for(self, kind: NotificationKind) -> str:
        if kind == NotificationKind.FOLLOW_REQUESTED:
            return settings.KAFKA_TOPIC_FOLLOW_REQUESTED
        return settings.KAFKA_TOPIC_FOLLOW_ACCEPTED

    async def emit(
        self,
        kind: NotificationKind,
        from_account_id: str,
        to_account_id: str,
        from_display_name: Optional[str] = None,
    ) -> None:
        """Publish a follow-requested or follow-accepted notification"""
        event_data = {
            "event_type": kind.value,
            "from_account_id": from_account_id,
            "to_account_id": to_account_id,
            "from_display_name": from_display_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self.publish_event(self._topic_for(kind), to_account_id, event_data)


# Global producer instance
kafka_producer = KafkaProducerManager()


async def get_kafka_producer() -> KafkaProducerManager:
    """Dependency for getting Kafka producer instance"""
    return kafka_producer

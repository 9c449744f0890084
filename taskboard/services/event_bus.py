import logging

from aiokafka import AIOKafkaProducer

from taskboard.core.config import Settings

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """
    Publishes outbox payloads to Kafka.

    The producer waits for every in-sync replica and is idempotent, so a
    retried send never duplicates a message within one producer session.
    Messages are keyed by entity id so events for one entity land on one
    partition in order.
    """

    def __init__(self, bootstrap_servers: str, client_id: str = "taskboard-api"):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self._producer: AIOKafkaProducer | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "KafkaEventBus":
        return cls(settings.kafka_bootstrap_servers, client_id=settings.kafka_client_id)

    async def start(self) -> None:
        if self._producer is not None:
            return
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            acks="all",
            enable_idempotence=True,
        )
        await producer.start()
        self._producer = producer
        logger.info("Kafka producer connected to %s", self.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is None:
            return
        await self._producer.stop()
        self._producer = None
        logger.info("Kafka producer stopped")

    async def publish(self, topic: str, key: str, payload: str) -> None:
        if self._producer is None:
            raise RuntimeError("Event bus is not started")
        await self._producer.send_and_wait(
            topic, value=payload.encode("utf-8"), key=key.encode("utf-8")
        )
        logger.debug("Published to %s with key %s", topic, key)

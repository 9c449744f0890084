"""
Event consumers.

Deliveries are at-least-once, so every record is checked against a bounded
memory of recently handled ``event_id`` values before its handlers run.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Iterable

from aiokafka import AIOKafkaConsumer, TopicPartition
from cachetools import TTLCache
from pydantic import ValidationError

from taskboard.core.config import Settings
from taskboard.events import EVENT_TYPES, DomainEvent, ProjectCreated, TaskCreated, topic_for

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]


async def log_project_created(event: ProjectCreated) -> None:
    logger.info(
        "Project created: %s (%s) owned by %s", event.name, event.project_id, event.owner_id
    )


async def log_task_created(event: TaskCreated) -> None:
    logger.info(
        "Task created: %s (%s) in project %s with status %s",
        event.title,
        event.task_id,
        event.project_id,
        event.status.value,
    )


class EventConsumer:
    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        topic_prefix: str = "",
        dedupe_size: int = 10_000,
        dedupe_ttl_seconds: int = 3600,
        retry_backoff_seconds: float = 1.0,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.topic_prefix = topic_prefix
        self.retry_backoff_seconds = retry_backoff_seconds
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._seen: TTLCache = TTLCache(maxsize=dedupe_size, ttl=dedupe_ttl_seconds)
        self._consumer: AIOKafkaConsumer | None = None
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventConsumer":
        consumer = cls(
            settings.kafka_bootstrap_servers,
            group_id=settings.kafka_consumer_group,
            topic_prefix=settings.kafka_topic_prefix,
        )
        consumer.subscribe(ProjectCreated.event_type, log_project_created)
        consumer.subscribe(TaskCreated.event_type, log_task_created)
        return consumer

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        self._handlers[event_type].append(handler)

    @property
    def topics(self) -> list[str]:
        return [topic_for(event_type, self.topic_prefix) for event_type in self._handlers]

    def decode(self, raw: bytes | str) -> DomainEvent | None:
        try:
            data = json.loads(raw)
            event_cls = EVENT_TYPES[data["event_type"]]
            return event_cls.model_validate(data)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error("Dropping undecodable event record: %s", e)
            return None

    async def handle_record(self, raw: bytes | str) -> bool:
        """Dispatch one record; False when it was undecodable or already handled."""
        event = self.decode(raw)
        if event is None:
            return False
        if event.event_id in self._seen:
            logger.debug("Skipping duplicate event %s", event.event_id)
            return False

        for handler in self._handlers.get(event.event_type, ()):
            await handler(event)
        self._seen[event.event_id] = True
        return True

    async def handle_records(self, records: Iterable[bytes | str]) -> int:
        handled = 0
        for raw in records:
            if await self.handle_record(raw):
                handled += 1
        return handled

    async def start(self) -> None:
        if self._consumer is not None:
            return
        consumer = AIOKafkaConsumer(
            *self.topics,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await consumer.start()
        self._consumer = consumer
        self._task = asyncio.create_task(self._consume(), name="event-consumer")
        logger.info("Event consumer subscribed to %s", ", ".join(self.topics))

    async def _consume(self) -> None:
        """
        Handle records one at a time, committing each offset only once its
        handlers succeeded.

        A failing record is fetched again from its offset after a pause, so
        the committed position never moves past an unhandled event.
        """
        async for record in self._consumer:
            partition = TopicPartition(record.topic, record.partition)
            try:
                await self.handle_record(record.value)
            except Exception:
                logger.exception(
                    "Handler failed for record at %s[%d]@%d, retrying",
                    record.topic,
                    record.partition,
                    record.offset,
                )
                self._consumer.seek(partition, record.offset)
                await asyncio.sleep(self.retry_backoff_seconds)
                continue
            await self._consumer.commit({partition: record.offset + 1})

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
        logger.info("Event consumer stopped")

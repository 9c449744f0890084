"""
Transactional outbox.

``OutboxPublisher`` stages events as rows in the caller's session so they
commit or roll back together with the entity change. ``OutboxDispatcher``
is a background task that relays committed rows to the event bus in id
order and marks them delivered. A crash between publishing and marking
means the row is sent again: delivery is at-least-once and consumers drop
duplicates by ``event_id``.
"""

import asyncio
import contextlib
import json
import logging
from datetime import timedelta
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    stop_after_attempt,
    wait_exponential,
)

from taskboard.core.config import Settings
from taskboard.events import DomainEvent, topic_for
from taskboard.models import OutboxMessage, get_utc_now

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 2000


class EventBus(Protocol):
    async def publish(self, topic: str, key: str, payload: str) -> None: ...


def serialize_event(event: DomainEvent) -> str:
    data = event.model_dump(mode="json")
    data["event_type"] = event.event_type
    return json.dumps(data)


class OutboxPublisher:
    def __init__(self, session: AsyncSession, topic_prefix: str = ""):
        self.session = session
        self.topic_prefix = topic_prefix
        self.staged: list[OutboxMessage] = []

    def publish(self, event: DomainEvent) -> OutboxMessage:
        message = OutboxMessage(
            event_id=event.event_id,
            event_type=event.event_type,
            topic=topic_for(event.event_type, self.topic_prefix),
            message_key=event.message_key,
            payload=serialize_event(event),
            occurred_at=event.timestamp,
        )
        self.session.add(message)
        self.staged.append(message)
        logger.debug("Staged %s %s in the outbox", event.event_type, event.event_id)
        return message


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        poll_interval: float = 10.0,
        batch_size: int = 10,
        publish_attempts: int = 5,
        retry_backoff_seconds: float = 0.5,
        cleanup_interval: float = 60.0,
        retention_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.bus = bus
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.publish_attempts = publish_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.cleanup_interval = cleanup_interval
        self.retention = timedelta(seconds=retention_seconds)

        self._wakeup = asyncio.Event()
        self._stopping = False
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        settings: Settings,
    ) -> "OutboxDispatcher":
        return cls(
            session_factory,
            bus,
            poll_interval=settings.outbox_poll_interval_seconds,
            batch_size=settings.outbox_batch_size,
            publish_attempts=settings.outbox_publish_attempts,
            cleanup_interval=settings.outbox_cleanup_interval_seconds,
            retention_seconds=settings.outbox_retention_seconds,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify(self) -> None:
        """Wake the dispatcher before its next poll."""
        self._wakeup.set()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="outbox-dispatcher")
        logger.info("Outbox dispatcher started")

    async def stop(self, timeout: float = 10.0) -> None:
        if self._task is None:
            return
        self._stopping = True
        self._wakeup.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbox dispatcher did not stop within %.0fs", timeout)
        self._task = None
        logger.info("Outbox dispatcher stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last_cleanup = loop.time()
        while not self._stopping:
            try:
                await self.dispatch_pending()
                if loop.time() - last_cleanup >= self.cleanup_interval:
                    await self.purge_dispatched()
                    last_cleanup = loop.time()
            except Exception:
                logger.exception("Outbox dispatch cycle failed")
            await self._wait()

    async def _wait(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        self._wakeup.clear()

    async def _publish(self, message: OutboxMessage) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.publish_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        await retrying(self.bus.publish, message.topic, message.message_key, message.payload)

    async def dispatch_pending(self) -> int:
        """
        Relay one batch of undelivered messages, oldest first.

        Stops at the first message that still fails after retrying so later
        events are never delivered ahead of it. Returns how many were delivered.
        """
        delivered = 0
        async with self.session_factory() as session:
            result = await session.exec(
                select(OutboxMessage)
                .where(col(OutboxMessage.dispatched_at).is_(None))
                .order_by(col(OutboxMessage.id))
                .limit(self.batch_size)
            )
            messages = list(result.all())

            for message in messages:
                message.attempts += 1
                try:
                    await self._publish(message)
                except Exception as e:
                    message.last_error = str(e)[:LAST_ERROR_MAX_LENGTH] or type(e).__name__
                    session.add(message)
                    await session.commit()
                    logger.error(
                        "Delivery of outbox message %s (%s) failed after %d attempts: %s",
                        message.id,
                        message.event_type,
                        message.attempts,
                        e,
                    )
                    break

                message.dispatched_at = get_utc_now()
                message.last_error = None
                session.add(message)
                await session.commit()
                delivered += 1

        if delivered:
            logger.info("Dispatched %d outbox messages", delivered)
        return delivered

    async def purge_dispatched(self) -> int:
        """Delete delivered messages older than the retention window."""
        cutoff = get_utc_now() - self.retention
        async with self.session_factory() as session:
            connection = await session.connection()
            result = await connection.execute(
                delete(OutboxMessage).where(col(OutboxMessage.dispatched_at) < cutoff)
            )
            purged = result.rowcount
            await session.commit()
        if purged:
            logger.info("Purged %d delivered outbox messages", purged)
        return purged

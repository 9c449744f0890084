import logging
from typing import Awaitable, Callable

from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard.cache.layer import CacheLayer
from taskboard.core.config import Settings
from taskboard.core.retry import RetryPolicy
from taskboard.events import DomainEvent
from taskboard.services.outbox import OutboxPublisher

logger = logging.getLogger(__name__)

AfterCommit = Callable[[], Awaitable[None]]


class RequestContext:
    """
    Per-dispatch state shared by the behaviors and the handler.

    Handlers queue side effects that must only become visible once the
    write is durable (cache invalidation, waking the outbox dispatcher)
    with ``after_commit``. The transaction behavior runs the queue after a
    successful commit and drops it on rollback. Requests dispatched without
    a transaction have their queue drained when the handler returns.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: CacheLayer,
        settings: Settings,
        retry_policy: RetryPolicy,
        notifier: Callable[[], None] | None = None,
    ):
        self.session = session
        self.cache = cache
        self.settings = settings
        self.retry_policy = retry_policy
        self.outbox = OutboxPublisher(session, topic_prefix=settings.kafka_topic_prefix)
        self.transaction_active = False
        self._notifier = notifier
        self._after_commit: list[AfterCommit] = []

    def after_commit(self, callback: AfterCommit) -> None:
        self._after_commit.append(callback)

    def publish(self, event: DomainEvent) -> None:
        """Stage an event in the outbox; the dispatcher is woken after commit."""
        self.outbox.publish(event)
        if self._notifier is not None and self._wake_dispatcher not in self._after_commit:
            self._after_commit.append(self._wake_dispatcher)

    async def _wake_dispatcher(self) -> None:
        self._notifier()

    def discard_after_commit(self) -> None:
        if self._after_commit:
            logger.debug("Discarding %d post-commit callbacks", len(self._after_commit))
        self._after_commit.clear()

    async def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                # The write is already committed; a failed side effect must not undo the response
                logger.exception("Post-commit callback %r failed", callback)

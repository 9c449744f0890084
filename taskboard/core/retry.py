import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from taskboard.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS = (
    OperationalError,
    PoolTimeoutError,
    StaleDataError,
    TimeoutError,
    asyncio.TimeoutError,
)


def is_transient_store_error(exc: BaseException) -> bool:
    """Whether a store failure is worth retrying."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, TRANSIENT_STORE_ERRORS)


class RetryPolicy:
    """
    Bounded exponential-backoff retry for store operations.

    ``retries`` counts retries after the first attempt, so the default of 3
    means at most four calls. Waits are ``backoff * 2 ** (n - 1)`` seconds.
    """

    def __init__(
        self,
        retries: int = 3,
        backoff_seconds: float = 2.0,
        is_transient: Callable[[BaseException], bool] = is_transient_store_error,
    ):
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.is_transient = is_transient

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            retries=settings.store_retry_attempts,
            backoff_seconds=settings.store_retry_backoff_seconds,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, min=0, max=60),
            retry=retry_if_exception(self.is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def execute(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        return await self._retrying()(fn, *args, **kwargs)

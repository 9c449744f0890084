import logging
from functools import partial
from typing import Any, Callable, Iterable, Protocol

from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard.cache.layer import CacheLayer
from taskboard.core.config import Settings
from taskboard.core.retry import RetryPolicy
from taskboard.handlers import projects, tasks
from taskboard.pipeline.behaviors import Behavior, default_behaviors
from taskboard.pipeline.context import RequestContext
from taskboard.requests import Request

logger = logging.getLogger(__name__)


class Handler(Protocol):
    async def handle(self, request: Any) -> Any: ...


HandlerFactory = Callable[[RequestContext], Handler]


async def _invoke_handler(factory: HandlerFactory, request: Request, context: RequestContext):
    return await factory(context).handle(request)


async def _step(behavior: Behavior, inner, request: Request, context: RequestContext):
    return await behavior(request, context, lambda: inner(request, context))


class Mediator:
    """
    Dispatches a request to its handler through the behavior chain.

    Handlers are registered as factories taking the per-dispatch
    ``RequestContext`` and are built fresh for every ``send``.
    """

    def __init__(
        self,
        cache: CacheLayer,
        settings: Settings,
        behaviors: Iterable[Behavior] | None = None,
        notifier: Callable[[], None] | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.cache = cache
        self.settings = settings
        self.behaviors = list(behaviors) if behaviors is not None else default_behaviors()
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._handlers: dict[type, HandlerFactory] = {}

    def register(self, request_type: type, factory: HandlerFactory) -> None:
        if request_type in self._handlers:
            raise ValueError(f"A handler is already registered for {request_type.__name__}")
        self._handlers[request_type] = factory

    def _pipeline(self, factory: HandlerFactory):
        chain = partial(_invoke_handler, factory)
        for behavior in reversed(self.behaviors):
            chain = partial(_step, behavior, chain)
        return chain

    async def send(self, request: Request, session: AsyncSession):
        factory = self._handlers.get(type(request))
        if factory is None:
            raise LookupError(f"No handler registered for {type(request).__name__}")

        context = RequestContext(
            session=session,
            cache=self.cache,
            settings=self.settings,
            retry_policy=self.retry_policy,
            notifier=self.notifier,
        )
        response = await self._pipeline(factory)(request, context)
        # Side effects queued outside a transaction
        await context.run_after_commit()
        return response


def build_mediator(
    cache: CacheLayer,
    settings: Settings,
    notifier: Callable[[], None] | None = None,
    behaviors: Iterable[Behavior] | None = None,
) -> Mediator:
    mediator = Mediator(cache, settings, behaviors=behaviors, notifier=notifier)
    for module in (projects, tasks):
        for request_type, factory in module.HANDLERS.items():
            mediator.register(request_type, factory)
    logger.info("Mediator ready with %d handlers", len(mediator._handlers))
    return mediator

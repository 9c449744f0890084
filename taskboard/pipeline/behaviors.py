"""
Cross-cutting behaviors wrapped around every handler.

A behavior is an async callable ``(request, context, call_next)``. It may
act before and after ``call_next()`` and must re-raise whatever the inner
chain raises. The mediator composes them in list order, outermost first.
"""

import logging
import time
from typing import Any, Awaitable, Callable

from taskboard.core.exceptions import TaskboardException, ValidationFailedException
from taskboard.pipeline.context import RequestContext
from taskboard.requests import Mutating, Request
from taskboard.validators import ValidatorRegistry, registry

logger = logging.getLogger(__name__)

CallNext = Callable[[], Awaitable[Any]]
Behavior = Callable[[Request, RequestContext, CallNext], Awaitable[Any]]


async def logging_behavior(request: Request, context: RequestContext, call_next: CallNext):
    name = type(request).__name__
    logger.info("Handling %s: %s", name, request)
    started = time.perf_counter()
    try:
        response = await call_next()
    except TaskboardException as e:
        logger.warning("%s failed: %s", name, e.message)
        raise
    except Exception:
        logger.exception("%s failed with an unexpected error", name)
        raise
    logger.info("Handled %s in %.1f ms", name, (time.perf_counter() - started) * 1000)
    return response


class ValidationBehavior:
    """Runs every validator registered for the request type and reports all failures together."""

    def __init__(self, validators: ValidatorRegistry = registry):
        self.validators = validators

    async def __call__(self, request: Request, context: RequestContext, call_next: CallNext):
        errors = []
        for validator in self.validators.validators_for(type(request)):
            errors.extend(validator(request))
        if errors:
            raise ValidationFailedException(errors)
        return await call_next()


async def transaction_behavior(
    request: Request, context: RequestContext, call_next: CallNext
):
    if not isinstance(request, Mutating):
        return await call_next()

    name = type(request).__name__
    session = context.session
    context.transaction_active = True
    logger.debug("Begin transaction for %s", name)
    try:
        response = await call_next()
        await session.commit()
    except BaseException:
        # BaseException so a cancelled request rolls back too
        await session.rollback()
        context.discard_after_commit()
        logger.debug("Rolled back transaction for %s", name)
        raise
    finally:
        context.transaction_active = False

    logger.debug("Committed transaction for %s", name)
    await context.run_after_commit()
    return response


def default_behaviors() -> list[Behavior]:
    return [logging_behavior, ValidationBehavior(), transaction_behavior]

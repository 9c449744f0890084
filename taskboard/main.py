import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from taskboard.cache.layer import cache_layer
from taskboard.core.config import get_settings
from taskboard.core.error_handlers import register_exception_handlers
from taskboard.core.logging import configure_logging
from taskboard.database import async_session, create_db_and_tables, engine, ping_db
from taskboard.pipeline.mediator import build_mediator
from taskboard.routers import projects, tasks
from taskboard.services.consumers import EventConsumer
from taskboard.services.event_bus import KafkaEventBus
from taskboard.services.outbox import OutboxDispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    await cache_layer.init_cache()
    await create_db_and_tables()

    bus = None
    dispatcher = None
    consumer = None
    if settings.event_dispatch_enabled:
        bus = KafkaEventBus.from_settings(settings)
        await bus.start()
        dispatcher = OutboxDispatcher.from_settings(async_session, bus, settings)
        dispatcher.start()

    app.state.mediator = build_mediator(
        cache_layer,
        settings,
        notifier=dispatcher.notify if dispatcher is not None else None,
    )

    if settings.event_consumer_enabled:
        consumer = EventConsumer.from_settings(settings)
        await consumer.start()

    logger.info("%s started", settings.app_name)
    try:
        yield
    finally:
        if consumer is not None:
            await consumer.stop()
        if dispatcher is not None:
            await dispatcher.stop()
        if bus is not None:
            await bus.stop()
        await cache_layer.close()
        await engine.dispose()
        logger.info("%s stopped", settings.app_name)


app = FastAPI(
    title="Taskboard API",
    description="Multi-tenant project and task management API with PostgreSQL, Redis and Kafka",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Include routers
app.include_router(projects.router)
app.include_router(tasks.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to Taskboard API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/ready")
async def readiness_check():
    checks = {"database": False, "cache": False}
    try:
        checks["database"] = await ping_db()
    except (SQLAlchemyError, OSError) as e:
        logger.error("Readiness check: database unavailable: %s", e)
    checks["cache"] = await cache_layer.ping()

    ready = all(checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "unavailable",
            "checks": checks,
            "cache": cache_layer.get_stats(),
        },
    )

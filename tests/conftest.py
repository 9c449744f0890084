"""
Test configuration and fixtures
"""

import os

# Must be set before taskboard reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ["EVENT_DISPATCH_ENABLED"] = "false"
os.environ["EVENT_CONSUMER_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlmodel import col, select  # noqa: E402

from taskboard.cache.layer import CacheLayer  # noqa: E402
from taskboard.core.config import Settings  # noqa: E402
from taskboard.database import build_engine, build_session_factory, create_db_and_tables  # noqa: E402
from taskboard.models import OutboxMessage  # noqa: E402
from taskboard.pipeline.mediator import build_mediator  # noqa: E402
from taskboard.requests import CreateProjectCommand, CreateTaskCommand  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET_KEY"]


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        redis_enabled=False,
        event_dispatch_enabled=False,
        event_consumer_enabled=False,
        store_retry_backoff_seconds=0,
        jwt_secret_key=TEST_SECRET,
        jwks_url=None,
    )


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database for each test"""
    engine = build_engine("sqlite+aiosqlite://")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def cache(settings):
    cache = CacheLayer(settings)
    await cache.init_cache()
    yield cache
    await cache.close()


@pytest.fixture
def notifier():
    return MagicMock(name="outbox_notifier")


@pytest.fixture
def mediator(cache, settings, notifier):
    return build_mediator(cache, settings, notifier=notifier)


@pytest.fixture
def dispatch(mediator, session_factory):
    """Send one request through the mediator in its own session, like one HTTP call"""

    async def _dispatch(request):
        async with session_factory() as session:
            return await mediator.send(request, session)

    return _dispatch


@pytest.fixture
def create_project(dispatch):
    async def _create(owner_id: str, name: str, description: str | None = None):
        return await dispatch(
            CreateProjectCommand(owner_id=owner_id, name=name, description=description)
        )

    return _create


@pytest.fixture
def create_task(dispatch):
    async def _create(project, title: str, user_id: str | None = None, **fields):
        return await dispatch(
            CreateTaskCommand(
                project_id=project.id,
                user_id=user_id or project.owner_id,
                is_admin=False,
                title=title,
                **fields,
            )
        )

    return _create


@pytest.fixture
def outbox_messages(session_factory):
    async def _messages() -> list[OutboxMessage]:
        async with session_factory() as session:
            result = await session.exec(select(OutboxMessage).order_by(col(OutboxMessage.id)))
            return list(result.all())

    return _messages


@pytest.fixture
def make_token():
    def _make(
        sub: str | None = "user1",
        groups=None,
        secret: str = TEST_SECRET,
        expires_in: timedelta = timedelta(hours=1),
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {"iat": now, "exp": now + expires_in}
        if sub is not None:
            payload["sub"] = sub
        if groups is not None:
            payload["cognito:groups"] = groups
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, Sequence, TypeVar

from sqlalchemy import asc, desc, func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard.core.exceptions import ConflictException
from taskboard.core.retry import RetryPolicy
from taskboard.models import Project, Task

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)

LIKE_ESCAPE = "/"


def escape_like(term: str) -> str:
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


@dataclass(frozen=True)
class QuerySpecification:
    """
    Everything a list query needs, expressed without touching the session.

    ``criteria`` are SQL boolean expressions ANDed together. ``search`` is a
    case-insensitive substring matched against the repository's search
    fields. ``sort_by`` must name one of the repository's sortable fields,
    anything else falls back to insertion order.
    """

    criteria: tuple = ()
    search: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    page_number: int = 1
    page_size: int = 10


@dataclass
class Page(Generic[ModelT]):
    items: list[ModelT] = field(default_factory=list)
    total_count: int = 0


class Repository(Generic[ModelT]):
    """Generic CRUD over one table, every store call wrapped in the retry policy."""

    model: ClassVar[type[SQLModel]]
    sortable_fields: ClassVar[dict[str, Any]] = {}
    search_fields: ClassVar[tuple] = ()

    def __init__(self, session: AsyncSession, retry_policy: RetryPolicy | None = None):
        self.session = session
        self.retry_policy = retry_policy or RetryPolicy()

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    async def get_by_id(self, entity_id: uuid.UUID) -> ModelT | None:
        async def _get():
            logger.debug("Loading %s %s", self.entity_name, entity_id)
            result = await self.session.exec(
                select(self.model).where(self.model.id == entity_id)
            )
            return result.first()

        return await self.retry_policy.execute(_get)

    async def get_all(self) -> list[ModelT]:
        async def _get_all():
            result = await self.session.exec(select(self.model))
            return list(result.all())

        return await self.retry_policy.execute(_get_all)

    async def find(self, *criteria) -> list[ModelT]:
        async def _find():
            result = await self.session.exec(select(self.model).where(*criteria))
            return list(result.all())

        return await self.retry_policy.execute(_find)

    async def exists(self, *criteria) -> bool:
        async def _exists():
            result = await self.session.exec(
                select(self.model.id).where(*criteria).limit(1)
            )
            return result.first() is not None

        return await self.retry_policy.execute(_exists)

    def add(self, entity: ModelT) -> None:
        logger.debug("Adding %s", self.entity_name)
        self.session.add(entity)

    async def remove(self, entity: ModelT) -> None:
        logger.debug("Removing %s", self.entity_name)
        await self.session.delete(entity)

    async def save_changes(self) -> None:
        """Flush pending changes into the current transaction."""
        try:
            await self.retry_policy.execute(self.session.flush)
        except IntegrityError as e:
            logger.warning("Integrity violation saving %s: %s", self.entity_name, e.orig)
            raise ConflictException(
                f"The {self.entity_name.lower()} conflicts with existing data."
            ) from e

    async def list_paged(self, spec: QuerySpecification) -> Page[ModelT]:
        criteria = list(spec.criteria)
        if spec.search and spec.search.strip():
            criteria.append(self._search_clause(spec.search))

        offset = (spec.page_number - 1) * spec.page_size

        async def _count():
            result = await self.session.exec(
                select(func.count()).select_from(self.model).where(*criteria)
            )
            return result.one()

        async def _page():
            result = await self.session.exec(
                select(self.model)
                .where(*criteria)
                .order_by(*self._order_by(spec.sort_by, spec.sort_order))
                .offset(offset)
                .limit(spec.page_size)
            )
            return list(result.all())

        total = await self.retry_policy.execute(_count)
        items = await self.retry_policy.execute(_page) if total else []
        return Page(items=items, total_count=total)

    def _search_clause(self, search: str):
        pattern = f"%{escape_like(search.strip())}%"
        return or_(
            *(col(column).ilike(pattern, escape=LIKE_ESCAPE) for column in self.search_fields)
        )

    def _order_by(self, sort_by: str | None, sort_order: str | None) -> Sequence:
        column = self.sortable_fields.get((sort_by or "").strip().lower())
        if column is None:
            return [asc(self.model.created_at), asc(self.model.id)]
        direction = desc if (sort_order or "").strip().lower() == "desc" else asc
        return [direction(column), asc(self.model.id)]


class ProjectRepository(Repository[Project]):
    model = Project
    sortable_fields = {"name": Project.name, "description": Project.description}
    search_fields = (Project.name, Project.description)

    async def name_taken(
        self, owner_id: str, name: str, exclude_id: uuid.UUID | None = None
    ) -> bool:
        criteria = [Project.owner_id == owner_id, Project.name == name]
        if exclude_id is not None:
            criteria.append(Project.id != exclude_id)
        return await self.exists(*criteria)

    async def task_counts(self, project_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not project_ids:
            return {}

        async def _counts():
            result = await self.session.exec(
                select(Task.project_id, func.count(Task.id))
                .where(col(Task.project_id).in_(list(project_ids)))
                .group_by(Task.project_id)
            )
            return {project_id: count for project_id, count in result.all()}

        return await self.retry_policy.execute(_counts)


class TaskRepository(Repository[Task]):
    model = Task
    sortable_fields = {
        "title": Task.title,
        "description": Task.description,
        "status": Task.status,
    }
    search_fields = (Task.title, Task.description)

    async def ids_for_project(self, project_id: uuid.UUID) -> list[uuid.UUID]:
        async def _ids():
            result = await self.session.exec(
                select(Task.id).where(Task.project_id == project_id)
            )
            return list(result.all())

        return await self.retry_policy.execute(_ids)

import logging
import uuid
from typing import Iterable

from taskboard.cache import keys as cache_keys
from taskboard.events import DomainEvent
from taskboard.models import Project, ProjectResponse, Task, TaskResponse
from taskboard.pipeline.context import RequestContext
from taskboard.repositories import ProjectRepository, TaskRepository

logger = logging.getLogger(__name__)


class BaseHandler:
    """Gives handlers their repositories and the commit-bound side effects."""

    def __init__(self, context: RequestContext):
        self.context = context
        self.cache = context.cache
        self.projects = ProjectRepository(context.session, context.retry_policy)
        self.tasks = TaskRepository(context.session, context.retry_policy)

    def publish(self, event: DomainEvent) -> None:
        self.context.publish(event)

    def invalidate(self, keys: Iterable[str] = (), prefixes: Iterable[str] = ()) -> None:
        """Queue cache invalidation to run once the write is committed."""
        exact = list(keys)
        scopes = list(prefixes)
        cache = self.cache

        async def _invalidate():
            if exact:
                await cache.delete(*exact)
            for prefix in scopes:
                await cache.delete_prefix(prefix)
            logger.debug("Invalidated %d keys and %d list scopes", len(exact), len(scopes))

        self.context.after_commit(_invalidate)

    def invalidate_project_lists(self, owner_id: str) -> None:
        self.invalidate(
            prefixes=(cache_keys.owner_projects_prefix(owner_id), cache_keys.all_projects_prefix())
        )

    def invalidate_project(self, project: Project, task_ids: Iterable[uuid.UUID] = ()) -> None:
        """Everything that can contain the project or, through task counts, its tasks."""
        self.invalidate(
            keys=[cache_keys.project_key(project.id), *(cache_keys.task_key(t) for t in task_ids)],
            prefixes=(
                cache_keys.owner_projects_prefix(project.owner_id),
                cache_keys.all_projects_prefix(),
                cache_keys.project_tasks_prefix(project.id),
            ),
        )


def project_response(project: Project, task_count: int = 0) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        owner_id=project.owner_id,
        task_count=task_count,
    )


def task_response(task: Task) -> TaskResponse:
    return TaskResponse.model_validate(task)

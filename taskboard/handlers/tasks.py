import logging
import uuid

from taskboard.cache import keys as cache_keys
from taskboard.core.exceptions import NotFoundException
from taskboard.events import TaskCreated, TaskDeleted, TaskUpdated
from taskboard.handlers.base import BaseHandler, task_response
from taskboard.models import PagedResult, Project, Task, TaskResponse, TaskStatus
from taskboard.repositories import QuerySpecification
from taskboard.requests import (
    CreateTaskCommand,
    DeleteTaskCommand,
    GetTaskByIdQuery,
    GetTasksByProjectIdQuery,
    UpdateTaskCommand,
)
from taskboard.services.authorization import check_access

logger = logging.getLogger(__name__)


class TaskHandler(BaseHandler):
    async def load_project(self, project_id: uuid.UUID) -> Project:
        project = await self.projects.get_by_id(project_id)
        if project is None:
            raise NotFoundException("Project", project_id)
        return project

    async def load_task(self, task_id: uuid.UUID) -> tuple[Task, Project]:
        """A task together with the project that owns it."""
        task = await self.tasks.get_by_id(task_id)
        if task is None:
            raise NotFoundException("Task", task_id)
        return task, await self.load_project(task.project_id)


class CreateTaskHandler(TaskHandler):
    async def handle(self, request: CreateTaskCommand) -> TaskResponse:
        project = await self.load_project(request.project_id)
        check_access(request.user_id, request.is_admin, project.owner_id)

        task = Task(
            title=request.title,
            description=request.description,
            status=TaskStatus(request.status),
            project_id=project.id,
        )
        self.tasks.add(task)
        await self.tasks.save_changes()
        logger.info("Created task %s in project %s", task.id, project.id)

        self.publish(
            TaskCreated(
                task_id=task.id,
                project_id=project.id,
                title=task.title,
                status=task.status,
            )
        )
        self.invalidate_project(project)
        return task_response(task)


class UpdateTaskHandler(TaskHandler):
    async def handle(self, request: UpdateTaskCommand) -> None:
        task, project = await self.load_task(request.task_id)
        check_access(request.user_id, request.is_admin, project.owner_id)

        status = TaskStatus(request.status)
        changed = (
            task.title != request.title
            or task.description != request.description
            or task.status != status
        )
        task.title = request.title
        task.description = request.description
        task.status = status
        self.tasks.add(task)
        await self.tasks.save_changes()

        if changed:
            logger.info("Updated task %s", task.id)
            self.publish(
                TaskUpdated(
                    task_id=task.id,
                    project_id=project.id,
                    title=task.title,
                    description=task.description,
                    status=task.status,
                )
            )
        self.invalidate_project(project, task_ids=[task.id])


class DeleteTaskHandler(TaskHandler):
    async def handle(self, request: DeleteTaskCommand) -> None:
        task, project = await self.load_task(request.task_id)
        check_access(request.user_id, request.is_admin, project.owner_id)

        await self.tasks.remove(task)
        await self.tasks.save_changes()
        logger.info("Deleted task %s from project %s", task.id, project.id)

        self.publish(TaskDeleted(task_id=task.id, project_id=project.id))
        self.invalidate_project(project, task_ids=[task.id])


class GetTaskByIdHandler(TaskHandler):
    async def handle(self, request: GetTaskByIdQuery) -> TaskResponse:
        async def load():
            task, project = await self.load_task(request.task_id)
            check_access(request.user_id, request.is_admin, project.owner_id)
            return {
                "owner_id": project.owner_id,
                "result": task_response(task).model_dump(mode="json"),
            }

        entry = await self.cache.get(cache_keys.task_key(request.task_id), loader=load)
        check_access(request.user_id, request.is_admin, entry["owner_id"])
        return TaskResponse.model_validate(entry["result"])


class GetTasksByProjectIdHandler(TaskHandler):
    async def handle(self, request: GetTasksByProjectIdQuery) -> PagedResult[TaskResponse]:
        parameters = request.parameters
        key = cache_keys.project_tasks_key(
            request.project_id, parameters, self.tasks.sortable_fields
        )

        async def load():
            project = await self.load_project(request.project_id)
            check_access(request.user_id, request.is_admin, project.owner_id)
            page = await self.tasks.list_paged(
                QuerySpecification(
                    criteria=(Task.project_id == project.id,),
                    search=parameters.search_query,
                    sort_by=parameters.sort_by,
                    sort_order=parameters.sort_order,
                    page_number=parameters.page_number,
                    page_size=parameters.page_size,
                )
            )
            result = PagedResult[TaskResponse](
                items=[task_response(t) for t in page.items],
                total_count=page.total_count,
                page_number=parameters.page_number,
                page_size=parameters.page_size,
            )
            return {"owner_id": project.owner_id, "result": result.model_dump(mode="json")}

        entry = await self.cache.get(key, loader=load)
        check_access(request.user_id, request.is_admin, entry["owner_id"])
        return PagedResult[TaskResponse].model_validate(entry["result"])


HANDLERS = {
    CreateTaskCommand: CreateTaskHandler,
    UpdateTaskCommand: UpdateTaskHandler,
    DeleteTaskCommand: DeleteTaskHandler,
    GetTaskByIdQuery: GetTaskByIdHandler,
    GetTasksByProjectIdQuery: GetTasksByProjectIdHandler,
}

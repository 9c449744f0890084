import logging

from taskboard.cache import keys as cache_keys
from taskboard.core.exceptions import ConflictException, NotFoundException
from taskboard.events import ProjectCreated, ProjectDeleted, ProjectUpdated
from taskboard.handlers.base import BaseHandler, project_response
from taskboard.models import PagedResult, Project, ProjectResponse
from taskboard.repositories import QuerySpecification
from taskboard.requests import (
    CreateProjectCommand,
    DeleteProjectCommand,
    GetAllProjectsQuery,
    GetProjectByIdQuery,
    UpdateProjectCommand,
)
from taskboard.services.authorization import check_access

logger = logging.getLogger(__name__)


def _name_conflict(name: str) -> ConflictException:
    return ConflictException(f'A project named "{name}" already exists.')


class CreateProjectHandler(BaseHandler):
    async def handle(self, request: CreateProjectCommand) -> ProjectResponse:
        if await self.projects.name_taken(request.owner_id, request.name):
            raise _name_conflict(request.name)

        project = Project(
            name=request.name,
            description=request.description,
            owner_id=request.owner_id,
        )
        self.projects.add(project)
        await self.projects.save_changes()
        logger.info("Created project %s for %s", project.id, project.owner_id)

        self.publish(
            ProjectCreated(
                project_id=project.id,
                name=project.name,
                description=project.description,
                owner_id=project.owner_id,
            )
        )
        self.invalidate_project_lists(project.owner_id)
        return project_response(project, task_count=0)


class UpdateProjectHandler(BaseHandler):
    async def handle(self, request: UpdateProjectCommand) -> None:
        project = await self.projects.get_by_id(request.project_id)
        if project is None:
            raise NotFoundException("Project", request.project_id)
        check_access(request.user_id, request.is_admin, project.owner_id)

        renamed = project.name != request.name
        if renamed and await self.projects.name_taken(
            project.owner_id, request.name, exclude_id=project.id
        ):
            raise _name_conflict(request.name)

        changed = renamed or project.description != request.description
        project.name = request.name
        project.description = request.description
        self.projects.add(project)
        await self.projects.save_changes()

        # An unchanged project is still saved but announces nothing
        if changed:
            logger.info("Updated project %s", project.id)
            self.publish(
                ProjectUpdated(
                    project_id=project.id,
                    name=project.name,
                    description=project.description,
                    owner_id=project.owner_id,
                )
            )
        self.invalidate_project(project)


class DeleteProjectHandler(BaseHandler):
    async def handle(self, request: DeleteProjectCommand) -> None:
        project = await self.projects.get_by_id(request.project_id)
        if project is None:
            raise NotFoundException("Project", request.project_id)
        check_access(request.user_id, request.is_admin, project.owner_id)

        # Collected before the delete: the store cascades the rows away
        task_ids = await self.tasks.ids_for_project(project.id)

        await self.projects.remove(project)
        await self.projects.save_changes()
        logger.info("Deleted project %s with %d tasks", project.id, len(task_ids))

        self.publish(ProjectDeleted(project_id=project.id, owner_id=project.owner_id))
        self.invalidate_project(project, task_ids=task_ids)


class GetProjectByIdHandler(BaseHandler):
    async def handle(self, request: GetProjectByIdQuery) -> ProjectResponse:
        async def load():
            project = await self.projects.get_by_id(request.project_id)
            if project is None:
                raise NotFoundException("Project", request.project_id)
            check_access(request.user_id, request.is_admin, project.owner_id)
            counts = await self.projects.task_counts([project.id])
            response = project_response(project, counts.get(project.id, 0))
            return {"owner_id": project.owner_id, "result": response.model_dump(mode="json")}

        entry = await self.cache.get(cache_keys.project_key(request.project_id), loader=load)
        check_access(request.user_id, request.is_admin, entry["owner_id"])
        return ProjectResponse.model_validate(entry["result"])


class GetAllProjectsHandler(BaseHandler):
    async def handle(self, request: GetAllProjectsQuery) -> PagedResult[ProjectResponse]:
        parameters = request.parameters
        key = cache_keys.projects_list_key(
            request.user_id,
            request.is_admin,
            parameters,
            self.projects.sortable_fields,
        )

        async def load():
            criteria = () if request.is_admin else (Project.owner_id == request.user_id,)
            page = await self.projects.list_paged(
                QuerySpecification(
                    criteria=criteria,
                    search=parameters.search_query,
                    sort_by=parameters.sort_by,
                    sort_order=parameters.sort_order,
                    page_number=parameters.page_number,
                    page_size=parameters.page_size,
                )
            )
            counts = await self.projects.task_counts([p.id for p in page.items])
            result = PagedResult[ProjectResponse](
                items=[project_response(p, counts.get(p.id, 0)) for p in page.items],
                total_count=page.total_count,
                page_number=parameters.page_number,
                page_size=parameters.page_size,
            )
            return result.model_dump(mode="json")

        data = await self.cache.get(key, loader=load)
        return PagedResult[ProjectResponse].model_validate(data)


HANDLERS = {
    CreateProjectCommand: CreateProjectHandler,
    UpdateProjectCommand: UpdateProjectHandler,
    DeleteProjectCommand: DeleteProjectHandler,
    GetProjectByIdQuery: GetProjectByIdHandler,
    GetAllProjectsQuery: GetAllProjectsHandler,
}

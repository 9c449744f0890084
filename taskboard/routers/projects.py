import uuid

from fastapi import APIRouter, status

from taskboard.dependencies import CurrentUserDep, DbDep, MediatorDep, QueryParametersDep
from taskboard.models import (
    PagedResult,
    ProjectResponse,
    ProjectWrite,
    TaskResponse,
    TaskWrite,
)
from taskboard.requests import (
    CreateProjectCommand,
    CreateTaskCommand,
    DeleteProjectCommand,
    GetAllProjectsQuery,
    GetProjectByIdQuery,
    GetTasksByProjectIdQuery,
    UpdateProjectCommand,
)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=PagedResult[ProjectResponse])
async def get_projects(
    user: CurrentUserDep,
    parameters: QueryParametersDep,
    mediator: MediatorDep,
    db: DbDep,
):
    """List the caller's projects, or every project for an admin"""
    return await mediator.send(
        GetAllProjectsQuery(user_id=user.id, is_admin=user.is_admin, parameters=parameters),
        db,
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID, user: CurrentUserDep, mediator: MediatorDep, db: DbDep
):
    return await mediator.send(
        GetProjectByIdQuery(project_id=project_id, user_id=user.id, is_admin=user.is_admin),
        db,
    )


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectWrite, user: CurrentUserDep, mediator: MediatorDep, db: DbDep
):
    """Create a project owned by the caller"""
    return await mediator.send(
        CreateProjectCommand(
            owner_id=user.id,
            name=project_data.name,
            description=project_data.description,
        ),
        db,
    )


@router.put("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_project(
    project_id: uuid.UUID,
    project_data: ProjectWrite,
    user: CurrentUserDep,
    mediator: MediatorDep,
    db: DbDep,
):
    await mediator.send(
        UpdateProjectCommand(
            project_id=project_id,
            user_id=user.id,
            is_admin=user.is_admin,
            name=project_data.name,
            description=project_data.description,
        ),
        db,
    )


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: uuid.UUID, user: CurrentUserDep, mediator: MediatorDep, db: DbDep
):
    """Delete a project and all of its tasks"""
    await mediator.send(
        DeleteProjectCommand(project_id=project_id, user_id=user.id, is_admin=user.is_admin),
        db,
    )


@router.get("/{project_id}/tasks", response_model=PagedResult[TaskResponse])
async def get_project_tasks(
    project_id: uuid.UUID,
    user: CurrentUserDep,
    parameters: QueryParametersDep,
    mediator: MediatorDep,
    db: DbDep,
):
    return await mediator.send(
        GetTasksByProjectIdQuery(
            project_id=project_id,
            user_id=user.id,
            is_admin=user.is_admin,
            parameters=parameters,
        ),
        db,
    )


@router.post(
    "/{project_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    project_id: uuid.UUID,
    task_data: TaskWrite,
    user: CurrentUserDep,
    mediator: MediatorDep,
    db: DbDep,
):
    """Create a task in one of the caller's projects"""
    return await mediator.send(
        CreateTaskCommand(
            project_id=project_id,
            user_id=user.id,
            is_admin=user.is_admin,
            title=task_data.title,
            description=task_data.description,
            status=task_data.status,
        ),
        db,
    )

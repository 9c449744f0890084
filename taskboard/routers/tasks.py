import uuid

from fastapi import APIRouter, status

from taskboard.dependencies import CurrentUserDep, DbDep, MediatorDep
from taskboard.models import TaskResponse, TaskWrite
from taskboard.requests import DeleteTaskCommand, GetTaskByIdQuery, UpdateTaskCommand

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: uuid.UUID, user: CurrentUserDep, mediator: MediatorDep, db: DbDep):
    """Get a specific task by ID"""
    return await mediator.send(
        GetTaskByIdQuery(task_id=task_id, user_id=user.id, is_admin=user.is_admin), db
    )


@router.put("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_task(
    task_id: uuid.UUID,
    task_data: TaskWrite,
    user: CurrentUserDep,
    mediator: MediatorDep,
    db: DbDep,
):
    await mediator.send(
        UpdateTaskCommand(
            task_id=task_id,
            user_id=user.id,
            is_admin=user.is_admin,
            title=task_data.title,
            description=task_data.description,
            status=task_data.status,
        ),
        db,
    )


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: uuid.UUID, user: CurrentUserDep, mediator: MediatorDep, db: DbDep):
    """Delete a task"""
    await mediator.send(
        DeleteTaskCommand(task_id=task_id, user_id=user.id, is_admin=user.is_admin), db
    )

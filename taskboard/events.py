"""
Domain events.

Events are immutable facts named in the past tense. Each one is relayed to its
own topic on the message bus and carries an ``event_id`` so consumers can drop
redeliveries.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from taskboard.models import TaskStatus, get_utc_now


class DomainEvent(BaseModel, ABC):
    model_config = ConfigDict(frozen=True)

    event_type: ClassVar[str] = ""

    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=get_utc_now)

    @property
    @abstractmethod
    def message_key(self) -> str:
        """Partitioning key, the id of the affected entity."""


class ProjectEvent(DomainEvent):
    project_id: uuid.UUID

    @property
    def message_key(self) -> str:
        return str(self.project_id)


class ProjectCreated(ProjectEvent):
    event_type: ClassVar[str] = "project-created"

    name: str
    description: str | None = None
    owner_id: str


class ProjectUpdated(ProjectEvent):
    event_type: ClassVar[str] = "project-updated"

    name: str
    description: str | None = None
    owner_id: str


class ProjectDeleted(ProjectEvent):
    event_type: ClassVar[str] = "project-deleted"

    owner_id: str


class TaskEvent(DomainEvent):
    task_id: uuid.UUID
    project_id: uuid.UUID

    @property
    def message_key(self) -> str:
        return str(self.task_id)


class TaskCreated(TaskEvent):
    event_type: ClassVar[str] = "task-created"

    title: str
    status: TaskStatus


class TaskUpdated(TaskEvent):
    event_type: ClassVar[str] = "task-updated"

    title: str
    description: str | None = None
    status: TaskStatus


class TaskDeleted(TaskEvent):
    event_type: ClassVar[str] = "task-deleted"


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.event_type: cls
    for cls in (
        ProjectCreated,
        ProjectUpdated,
        ProjectDeleted,
        TaskCreated,
        TaskUpdated,
        TaskDeleted,
    )
}


def topic_for(event_type: str, prefix: str = "") -> str:
    return f"{prefix}{event_type}"

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field
from sqlalchemy import DateTime, Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    TODO = "Todo"
    IN_PROGRESS = "InProgress"
    DONE = "Done"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class Project(SQLModel, table=True):
    """A named container of tasks, owned by one user."""

    __tablename__ = "projects"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_projects_owner_name"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    owner_id: str = Field(max_length=255, index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Task(SQLModel, table=True):
    """A unit of work inside a project; deleted with its project."""

    __tablename__ = "tasks"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    title: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    project_id: uuid.UUID = Field(
        foreign_key="projects.id", ondelete="CASCADE", index=True
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class OutboxMessage(SQLModel, table=True):
    """A domain event waiting to be relayed to the message bus."""

    __tablename__ = "outbox_messages"

    id: int | None = Field(default=None, primary_key=True)
    event_id: uuid.UUID = Field(unique=True)
    event_type: str = Field(max_length=100)
    topic: str = Field(max_length=200)
    message_key: str = Field(max_length=100)
    payload: str = Field(sa_column=Column(Text, nullable=False))
    occurred_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    dispatched_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ProjectWrite(SQLModel):
    """Schema for creating or updating a project"""

    name: str
    description: str | None = None


class TaskWrite(SQLModel):
    """Schema for creating or updating a task"""

    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class ProjectResponse(SQLModel):
    """Schema for project responses"""

    id: uuid.UUID
    name: str
    description: str | None = None
    owner_id: str
    task_count: int = 0

    model_config = {"from_attributes": True}


class TaskResponse(SQLModel):
    """Schema for task responses"""

    id: uuid.UUID
    title: str
    description: str | None = None
    status: TaskStatus
    project_id: uuid.UUID

    model_config = {"from_attributes": True}


class QueryParameters(BaseModel):
    """Pagination, search and sort options for list queries."""

    page_number: int = 1
    page_size: int = 10
    search_query: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None

    model_config = {"frozen": True}


ItemT = TypeVar("ItemT")


class PagedResult(BaseModel, Generic[ItemT]):
    items: list[ItemT]
    total_count: int
    page_number: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

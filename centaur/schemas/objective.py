"""
Objective and Task Schemas

Request/response models for objective and task operations.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime

OBJECTIVE_STATUS_PATTERN = "^(active|completed|archived)$"
TASK_STATUS_PATTERN = "^(todo|in_progress|done|blocked)$"


class ObjectiveBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: str = Field(default="active", pattern=OBJECTIVE_STATUS_PATTERN)
    target_date: Optional[date] = None


class ObjectiveCreate(ObjectiveBase):
    """
    Schema for creating an objective.

    NOTE: owner_id is set from the authenticated user, not from the request.
    """
    pass


class ObjectiveUpdate(BaseModel):
    """All fields optional."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=OBJECTIVE_STATUS_PATTERN)
    target_date: Optional[date] = None


class ObjectiveResponse(ObjectiveBase):
    id: str
    foundry_id: str
    owner_id: Optional[str]
    progress: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ObjectiveListResponse(BaseModel):
    objectives: list[ObjectiveResponse]
    total: int
    page: int
    page_size: int


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: str = Field(default="todo", pattern=TASK_STATUS_PATTERN)
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None


class TaskCreate(TaskBase):
    pass


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=TASK_STATUS_PATTERN)
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None


class TaskResponse(TaskBase):
    id: str
    foundry_id: str
    objective_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

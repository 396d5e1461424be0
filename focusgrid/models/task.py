"""Task data model for focusgrid."""

from datetime import date, datetime, time
from typing import List, Optional
from enum import Enum
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task status enumeration."""
    TODO = "todo"
    DONE = "done"


class TaskPriority(str, Enum):
    """Task priority enumeration."""
    HIGH = "high"
    MEDIUM = "medium"
    NORMAL = "normal"


class EnergyLevel(str, Enum):
    """Energy level a task demands."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    DEEP = "deep"


class Task(BaseModel):
    """Canonical Task model, shared by the device store and the remote store.

    All instants are naive UTC datetimes. `scheduled_date` and `due_time` are
    wall-clock values interpreted in `timezone`.
    """

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    user_id: str = Field(..., description="Owner of the task")
    title: str = Field(..., description="Task title")
    status: TaskStatus = Field(TaskStatus.TODO, description="Task status")
    priority: TaskPriority = Field(TaskPriority.NORMAL, description="Task priority")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    scheduled_date: Optional[date] = Field(None, description="Calendar date the task is planned for")
    due_time: Optional[time] = Field(None, description="Time of day the task is due (push reminder time)")
    estimate_minutes: Optional[int] = Field(None, description="Estimated duration in minutes")
    energy: Optional[EnergyLevel] = Field(None, description="Energy the task demands")
    timezone: str = Field("UTC", description="IANA zone name used to interpret scheduled_date + due_time")
    created_at: datetime = Field(..., description="Task creation timestamp")
    updated_at: datetime = Field(..., description="Task last update timestamp (conflict resolution key)")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp (set iff status is done)")
    original_scheduled_date: Optional[date] = Field(
        None,
        description="Date the task was scheduled for before an overdue -> today move",
    )
    top3_slot: Optional[int] = Field(None, ge=1, le=3, description="Slot in the owner's top-3 list")
    last_notified_at: Optional[datetime] = Field(None, description="When a due reminder was last delivered")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class DueTask(BaseModel):
    """A task selected by the due-task scan, with its composed due instant."""

    id: str
    user_id: str
    title: str
    scheduled_date: date
    due_time: time
    timezone: str
    due_at: datetime = Field(..., description="Due instant (naive UTC)")

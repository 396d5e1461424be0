"""Models for the outbound mutation queue and the remote change feed."""

from datetime import datetime
from typing import Any, Dict, Optional
from enum import Enum
from pydantic import BaseModel, Field


class QueueOperationType(str, Enum):
    """Kind of mutation waiting to be applied remotely."""
    UPSERT = "upsert_task"
    DELETE = "delete_task"


class QueueOperation(BaseModel):
    """A pending outbound mutation.

    `payload` is a value snapshot of the task taken at enqueue time, so later
    local edits never change an operation that has not been flushed yet.
    """

    id: str = Field(..., description="Operation identifier (UUID v4)")
    user_id: str = Field(..., description="Owner whose queue holds the operation")
    type: QueueOperationType = Field(..., description="Mutation kind")
    task_id: str = Field(..., description="Target task ID")
    payload: Dict[str, Any] = Field(default_factory=dict, description="JSON snapshot of the task")
    enqueued_at: datetime = Field(..., description="Ordering key (strictly increasing per owner)")
    retry_count: int = Field(0, ge=0, description="Failed remote attempts so far")
    last_error: Optional[str] = Field(None, description="Error text of the last failed attempt")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class DeadLetterOperation(QueueOperation):
    """An operation that exceeded the retry policy and no longer blocks the queue."""

    failed_at: datetime = Field(..., description="When the operation was dead-lettered")


class ChangeEventType(str, Enum):
    """Row-level event kinds delivered by the change feed."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A row-level change on the task entity.

    `new` carries the row after insert/update, `old` the row before a delete
    (at least its `id`). Rows are plain JSON mappings in wire format.
    """

    event_type: ChangeEventType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

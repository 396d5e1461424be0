"""SQLAlchemy models for the device-local database."""

from datetime import datetime
import uuid
from sqlalchemy import Column, String, Integer, SmallInteger, Date, Time, DateTime, JSON, Index

from focusgrid.local.database import LocalBase
from focusgrid.models.task import TaskStatus, TaskPriority
from focusgrid.models.sync import QueueOperationType
from focusgrid.models.constants import DEFAULT_TIMEZONE
from focusgrid.models.rows import enum_to_value, value_to_enum, task_row_kwargs, task_row_to_pydantic


class LocalTaskDB(LocalBase):
    """Device copy of a task, owner-scoped."""

    __tablename__ = "local_tasks"
    __table_args__ = (
        Index("ix_local_tasks_user_status", "user_id", "status"),
        Index("ix_local_tasks_user_scheduled_date", "user_id", "scheduled_date"),
        Index("ix_local_tasks_user_updated_at", "user_id", "updated_at"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)

    title = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default=TaskStatus.TODO.value)
    priority = Column(String, nullable=False, default=TaskPriority.NORMAL.value)
    tags = Column(JSON, nullable=False, default=list)
    estimate_minutes = Column(Integer, nullable=True)
    energy = Column(String, nullable=True)

    scheduled_date = Column(Date, nullable=True)
    due_time = Column(Time, nullable=True)
    timezone = Column(String, nullable=False, default=DEFAULT_TIMEZONE)
    original_scheduled_date = Column(Date, nullable=True)
    top3_slot = Column(SmallInteger, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    last_notified_at = Column(DateTime, nullable=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        return task_row_to_pydantic(self)

    @classmethod
    def from_pydantic(cls, task):
        """Create database model from Pydantic model."""
        return cls(**task_row_kwargs(task))

    def apply(self, task) -> None:
        """Overwrite every column with the values of `task` (full-record replace)."""
        for column, value in task_row_kwargs(task).items():
            setattr(self, column, value)


class OutboxOperationDB(LocalBase):
    """A pending outbound mutation. Ordered per owner by `enqueued_at`."""

    __tablename__ = "outbox_operations"
    __table_args__ = (
        Index("ix_outbox_operations_user_enqueued_at", "user_id", "enqueued_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    task_id = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    enqueued_at = Column(DateTime, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from focusgrid.models.sync import QueueOperation
        return QueueOperation(
            id=self.id,
            user_id=self.user_id,
            type=value_to_enum(self.type, QueueOperationType, QueueOperationType.UPSERT),
            task_id=self.task_id,
            payload=dict(self.payload or {}),
            enqueued_at=self.enqueued_at,
            retry_count=self.retry_count,
            last_error=self.last_error,
        )

    @classmethod
    def from_pydantic(cls, operation):
        """Create database model from Pydantic model."""
        return cls(
            id=operation.id,
            user_id=operation.user_id,
            type=enum_to_value(operation.type),
            task_id=operation.task_id,
            payload=dict(operation.payload),
            enqueued_at=operation.enqueued_at,
            retry_count=operation.retry_count,
            last_error=operation.last_error,
        )


class DeadLetterOperationDB(LocalBase):
    """Operations that exceeded the retry policy, kept for inspection/redrive."""

    __tablename__ = "outbox_dead_letters"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    task_id = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    enqueued_at = Column(DateTime, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)
    failed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from focusgrid.models.sync import DeadLetterOperation
        return DeadLetterOperation(
            id=self.id,
            user_id=self.user_id,
            type=value_to_enum(self.type, QueueOperationType, QueueOperationType.UPSERT),
            task_id=self.task_id,
            payload=dict(self.payload or {}),
            enqueued_at=self.enqueued_at,
            retry_count=self.retry_count,
            last_error=self.last_error,
            failed_at=self.failed_at,
        )


class MetaDB(LocalBase):
    """Small key/value table (pull cursors, one-time migration flags)."""

    __tablename__ = "meta"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)


class LegacyBackupDB(LocalBase):
    """Raw pre-migration snapshots."""

    __tablename__ = "legacy_backups"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class GymSessionDB(LocalBase):
    __tablename__ = "gym_sessions"
    __table_args__ = (
        Index("ix_gym_sessions_user_date", "user_id", "date"),
        Index("ix_gym_sessions_user_updated_at", "user_id", "updated_at"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    session_name = Column(String, nullable=False, default="")
    duration_minutes = Column(Integer, nullable=True)
    effort_1_to_5 = Column(Integer, nullable=True)
    notes = Column(String, nullable=False, default="")
    exercises = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class ThesisLogDB(LocalBase):
    __tablename__ = "thesis_logs"
    __table_args__ = (
        Index("ix_thesis_logs_user_date", "user_id", "date"),
        Index("ix_thesis_logs_user_updated_at", "user_id", "updated_at"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    focus_minutes = Column(Integer, nullable=False, default=0)
    words_written = Column(Integer, nullable=False, default=0)
    note = Column(String, nullable=False, default="")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

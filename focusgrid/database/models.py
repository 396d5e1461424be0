"""SQLAlchemy database models for the focusgrid remote store."""

from datetime import datetime
import uuid
from sqlalchemy import (
    Column,
    String,
    Integer,
    SmallInteger,
    Date,
    Time,
    DateTime,
    JSON,
    CheckConstraint,
    Index,
    UniqueConstraint,
)

from focusgrid.database.database import Base
from focusgrid.models.task import TaskStatus, TaskPriority
from focusgrid.models.rows import task_row_kwargs, task_row_to_pydantic
from focusgrid.models.constants import DEFAULT_TIMEZONE


class TaskDB(Base):
    """Database model for Task (authoritative remote copy)."""

    __tablename__ = "tasks"
    __table_args__ = (
        # One task per top-3 slot per owner. NULL values do not participate.
        UniqueConstraint("user_id", "top3_slot", name="uq_tasks_user_top3_slot"),
        CheckConstraint("top3_slot IS NULL OR top3_slot BETWEEN 1 AND 3", name="ck_tasks_top3_slot_range"),
        CheckConstraint("status IN ('todo', 'done')", name="ck_tasks_status"),
        Index("ix_tasks_user_updated_at", "user_id", "updated_at"),
        Index("ix_tasks_user_schedule", "user_id", "scheduled_date", "due_time"),
        Index("ix_tasks_due_scan", "status", "scheduled_date", "due_time", "last_notified_at"),
    )

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Owner
    user_id = Column(String, nullable=False, index=True)

    # Basic fields
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default=TaskStatus.TODO.value)
    priority = Column(String, nullable=False, default=TaskPriority.NORMAL.value)
    tags = Column(JSON, nullable=False, default=list)
    estimate_minutes = Column(Integer, nullable=True)
    energy = Column(String, nullable=True)

    # Scheduling fields
    scheduled_date = Column(Date, nullable=True)
    due_time = Column(Time, nullable=True)
    timezone = Column(String, nullable=False, default=DEFAULT_TIMEZONE)
    original_scheduled_date = Column(Date, nullable=True)
    top3_slot = Column(SmallInteger, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    last_notified_at = Column(DateTime, nullable=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        return task_row_to_pydantic(self)

    @classmethod
    def from_pydantic(cls, task):
        """Create database model from Pydantic model."""
        return cls(**task_row_kwargs(task))


class PushSubscriptionDB(Base):
    """Database model for a Web Push endpoint registered by a device."""

    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscriptions_user_endpoint"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)

    endpoint = Column(String, nullable=False)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)
    user_agent = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from focusgrid.models.push import PushEndpoint
        return PushEndpoint(
            id=self.id,
            user_id=self.user_id,
            endpoint=self.endpoint,
            p256dh=self.p256dh,
            auth=self.auth,
            user_agent=self.user_agent,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

"""Data models for focusgrid."""

from focusgrid.models.task import Task, TaskStatus, TaskPriority, EnergyLevel, DueTask
from focusgrid.models.sync import (
    QueueOperation,
    QueueOperationType,
    DeadLetterOperation,
    ChangeEvent,
    ChangeEventType,
)
from focusgrid.models.push import PushEndpoint, PushPayload

__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "EnergyLevel",
    "DueTask",
    "QueueOperation",
    "QueueOperationType",
    "DeadLetterOperation",
    "ChangeEvent",
    "ChangeEventType",
    "PushEndpoint",
    "PushPayload",
]

"""Row <-> model conversion helpers shared by the remote and local task tables."""

from typing import Union, TypeVar, Type

from focusgrid.models.task import TaskStatus, TaskPriority, EnergyLevel
from focusgrid.models.constants import DEFAULT_TIMEZONE

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string).

    Args:
        enum_obj: Enum instance or string value

    Returns:
        String value of the enum, or the string itself if already a string
    """
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default.

    Args:
        value: String value to convert
        enum_class: Enum class to convert to
        default: Default enum value if conversion fails

    Returns:
        Enum instance, or default if conversion fails
    """
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


def task_row_kwargs(task) -> dict:
    """Column values for a task row, shared by remote and local task tables."""
    return dict(
        id=task.id,
        user_id=task.user_id,
        title=task.title,
        status=enum_to_value(task.status),
        priority=enum_to_value(task.priority),
        tags=list(task.tags or []),
        scheduled_date=task.scheduled_date,
        due_time=task.due_time,
        estimate_minutes=task.estimate_minutes,
        energy=enum_to_value(task.energy) if task.energy else None,
        timezone=task.timezone or DEFAULT_TIMEZONE,
        created_at=task.created_at,
        updated_at=task.updated_at,
        completed_at=task.completed_at,
        original_scheduled_date=task.original_scheduled_date,
        top3_slot=task.top3_slot,
        last_notified_at=task.last_notified_at,
    )


def task_row_to_pydantic(row):
    """Convert a task row (remote or local table) to the Pydantic model."""
    from focusgrid.models.task import Task

    return Task(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        status=value_to_enum(row.status, TaskStatus, TaskStatus.TODO),
        priority=value_to_enum(row.priority, TaskPriority, TaskPriority.NORMAL),
        tags=row.tags or [],
        scheduled_date=row.scheduled_date,
        due_time=row.due_time,
        estimate_minutes=row.estimate_minutes,
        energy=value_to_enum(row.energy, EnergyLevel, None),
        timezone=row.timezone or DEFAULT_TIMEZONE,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
        original_scheduled_date=row.original_scheduled_date,
        top3_slot=row.top3_slot,
        last_notified_at=row.last_notified_at,
    )



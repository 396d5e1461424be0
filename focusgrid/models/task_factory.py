"""Task creation and normalization for focusgrid.

This module centralizes task creation logic and the normalization applied to
every row that comes from outside the local store (remote pulls, change feed
events, outbox payloads, imports), so that older or partial row shapes are
defaulted rather than rejected.
"""

import logging
import uuid
from datetime import date, datetime, time
from typing import Any, Dict, List, Mapping, Optional

from focusgrid.models.task import Task, TaskStatus, TaskPriority, EnergyLevel
from focusgrid.models.constants import DEFAULT_TIMEZONE, TOP3_SLOTS
from focusgrid.models.timestamps import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

_PRIORITIES = {p.value for p in TaskPriority}
_ENERGY_LEVELS = {e.value for e in EnergyLevel}


def create_task_defaults() -> Dict[str, Any]:
    """Get default task values as a dictionary."""
    return {
        "status": TaskStatus.TODO,
        "priority": TaskPriority.NORMAL,
        "tags": [],
        "scheduled_date": None,
        "due_time": None,
        "estimate_minutes": None,
        "energy": None,
        "timezone": DEFAULT_TIMEZONE,
        "completed_at": None,
        "original_scheduled_date": None,
        "top3_slot": None,
        "last_notified_at": None,
    }


def create_task_base(
    user_id: str,
    title: str,
    priority: Optional[TaskPriority] = None,
    scheduled_date: Optional[date] = None,
    due_time: Optional[time] = None,
    timezone: Optional[str] = None,
    tags: Optional[List[str]] = None,
    estimate_minutes: Optional[int] = None,
    energy: Optional[EnergyLevel] = None,
    now: Optional[datetime] = None,
) -> Task:
    """Create a new open task with defaults, allowing overrides.

    Args:
        user_id: Owner of the task (required)
        title: Task title (required, surrounding whitespace is stripped)
        priority: Task priority (defaults to normal)
        scheduled_date: Planned date
        due_time: Time of day the reminder fires
        timezone: IANA zone used for the due instant (defaults to UTC)
        tags: Free-form tags
        estimate_minutes: Estimated duration
        energy: Energy level
        now: Creation instant (defaults to current UTC time)

    Returns:
        Task object with defaults applied
    """
    stamp = now or utcnow()
    defaults = create_task_defaults()
    return Task(
        **{
            **defaults,
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "title": title.strip(),
            "priority": priority if priority is not None else defaults["priority"],
            "tags": list(tags) if tags is not None else defaults["tags"],
            "scheduled_date": scheduled_date,
            "due_time": due_time,
            "estimate_minutes": estimate_minutes,
            "energy": energy,
            "timezone": timezone or defaults["timezone"],
            "created_at": stamp,
            "updated_at": stamp,
        }
    )


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            logger.debug(f"Ignoring unparsable timestamp {value!r}")
            return None
    return None


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            logger.debug(f"Ignoring unparsable date {value!r}")
            return None
    return None


def _parse_time(value: Any) -> Optional[time]:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            logger.debug(f"Ignoring unparsable time {value!r}")
            return None
    return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_task_record(raw: Mapping[str, Any]) -> Task:
    """Normalize a possibly partial or older-shaped task row into a full Task.

    Missing or invalid fields get explicit defaults instead of failing:
    unknown status -> todo, unknown priority -> normal, missing timezone ->
    UTC, missing timestamps -> now, unparsable optional dates -> None.
    `completed_at` is reconciled with the status.
    """
    now = utcnow()
    status = TaskStatus.DONE.value if raw.get("status") == TaskStatus.DONE.value else TaskStatus.TODO.value
    priority = raw.get("priority") if raw.get("priority") in _PRIORITIES else TaskPriority.NORMAL.value
    energy = raw.get("energy") if raw.get("energy") in _ENERGY_LEVELS else None
    tags = raw.get("tags")
    top3_slot = _parse_int(raw.get("top3_slot"))
    updated_at = _parse_datetime(raw.get("updated_at")) or now

    completed_at = _parse_datetime(raw.get("completed_at"))
    if status == TaskStatus.DONE.value and completed_at is None:
        completed_at = updated_at
    elif status == TaskStatus.TODO.value:
        completed_at = None

    return Task(
        id=str(raw.get("id") or uuid.uuid4()),
        user_id=str(raw.get("user_id") or ""),
        title=str(raw.get("title") or ""),
        status=status,
        priority=priority,
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
        scheduled_date=_parse_date(raw.get("scheduled_date")),
        due_time=_parse_time(raw.get("due_time")),
        estimate_minutes=_parse_int(raw.get("estimate_minutes")),
        energy=energy,
        timezone=str(raw.get("timezone") or DEFAULT_TIMEZONE),
        created_at=_parse_datetime(raw.get("created_at")) or now,
        updated_at=updated_at,
        completed_at=completed_at,
        original_scheduled_date=_parse_date(raw.get("original_scheduled_date")),
        top3_slot=top3_slot if top3_slot in TOP3_SLOTS else None,
        last_notified_at=_parse_datetime(raw.get("last_notified_at")),
    )


def task_to_row(task: Task) -> Dict[str, Any]:
    """Serialize a task to its JSON wire/snapshot form."""
    return task.model_dump(mode="json")

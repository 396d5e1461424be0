"""User-level task actions on the device.

Every action writes through `LocalStore.put`/`delete` with `enqueue=True`, so
the change is queued for the next sync.
"""

import logging
from datetime import date, time
from typing import Any, Dict, List, Optional

from focusgrid.local.store import LocalStore
from focusgrid.models.task import Task, TaskStatus, TaskPriority, EnergyLevel
from focusgrid.models.constants import TOP3_SLOTS
from focusgrid.models.task_factory import create_task_base
from focusgrid.models.timestamps import utcnow

logger = logging.getLogger(__name__)

# Fields a patch may never change
_PROTECTED_FIELDS = {"id", "user_id", "created_at", "updated_at"}


def create_task(
    store: LocalStore,
    user_id: str,
    title: str,
    priority: Optional[TaskPriority] = None,
    scheduled_date: Optional[date] = None,
    due_time: Optional[time] = None,
    timezone: Optional[str] = None,
    tags: Optional[List[str]] = None,
    estimate_minutes: Optional[int] = None,
    energy: Optional[EnergyLevel] = None,
) -> Task:
    """Create an open task and queue it for upload.

    Raises:
        ValueError: If the title is blank
    """
    if not title or not title.strip():
        raise ValueError("Task title cannot be empty")
    task = create_task_base(
        user_id=user_id,
        title=title,
        priority=priority,
        scheduled_date=scheduled_date,
        due_time=due_time,
        timezone=timezone,
        tags=tags,
        estimate_minutes=estimate_minutes,
        energy=energy,
    )
    stored = store.put(task, enqueue=True)
    logger.info(f"Created task {stored.id} for user {user_id}")
    return stored


def update_task(store: LocalStore, user_id: str, task_id: str, patch: Dict[str, Any]) -> Optional[Task]:
    """Apply a partial update to a task.

    Setting `status` to done keeps an existing `completed_at` (or stamps now);
    setting it back to todo clears it.

    Returns:
        The stored task, or None if the task does not exist for this user
    """
    source = store.get(user_id, task_id)
    if source is None:
        return None

    changes = {key: value for key, value in patch.items() if key not in _PROTECTED_FIELDS}
    stamp = utcnow()
    changes["updated_at"] = stamp
    if changes.get("status") == TaskStatus.DONE.value:
        changes["completed_at"] = source.completed_at or stamp
    elif changes.get("status") == TaskStatus.TODO.value:
        changes["completed_at"] = None

    # Round-trip through validation so patched values get coerced like any other input
    task = Task.model_validate({**source.model_dump(), **changes})
    return store.put(task, enqueue=True)


def complete_task(store: LocalStore, user_id: str, task_id: str) -> Optional[Task]:
    return update_task(store, user_id, task_id, {"status": TaskStatus.DONE.value})


def reopen_task(store: LocalStore, user_id: str, task_id: str) -> Optional[Task]:
    return update_task(store, user_id, task_id, {"status": TaskStatus.TODO.value})


def move_to_today(store: LocalStore, user_id: str, task_id: str, today: date) -> Optional[Task]:
    """Reschedule a task to `today`, remembering its first original date."""
    source = store.get(user_id, task_id)
    if source is None:
        return None
    patch: Dict[str, Any] = {"scheduled_date": today}
    if source.original_scheduled_date is None and source.scheduled_date is not None:
        patch["original_scheduled_date"] = source.scheduled_date
    return update_task(store, user_id, task_id, patch)


def assign_top3_slot(store: LocalStore, user_id: str, task_id: str, slot: Optional[int]) -> Optional[Task]:
    """Put a task in a top-3 slot (or clear it with None).

    A task already holding the slot is released first; both writes are queued.
    """
    if slot is not None and slot not in TOP3_SLOTS:
        raise ValueError(f"Invalid top-3 slot: {slot}")
    if store.get(user_id, task_id) is None:
        return None

    if slot is not None:
        for holder in store.list_tasks(user_id):
            if holder.top3_slot == slot and holder.id != task_id:
                update_task(store, user_id, holder.id, {"top3_slot": None})
                logger.debug(f"Released top-3 slot {slot} from task {holder.id}")
    return update_task(store, user_id, task_id, {"top3_slot": slot})


def delete_task(store: LocalStore, user_id: str, task_id: str) -> bool:
    return store.delete(user_id, task_id, enqueue=True)

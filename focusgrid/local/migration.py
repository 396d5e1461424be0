"""One-time import of the legacy single-device storage format."""

import json
import logging
import uuid
from datetime import date, datetime, timezone as dt_timezone
from typing import Any, Dict, List, Mapping, Optional

from focusgrid.local.store import LocalStore
from focusgrid.models.task import Task, TaskStatus, TaskPriority
from focusgrid.models.constants import LEGACY_MIGRATED_TAG, LEGACY_TASK_TITLE
from focusgrid.models.timestamps import utcnow

logger = logging.getLogger(__name__)

# Legacy IDs larger than this are millisecond epoch timestamps
_EPOCH_MS_THRESHOLD = 1_000_000_000_000


def migration_meta_key(user_id: str) -> str:
    return f"legacy_migration_done_{user_id}"


def _safe_json_list(raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparsable legacy task list")
        return []
    return parsed if isinstance(parsed, list) else []


def _legacy_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def legacy_to_task(legacy: Mapping[str, Any], user_id: str, timezone: str, today: date) -> Task:
    """Convert one legacy task entry (`text`, `completed`, `priority`, `date`, `migrated`)."""
    now = utcnow()
    legacy_id = legacy.get("id")
    created_at = now
    if isinstance(legacy_id, (int, float)) and not isinstance(legacy_id, bool) and legacy_id > _EPOCH_MS_THRESHOLD:
        created_at = datetime.fromtimestamp(legacy_id / 1000, tz=dt_timezone.utc).replace(tzinfo=None)

    priority = legacy.get("priority")
    if priority not in {p.value for p in TaskPriority}:
        priority = TaskPriority.NORMAL.value
    completed = bool(legacy.get("completed"))
    migrated = bool(legacy.get("migrated"))
    legacy_date = _legacy_date(legacy.get("date"))
    text = legacy.get("text")

    return Task(
        id=str(uuid.uuid4()),
        user_id=user_id,
        title=(text.strip() if isinstance(text, str) else "") or LEGACY_TASK_TITLE,
        status=TaskStatus.DONE if completed else TaskStatus.TODO,
        priority=priority,
        tags=[LEGACY_MIGRATED_TAG] if migrated else [],
        scheduled_date=legacy_date or today,
        timezone=timezone,
        created_at=created_at,
        updated_at=now,
        completed_at=now if completed else None,
        original_scheduled_date=legacy_date if migrated else None,
    )


def migrate_legacy_data_if_needed(
    store: LocalStore,
    user_id: str,
    snapshot: Mapping[str, Optional[str]],
    timezone: str,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Run the legacy migration once per owner.

    A non-empty snapshot is always backed up raw. Legacy tasks are converted
    only when the owner has no tasks yet; converted tasks are queued for
    upload.

    Args:
        store: Device store
        user_id: Owner to migrate into
        snapshot: Legacy key -> raw JSON string (or None when the key is absent)
        timezone: IANA zone assigned to converted tasks
        today: Date used for legacy tasks without one (defaults to today, UTC)

    Returns:
        {"migrated_tasks": int, "had_legacy_data": bool}
    """
    meta_key = migration_meta_key(user_id)
    if store.get_meta(meta_key) == "yes":
        return {"migrated_tasks": 0, "had_legacy_data": False}

    had_legacy_data = any(value is not None for value in snapshot.values())
    if had_legacy_data:
        store.add_legacy_backup(user_id, dict(snapshot))

    legacy_tasks = [item for item in _safe_json_list(snapshot.get("fg_tasks")) if isinstance(item, dict)]
    migrated = 0
    if legacy_tasks and not store.list_tasks(user_id):
        day = today or utcnow().date()
        for legacy in legacy_tasks:
            store.put(legacy_to_task(legacy, user_id, timezone, day), enqueue=True)
            migrated += 1

    store.set_meta(meta_key, "yes")
    logger.info(f"Legacy migration for user {user_id}: {migrated} tasks (had legacy data: {had_legacy_data})")
    return {"migrated_tasks": migrated, "had_legacy_data": had_legacy_data}

"""JSON export/import of one owner's local data."""

import logging
from typing import Any, Dict

from focusgrid.local.store import LocalStore
from focusgrid.models.records import GymSession, ThesisLog
from focusgrid.models.task_factory import normalize_task_record, task_to_row
from focusgrid.models.timestamps import utcnow

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


def serialize_backup(store: LocalStore, user_id: str) -> Dict[str, Any]:
    """Snapshot tasks, plain records and legacy backups of an owner as JSON-ready data."""
    return {
        "version": BACKUP_VERSION,
        "exported_at": utcnow().isoformat(),
        "user_id": user_id,
        "tasks": [task_to_row(task) for task in store.list_tasks(user_id)],
        "gym_sessions": [s.model_dump(mode="json") for s in store.list_gym_sessions(user_id)],
        "thesis_logs": [log.model_dump(mode="json") for log in store.list_thesis_logs(user_id)],
        "legacy_backups": [b.model_dump(mode="json") for b in store.list_legacy_backups(user_id)],
    }


def _is_record_list(value: Any, *required: str) -> bool:
    return isinstance(value, list) and all(
        isinstance(item, dict) and all(isinstance(item.get(key), str) for key in required)
        for item in value
    )


def import_backup_payload(store: LocalStore, user_id: str, payload: Any) -> Dict[str, int]:
    """Import a backup into the store under `user_id`.

    Records are re-owned by `user_id`; tasks are normalized and queued for
    upload. Sections that are missing or malformed are skipped.

    Raises:
        ValueError: If the payload is not a JSON object
    """
    if not isinstance(payload, dict):
        raise ValueError("Backup payload must be a JSON object")

    counts = {"tasks": 0, "gym_sessions": 0, "thesis_logs": 0, "legacy_backups": 0}

    tasks = payload.get("tasks")
    if _is_record_list(tasks, "id", "title"):
        for raw in tasks:
            task = normalize_task_record({**raw, "user_id": user_id})
            store.put(task, enqueue=True)
            counts["tasks"] += 1

    sessions = payload.get("gym_sessions")
    if _is_record_list(sessions, "id", "session_name"):
        for raw in sessions:
            now = utcnow()
            session = GymSession.model_validate(
                {
                    **raw,
                    "user_id": user_id,
                    "date": raw.get("date") or now.date().isoformat(),
                    "exercises": raw.get("exercises") if isinstance(raw.get("exercises"), list) else [],
                    "created_at": raw.get("created_at") or now,
                    "updated_at": raw.get("updated_at") or now,
                }
            )
            store.put_gym_session(session)
            counts["gym_sessions"] += 1

    logs = payload.get("thesis_logs")
    if _is_record_list(logs, "id", "date"):
        for raw in logs:
            now = utcnow()
            log = ThesisLog.model_validate(
                {
                    **raw,
                    "user_id": user_id,
                    "focus_minutes": raw.get("focus_minutes") or 0,
                    "words_written": raw.get("words_written") or 0,
                    "note": raw.get("note") or "",
                    "created_at": raw.get("created_at") or now,
                    "updated_at": raw.get("updated_at") or now,
                }
            )
            store.put_thesis_log(log)
            counts["thesis_logs"] += 1

    backups = payload.get("legacy_backups")
    if isinstance(backups, list):
        for backup in backups:
            if isinstance(backup, dict) and isinstance(backup.get("payload"), dict):
                store.add_legacy_backup(user_id, backup["payload"])
                counts["legacy_backups"] += 1

    logger.info(f"Imported backup for user {user_id}: {counts}")
    return counts

"""Repository layer for remote task store operations."""

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, List, Optional, Set
from sqlalchemy.orm import Session
from sqlalchemy import asc, func

from focusgrid.models.task import Task, TaskStatus
from focusgrid.models.sync import ChangeEvent, ChangeEventType
from focusgrid.models.timestamps import stamp_after, utcnow
from focusgrid.models.task_factory import task_to_row
from focusgrid.database.models import TaskDB
from focusgrid.models.rows import task_row_kwargs

if TYPE_CHECKING:
    from focusgrid.sync.change_feed import ChangeFeed

logger = logging.getLogger(__name__)


class TaskRepository:
    """Repository for the authoritative task table.

    Every write stamps `updated_at` with the server clock, strictly past the
    stored value, so device pull cursors only ever move forward. When a change
    feed is attached, committed writes are published to it.
    """

    def __init__(self, db: Session, feed: Optional["ChangeFeed"] = None):
        self.db = db
        self.feed = feed

    def _as_unique_ids(self, task_ids: List[str]) -> List[str]:
        """Deduplicate while preserving order."""
        seen: Set[str] = set()
        unique: List[str] = []
        for task_id in task_ids:
            if task_id not in seen:
                seen.add(task_id)
                unique.append(task_id)
        return unique

    def _publish(self, user_id: str, event: ChangeEvent) -> None:
        if self.feed is not None:
            self.feed.publish(user_id, event)

    def _latest_stamp(self, user_id: str) -> Optional[datetime]:
        """Newest `updated_at` among the owner's tasks, so stamps never tie within one owner."""
        return self.db.query(func.max(TaskDB.updated_at)).filter(TaskDB.user_id == user_id).scalar()

    def get(self, user_id: str, task_id: str) -> Optional[Task]:
        """Get task by ID for a specific user."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
        ).first()
        return task_db.to_pydantic() if task_db else None

    def get_all(self, user_id: str) -> List[Task]:
        """Get all tasks for a user ordered by last update."""
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
        ).order_by(asc(TaskDB.updated_at)).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def upsert(self, task: Task) -> Task:
        """Insert or fully replace a task keyed by its ID.

        A task claiming a top-3 slot held by another of the owner's tasks takes
        it over; the previous holder is released and stamped first.

        Raises:
            ValueError: If the ID is already used by another owner's task
        """
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task.id).first()
        if task_db is not None and task_db.user_id != task.user_id:
            raise ValueError(f"Task {task.id} belongs to another user")

        inserted = task_db is None
        values = task_row_kwargs(task)
        latest = self._latest_stamp(task.user_id)

        released = None
        if task.top3_slot is not None:
            released = self.db.query(TaskDB).filter(
                TaskDB.user_id == task.user_id,
                TaskDB.top3_slot == task.top3_slot,
                TaskDB.id != task.id,
            ).first()

        try:
            if released is not None:
                released.top3_slot = None
                released.updated_at = stamp_after(latest)
                latest = released.updated_at
                self.db.flush()
            values["updated_at"] = stamp_after(latest)
            if inserted:
                task_db = TaskDB(**values)
                self.db.add(task_db)
            else:
                for column, value in values.items():
                    setattr(task_db, column, value)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Upserted task {task.id} for user {task.user_id} (inserted={inserted})")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to upsert task {task.id}: {type(e).__name__}: {str(e)}")
            raise

        if released is not None:
            logger.info(f"Released top-3 slot {task.top3_slot} from task {released.id}")
            self._publish(
                released.user_id,
                ChangeEvent(event_type=ChangeEventType.UPDATE, new=task_to_row(released.to_pydantic())),
            )
        stored = task_db.to_pydantic()
        self._publish(
            stored.user_id,
            ChangeEvent(
                event_type=ChangeEventType.INSERT if inserted else ChangeEventType.UPDATE,
                new=task_to_row(stored),
            ),
        )
        return stored

    def delete(self, user_id: str, task_id: str) -> bool:
        """Permanently delete a task by ID for a specific user (no tombstone)."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
        ).first()
        if not task_db:
            return False

        try:
            self.db.delete(task_db)
            self.db.commit()
            logger.debug(f"Deleted task {task_id}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete task {task_id}: {type(e).__name__}: {str(e)}")
            raise

        self._publish(
            user_id,
            ChangeEvent(event_type=ChangeEventType.DELETE, old={"id": task_id, "user_id": user_id}),
        )
        return True

    def list_changed_since(self, user_id: str, since: datetime, limit: int) -> List[Task]:
        """Tasks of a user with `updated_at` strictly after `since`, oldest first, at most `limit`."""
        tasks_db = (
            self.db.query(TaskDB)
            .filter(TaskDB.user_id == user_id, TaskDB.updated_at > since)
            .order_by(asc(TaskDB.updated_at), asc(TaskDB.id))
            .limit(limit)
            .all()
        )
        return [task_db.to_pydantic() for task_db in tasks_db]

    def list_due_candidates(self, earliest: date, latest: date) -> List[Task]:
        """Open tasks with both a date and a time, scheduled within [earliest, latest].

        This is the coarse SQL pre-filter of the due scan; the exact due instant
        depends on each task's timezone and is checked by the caller.
        """
        tasks_db = (
            self.db.query(TaskDB)
            .filter(
                TaskDB.status == TaskStatus.TODO.value,
                TaskDB.scheduled_date.isnot(None),
                TaskDB.due_time.isnot(None),
                TaskDB.scheduled_date >= earliest,
                TaskDB.scheduled_date <= latest,
            )
            .all()
        )
        return [task_db.to_pydantic() for task_db in tasks_db]

    def mark_tasks_notified(self, task_ids: List[str], now: Optional[datetime] = None) -> int:
        """Set `last_notified_at` for exactly these tasks and bump their `updated_at`.

        Unconditional: calling it again refreshes the timestamp.

        Returns:
            Number of tasks updated
        """
        unique_ids = self._as_unique_ids(task_ids)
        if not unique_ids:
            return 0

        stamp = now or utcnow()
        rows = (
            self.db.query(TaskDB)
            .filter(TaskDB.id.in_(unique_ids))
            .order_by(asc(TaskDB.user_id), asc(TaskDB.id))
            .all()
        )
        latest = {}
        try:
            for row in rows:
                if row.user_id not in latest:
                    latest[row.user_id] = self._latest_stamp(row.user_id)
                row.last_notified_at = stamp
                row.updated_at = stamp_after(latest[row.user_id], stamp)
                latest[row.user_id] = row.updated_at
            self.db.commit()
            logger.debug(f"Marked {len(rows)} tasks notified at {stamp.isoformat()}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to mark tasks notified: {type(e).__name__}: {str(e)}")
            raise

        for row in rows:
            stored = row.to_pydantic()
            self._publish(stored.user_id, ChangeEvent(event_type=ChangeEventType.UPDATE, new=task_to_row(stored)))
        return len(rows)

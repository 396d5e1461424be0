"""Device-local store: owner-scoped task table, metadata and plain records."""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional
from sqlalchemy import asc
from sqlalchemy.orm import Session

from focusgrid.local.models import (
    LocalTaskDB,
    MetaDB,
    LegacyBackupDB,
    GymSessionDB,
    ThesisLogDB,
)
from focusgrid.local.outbox import OutboxQueue, RetryPolicy
from focusgrid.models.task import Task, TaskStatus
from focusgrid.models.records import GymSession, ThesisLog, LegacyBackup
from focusgrid.models.timestamps import as_naive_utc, stamp_after, utcnow

logger = logging.getLogger(__name__)


def _gym_session_to_pydantic(row: GymSessionDB) -> GymSession:
    return GymSession(
        id=row.id,
        user_id=row.user_id,
        date=row.date,
        session_name=row.session_name,
        duration_minutes=row.duration_minutes,
        effort_1_to_5=row.effort_1_to_5,
        notes=row.notes or "",
        exercises=row.exercises or [],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _thesis_log_to_pydantic(row: ThesisLogDB) -> ThesisLog:
    return ThesisLog(
        id=row.id,
        user_id=row.user_id,
        date=row.date,
        focus_minutes=row.focus_minutes,
        words_written=row.words_written,
        note=row.note or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class LocalStore:
    """Per-device persisted state for any number of owners.

    Writes are serialized by one re-entrant lock (shared with the outbox), so a
    read-compare-write merge is atomic with respect to local edits and change
    feed events arriving on other threads.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self.outbox = OutboxQueue(session_factory, retry_policy=retry_policy, lock=self._lock)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        with self._lock, self._session_factory() as db:
            try:
                yield db
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to {action}: {type(e).__name__}: {str(e)}")
                raise

    # Tasks

    def get(self, user_id: str, task_id: str) -> Optional[Task]:
        with self._session_factory() as db:
            row = db.get(LocalTaskDB, task_id)
            if row is None or row.user_id != user_id:
                return None
            return row.to_pydantic()

    def put(self, task: Task, enqueue: bool = True) -> Task:
        """Write a task and, if requested, queue the matching upsert.

        The written `updated_at` is moved past the stored one when needed and
        `completed_at` is made consistent with the status.

        Raises:
            ValueError: If the task ID belongs to another owner, or the write
                claims a top-3 slot already held by another task of the same owner
        """
        with self._transaction(f"put task {task.id}") as db:
            row = db.get(LocalTaskDB, task.id)
            if row is not None and row.user_id != task.user_id:
                raise ValueError(f"Task {task.id} belongs to another user")

            stamp = stamp_after(row.updated_at if row is not None else None, task.updated_at)
            completed_at = task.completed_at
            if task.status == TaskStatus.DONE.value:
                completed_at = as_naive_utc(completed_at) or stamp
            else:
                completed_at = None
            stored = task.model_copy(update={"updated_at": stamp, "completed_at": completed_at})

            claims_slot = stored.top3_slot is not None and (row is None or row.top3_slot != stored.top3_slot)
            if claims_slot:
                holder = (
                    db.query(LocalTaskDB)
                    .filter(
                        LocalTaskDB.user_id == stored.user_id,
                        LocalTaskDB.top3_slot == stored.top3_slot,
                        LocalTaskDB.id != stored.id,
                    )
                    .first()
                )
                if holder is not None:
                    raise ValueError(f"Top-3 slot {stored.top3_slot} is already held by task {holder.id}")

            if row is None:
                db.add(LocalTaskDB.from_pydantic(stored))
            else:
                row.apply(stored)
            if enqueue:
                self.outbox.add_upsert(db, stored)

        logger.debug(f"Stored task {stored.id} for user {stored.user_id} (enqueued={enqueue})")
        return stored

    def delete(self, user_id: str, task_id: str, enqueue: bool = True) -> bool:
        """Remove a task (no tombstone) and optionally queue the remote delete.

        Returns:
            True if a local record was removed
        """
        with self._transaction(f"delete task {task_id}") as db:
            row = db.get(LocalTaskDB, task_id)
            removed = row is not None and row.user_id == user_id
            if removed:
                db.delete(row)
            if enqueue:
                self.outbox.add_delete(db, user_id, task_id)
        logger.debug(f"Deleted task {task_id} for user {user_id} (removed={removed}, enqueued={enqueue})")
        return removed

    def merge_incoming(self, tasks: Iterable[Task]) -> int:
        """Apply remote versions with last-write-wins.

        Incoming replaces the stored record only when its `updated_at` is
        strictly greater; ties keep the stored record, so merging the same
        snapshot twice is a no-op. Nothing is enqueued.

        An applied record that holds a top-3 slot settles it against any
        other local holder: the more recently written task keeps the slot and
        the other one is released in place (its `updated_at` is unchanged).

        Returns:
            Number of records inserted or replaced
        """
        applied = 0
        with self._transaction("merge incoming tasks") as db:
            for task in tasks:
                incoming = task.model_copy(update={"updated_at": as_naive_utc(task.updated_at)})
                row = db.get(LocalTaskDB, incoming.id)
                if row is None:
                    row = LocalTaskDB.from_pydantic(incoming)
                    db.add(row)
                elif row.user_id != incoming.user_id:
                    logger.warning(f"Skipping incoming task {incoming.id}: owner mismatch")
                    continue
                elif incoming.updated_at > row.updated_at:
                    row.apply(incoming)
                else:
                    continue
                # Later duplicates in the same batch compare against this one.
                db.flush()
                if row.top3_slot is not None:
                    self._settle_slot(db, row)
                applied += 1
        if applied:
            logger.debug(f"Merged {applied} incoming tasks")
        return applied

    def _settle_slot(self, db: Session, row: LocalTaskDB) -> None:
        rivals = (
            db.query(LocalTaskDB)
            .filter(
                LocalTaskDB.user_id == row.user_id,
                LocalTaskDB.top3_slot == row.top3_slot,
                LocalTaskDB.id != row.id,
            )
            .all()
        )
        if not rivals:
            return
        keeper = max([row, *rivals], key=lambda r: (r.updated_at, r.id))
        for holder in [row, *rivals]:
            if holder is not keeper:
                logger.info(f"Released top-3 slot {holder.top3_slot} from task {holder.id} (held by {keeper.id})")
                holder.top3_slot = None
        db.flush()

    def list_tasks(self, user_id: str) -> List[Task]:
        with self._session_factory() as db:
            rows = (
                db.query(LocalTaskDB)
                .filter(LocalTaskDB.user_id == user_id)
                .order_by(asc(LocalTaskDB.created_at), asc(LocalTaskDB.id))
                .all()
            )
            return [row.to_pydantic() for row in rows]

    def list_by_status(self, user_id: str, status: TaskStatus) -> List[Task]:
        value = status.value if isinstance(status, TaskStatus) else str(status)
        with self._session_factory() as db:
            rows = (
                db.query(LocalTaskDB)
                .filter(LocalTaskDB.user_id == user_id, LocalTaskDB.status == value)
                .order_by(asc(LocalTaskDB.created_at), asc(LocalTaskDB.id))
                .all()
            )
            return [row.to_pydantic() for row in rows]

    def list_by_scheduled_date(self, user_id: str, start: date, end: Optional[date] = None) -> List[Task]:
        """Tasks scheduled within [start, end] (a single day when `end` is omitted)."""
        last = end or start
        with self._session_factory() as db:
            rows = (
                db.query(LocalTaskDB)
                .filter(
                    LocalTaskDB.user_id == user_id,
                    LocalTaskDB.scheduled_date >= start,
                    LocalTaskDB.scheduled_date <= last,
                )
                .order_by(asc(LocalTaskDB.scheduled_date), asc(LocalTaskDB.due_time), asc(LocalTaskDB.id))
                .all()
            )
            return [row.to_pydantic() for row in rows]

    def list_updated_since(self, user_id: str, since: datetime) -> List[Task]:
        """Tasks with `updated_at` strictly after `since`, oldest first."""
        with self._session_factory() as db:
            rows = (
                db.query(LocalTaskDB)
                .filter(LocalTaskDB.user_id == user_id, LocalTaskDB.updated_at > as_naive_utc(since))
                .order_by(asc(LocalTaskDB.updated_at), asc(LocalTaskDB.id))
                .all()
            )
            return [row.to_pydantic() for row in rows]

    # Metadata

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._session_factory() as db:
            row = db.get(MetaDB, key)
            return row.value if row is not None else default

    def set_meta(self, key: str, value: str) -> None:
        with self._transaction(f"set meta {key}") as db:
            row = db.get(MetaDB, key)
            if row is None:
                db.add(MetaDB(key=key, value=value))
            else:
                row.value = value

    # Legacy backups and plain records

    def add_legacy_backup(self, user_id: str, payload: Dict[str, Optional[str]]) -> LegacyBackup:
        backup = LegacyBackup(id=str(uuid.uuid4()), user_id=user_id, payload=dict(payload), created_at=utcnow())
        with self._transaction(f"store legacy backup for user {user_id}") as db:
            db.add(LegacyBackupDB(**backup.model_dump()))
        logger.info(f"Stored legacy backup {backup.id} for user {user_id}")
        return backup

    def list_legacy_backups(self, user_id: str) -> List[LegacyBackup]:
        with self._session_factory() as db:
            rows = (
                db.query(LegacyBackupDB)
                .filter(LegacyBackupDB.user_id == user_id)
                .order_by(asc(LegacyBackupDB.created_at))
                .all()
            )
            return [
                LegacyBackup(id=row.id, user_id=row.user_id, payload=row.payload or {}, created_at=row.created_at)
                for row in rows
            ]

    def put_gym_session(self, session: GymSession) -> GymSession:
        values = session.model_dump()
        with self._transaction(f"put gym session {session.id}") as db:
            row = db.get(GymSessionDB, session.id)
            if row is None:
                db.add(GymSessionDB(**values))
            else:
                for column, value in values.items():
                    setattr(row, column, value)
        return session

    def list_gym_sessions(self, user_id: str) -> List[GymSession]:
        with self._session_factory() as db:
            rows = (
                db.query(GymSessionDB)
                .filter(GymSessionDB.user_id == user_id)
                .order_by(asc(GymSessionDB.date), asc(GymSessionDB.id))
                .all()
            )
            return [_gym_session_to_pydantic(row) for row in rows]

    def put_thesis_log(self, log: ThesisLog) -> ThesisLog:
        values = log.model_dump()
        with self._transaction(f"put thesis log {log.id}") as db:
            row = db.get(ThesisLogDB, log.id)
            if row is None:
                db.add(ThesisLogDB(**values))
            else:
                for column, value in values.items():
                    setattr(row, column, value)
        return log

    def list_thesis_logs(self, user_id: str) -> List[ThesisLog]:
        with self._session_factory() as db:
            rows = (
                db.query(ThesisLogDB)
                .filter(ThesisLogDB.user_id == user_id)
                .order_by(asc(ThesisLogDB.date), asc(ThesisLogDB.id))
                .all()
            )
            return [_thesis_log_to_pydantic(row) for row in rows]

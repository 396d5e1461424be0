"""Outbox queue: ordered log of local mutations not yet applied remotely.

One FIFO per owner, ordered by `enqueued_at`. Operations are removed only on
confirmed remote application and are never reordered. A failed operation
stays at the head of its owner's queue until it succeeds or exceeds the
retry policy, at which point it moves to the dead-letter table.
"""

import logging
import os
import threading
import uuid
from typing import Callable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from focusgrid.local.models import OutboxOperationDB, DeadLetterOperationDB
from focusgrid.models.task import Task
from focusgrid.models.sync import QueueOperation, QueueOperationType, DeadLetterOperation
from focusgrid.models.constants import OUTBOX_MAX_RETRIES, SYNC_BATCH_SIZE
from focusgrid.models.task_factory import task_to_row
from focusgrid.models.timestamps import stamp_after, utcnow

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Bounded retries for outbox operations.

    `max_retries=None` keeps an operation queued forever (legacy behaviour).
    """

    def __init__(self, max_retries: Optional[int] = OUTBOX_MAX_RETRIES):
        if max_retries is not None and max_retries < 1:
            raise ValueError("max_retries must be >= 1 or None")
        self.max_retries = max_retries

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        """Read OUTBOX_MAX_RETRIES ("unbounded" disables the cap)."""
        raw = os.getenv("OUTBOX_MAX_RETRIES", str(OUTBOX_MAX_RETRIES)).strip().lower()
        if raw in ("unbounded", "none"):
            return cls(None)
        return cls(int(raw))

    def exhausted(self, retry_count: int) -> bool:
        return self.max_retries is not None and retry_count >= self.max_retries


class OutboxQueue:
    """Owner-scoped FIFO of pending upserts/deletes."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        retry_policy: Optional[RetryPolicy] = None,
        lock: Optional[threading.RLock] = None,
    ):
        self._session_factory = session_factory
        self.retry_policy = retry_policy or RetryPolicy()
        self._lock = lock or threading.RLock()

    def _next_enqueued_at(self, db: Session, user_id: str):
        last = (
            db.query(func.max(OutboxOperationDB.enqueued_at))
            .filter(OutboxOperationDB.user_id == user_id)
            .scalar()
        )
        return stamp_after(last)

    def _add(self, db: Session, user_id: str, op_type: QueueOperationType, task_id: str, payload: dict) -> QueueOperation:
        operation = QueueOperation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=op_type,
            task_id=task_id,
            payload=payload,
            enqueued_at=self._next_enqueued_at(db, user_id),
            retry_count=0,
        )
        db.add(OutboxOperationDB.from_pydantic(operation))
        # Flush so a second add in the same transaction sees this stamp.
        db.flush()
        return operation

    def add_upsert(self, db: Session, task: Task) -> QueueOperation:
        """Append an upsert inside the caller's transaction (no commit)."""
        return self._add(db, task.user_id, QueueOperationType.UPSERT, task.id, task_to_row(task))

    def add_delete(self, db: Session, user_id: str, task_id: str) -> QueueOperation:
        """Append a delete inside the caller's transaction (no commit)."""
        return self._add(db, user_id, QueueOperationType.DELETE, task_id, {"id": task_id})

    def _commit(self, db: Session, action: str) -> None:
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}: {str(e)}")
            raise

    def enqueue_upsert(self, task: Task) -> QueueOperation:
        with self._lock, self._session_factory() as db:
            operation = self.add_upsert(db, task)
            self._commit(db, f"enqueue upsert for task {task.id}")
        logger.debug(f"Enqueued upsert {operation.id} for task {task.id}")
        return operation

    def enqueue_delete(self, user_id: str, task_id: str) -> QueueOperation:
        with self._lock, self._session_factory() as db:
            operation = self.add_delete(db, user_id, task_id)
            self._commit(db, f"enqueue delete for task {task_id}")
        logger.debug(f"Enqueued delete {operation.id} for task {task_id}")
        return operation

    def drain_batch(self, user_id: str, limit: int = SYNC_BATCH_SIZE) -> List[QueueOperation]:
        """Up to `limit` pending operations of an owner, oldest first."""
        with self._session_factory() as db:
            rows = (
                db.query(OutboxOperationDB)
                .filter(OutboxOperationDB.user_id == user_id)
                .order_by(OutboxOperationDB.enqueued_at, OutboxOperationDB.id)
                .limit(limit)
                .all()
            )
            return [row.to_pydantic() for row in rows]

    def pending_count(self, user_id: str) -> int:
        with self._session_factory() as db:
            return db.query(OutboxOperationDB).filter(OutboxOperationDB.user_id == user_id).count()

    def get(self, operation_id: str) -> Optional[QueueOperation]:
        with self._session_factory() as db:
            row = db.get(OutboxOperationDB, operation_id)
            return row.to_pydantic() if row else None

    def mark_processed(self, operation_id: str) -> bool:
        """Remove an operation after confirmed remote application."""
        with self._lock, self._session_factory() as db:
            row = db.get(OutboxOperationDB, operation_id)
            if row is None:
                return False
            db.delete(row)
            self._commit(db, f"remove processed operation {operation_id}")
            return True

    def record_failure(self, operation_id: str, error: Optional[BaseException] = None) -> bool:
        """Count a failed attempt; dead-letter the operation once the policy is exhausted.

        Returns:
            True if the operation was moved to the dead-letter table
        """
        with self._lock, self._session_factory() as db:
            row = db.get(OutboxOperationDB, operation_id)
            if row is None:
                return False
            row.retry_count = row.retry_count + 1
            row.last_error = f"{type(error).__name__}: {error}" if error is not None else None

            dead_lettered = self.retry_policy.exhausted(row.retry_count)
            if dead_lettered:
                db.add(
                    DeadLetterOperationDB(
                        id=row.id,
                        user_id=row.user_id,
                        type=row.type,
                        task_id=row.task_id,
                        payload=row.payload,
                        enqueued_at=row.enqueued_at,
                        retry_count=row.retry_count,
                        last_error=row.last_error,
                        failed_at=utcnow(),
                    )
                )
                db.delete(row)
            self._commit(db, f"record failure for operation {operation_id}")

        if dead_lettered:
            logger.warning(
                f"Dead-lettered operation {operation_id} after {self.retry_policy.max_retries} attempts"
            )
        else:
            logger.warning(f"Operation {operation_id} failed; will retry on next flush")
        return dead_lettered

    def list_dead_letters(self, user_id: str) -> List[DeadLetterOperation]:
        with self._session_factory() as db:
            rows = (
                db.query(DeadLetterOperationDB)
                .filter(DeadLetterOperationDB.user_id == user_id)
                .order_by(DeadLetterOperationDB.enqueued_at)
                .all()
            )
            return [row.to_pydantic() for row in rows]

    def requeue_dead_letter(self, operation_id: str) -> Optional[QueueOperation]:
        """Move a dead-lettered operation back to the tail of its owner's queue."""
        with self._lock, self._session_factory() as db:
            dead = db.get(DeadLetterOperationDB, operation_id)
            if dead is None:
                return None
            operation = QueueOperation(
                id=dead.id,
                user_id=dead.user_id,
                type=dead.type,
                task_id=dead.task_id,
                payload=dict(dead.payload or {}),
                enqueued_at=self._next_enqueued_at(db, dead.user_id),
                retry_count=0,
            )
            db.delete(dead)
            db.add(OutboxOperationDB.from_pydantic(operation))
            self._commit(db, f"requeue dead-lettered operation {operation_id}")
        logger.info(f"Requeued dead-lettered operation {operation_id}")
        return operation

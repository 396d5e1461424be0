"""Sync coordinator: flush the outbox, then pull remote changes.

One logical sync per owner at a time. A sync requested while another is in
flight for the same owner is coalesced into it: the caller returns at once
and the running sync performs one more pass before finishing.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from focusgrid.local.store import LocalStore
from focusgrid.models.constants import PULL_BATCH_LIMIT, PULL_CURSOR_EPOCH, SYNC_BATCH_SIZE
from focusgrid.models.sync import QueueOperation, QueueOperationType
from focusgrid.models.task_factory import normalize_task_record
from focusgrid.models.timestamps import as_naive_utc
from focusgrid.sync.remote import RemoteStore

logger = logging.getLogger(__name__)


def pull_cursor_key(user_id: str) -> str:
    return f"tasks_last_pull_{user_id}"


class SyncCancelled(Exception):
    """Raised inside a sync that was abandoned through its cancellation token."""


class CancellationToken:
    """Cooperative cancellation flag checked between sync steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("Sync was cancelled")


@dataclass
class FlushResult:
    flushed: int = 0
    failed_operation_id: Optional[str] = None
    error: Optional[str] = None
    dead_lettered: bool = False


@dataclass
class PullResult:
    pulled: int = 0
    merged: int = 0
    cursor: Optional[datetime] = None


@dataclass
class SyncResult:
    """Outcome of `sync_now` (totals across coalesced passes)."""

    user_id: str
    coalesced: bool = False
    runs: int = 0
    flushed: int = 0
    pulled: int = 0
    merged: int = 0
    failed_operation_id: Optional[str] = None
    error: Optional[str] = None
    dead_lettered: List[str] = field(default_factory=list)


class _OwnerState:
    def __init__(self):
        self.lock = threading.Lock()
        self.running = False
        self.rerun = False
        self.token: Optional[CancellationToken] = None


class SyncCoordinator:
    """Runs `flush_queue` + `pull_updates` as one single-flight unit per owner."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        *,
        pull_limit: int = PULL_BATCH_LIMIT,
        batch_size: int = SYNC_BATCH_SIZE,
    ):
        self.store = store
        self.remote = remote
        self.pull_limit = pull_limit
        self.batch_size = batch_size
        self._states: Dict[str, _OwnerState] = {}
        self._states_lock = threading.Lock()
        self._closed = False

    def _state_for(self, user_id: str) -> _OwnerState:
        with self._states_lock:
            state = self._states.get(user_id)
            if state is None:
                state = _OwnerState()
                self._states[user_id] = state
            return state

    def is_syncing(self, user_id: str) -> bool:
        state = self._state_for(user_id)
        with state.lock:
            return state.running

    def cancel(self, user_id: str) -> bool:
        """Abandon the in-flight sync of an owner (e.g. on logout).

        Returns:
            True if a running sync was signalled
        """
        state = self._state_for(user_id)
        with state.lock:
            state.rerun = False
            if state.token is None:
                return False
            state.token.cancel()
        logger.info(f"Cancelling in-flight sync for user {user_id}")
        return True

    def close(self) -> None:
        """Cancel every in-flight sync and refuse new ones."""
        self._closed = True
        with self._states_lock:
            user_ids = list(self._states)
        for user_id in user_ids:
            self.cancel(user_id)

    # Steps

    def _apply(self, operation: QueueOperation) -> None:
        if operation.type == QueueOperationType.UPSERT.value:
            self.remote.upsert_task(operation.payload)
        elif operation.type == QueueOperationType.DELETE.value:
            self.remote.delete_task(operation.user_id, operation.task_id)
        else:
            raise ValueError(f"Unknown queue operation type: {operation.type}")

    def flush_queue(self, user_id: str, token: Optional[CancellationToken] = None) -> FlushResult:
        """Replay up to one batch of queued operations in order.

        The first failure stops the batch: the failed operation stays at the
        head of the queue (or is dead-lettered by the retry policy) and later
        operations are not attempted.
        """
        result = FlushResult()
        for operation in self.store.outbox.drain_batch(user_id, limit=self.batch_size):
            if token is not None:
                token.raise_if_cancelled()
            try:
                self._apply(operation)
            except Exception as e:
                result.failed_operation_id = operation.id
                result.error = f"{type(e).__name__}: {e}"
                result.dead_lettered = self.store.outbox.record_failure(operation.id, e)
                logger.warning(f"Flush stopped at operation {operation.id} for user {user_id}: {result.error}")
                break
            self.store.outbox.mark_processed(operation.id)
            result.flushed += 1
        if result.flushed:
            logger.debug(f"Flushed {result.flushed} operations for user {user_id}")
        return result

    def get_pull_cursor(self, user_id: str) -> datetime:
        raw = self.store.get_meta(pull_cursor_key(user_id))
        if not raw:
            return PULL_CURSOR_EPOCH
        return as_naive_utc(datetime.fromisoformat(raw))

    def pull_updates(self, user_id: str, token: Optional[CancellationToken] = None) -> PullResult:
        """Fetch one capped batch of remote changes past the cursor and merge it.

        The cursor only advances for a non-empty batch. A backlog larger than
        `pull_limit` takes several syncs to drain.
        """
        cursor = self.get_pull_cursor(user_id)
        rows = self.remote.fetch_changes(user_id, cursor, self.pull_limit)
        if token is not None:
            token.raise_if_cancelled()

        tasks = [normalize_task_record(row) for row in rows]
        merged = self.store.merge_incoming(tasks)
        if tasks:
            cursor = max(task.updated_at for task in tasks)
            self.store.set_meta(pull_cursor_key(user_id), cursor.isoformat())
            logger.debug(f"Pulled {len(tasks)} tasks for user {user_id} (merged {merged}), cursor {cursor.isoformat()}")
        return PullResult(pulled=len(tasks), merged=merged, cursor=cursor)

    # Entry point

    def sync_now(self, user_id: str) -> SyncResult:
        """Flush then pull for one owner, single-flight.

        Flush failures are recorded in the result and do not prevent the pull;
        every other error propagates.

        Raises:
            SyncCancelled: If the sync was cancelled or the coordinator is closed
        """
        state = self._state_for(user_id)
        with state.lock:
            if self._closed:
                raise SyncCancelled("Sync coordinator is closed")
            if state.running:
                state.rerun = True
                logger.debug(f"Sync already running for user {user_id}; coalesced")
                return SyncResult(user_id=user_id, coalesced=True)
            state.running = True
            state.token = CancellationToken()
            token = state.token

        result = SyncResult(user_id=user_id)
        try:
            while True:
                flush = self.flush_queue(user_id, token)
                result.flushed += flush.flushed
                result.failed_operation_id = flush.failed_operation_id
                result.error = flush.error
                if flush.dead_lettered:
                    result.dead_lettered.append(flush.failed_operation_id)

                token.raise_if_cancelled()
                pull = self.pull_updates(user_id, token)
                result.pulled += pull.pulled
                result.merged += pull.merged
                result.runs += 1

                with state.lock:
                    if not state.rerun:
                        state.running = False
                        state.token = None
                        break
                    state.rerun = False
        except BaseException:
            with state.lock:
                state.running = False
                state.rerun = False
                state.token = None
            raise

        logger.info(
            f"Sync for user {user_id}: flushed {result.flushed}, pulled {result.pulled}, "
            f"merged {result.merged} in {result.runs} pass(es)"
        )
        return result

"""Sync triggers for one signed-in owner on one device.

A session owns the change-feed subscription and a background worker that runs
`sync_now` on the foreground timer, on the transition to online and on change
notifications. Explicit `request_sync()` runs on the caller's thread. All
paths go through the coordinator's single-flight guard.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from focusgrid.models.constants import SYNC_INTERVAL_SECONDS
from focusgrid.models.timestamps import utcnow
from focusgrid.sync.change_feed import ChangeFeed, ChangeFeedSubscriber
from focusgrid.sync.coordinator import SyncCoordinator, SyncResult

logger = logging.getLogger(__name__)


class SyncSession:
    """Owns triggers, subscription and status for one owner.

    Use as a context manager: leaving the block stops the worker, cancels an
    in-flight sync and unsubscribes from the change feed, on every exit path.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        user_id: str,
        *,
        feed: Optional[ChangeFeed] = None,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
        online: bool = True,
    ):
        self.coordinator = coordinator
        self.user_id = user_id
        self.interval_seconds = interval_seconds
        self.subscriber = (
            ChangeFeedSubscriber(coordinator.store, feed, user_id, on_change=self._on_remote_change)
            if feed is not None
            else None
        )

        self.last_sync_at: Optional[datetime] = None
        self.last_result: Optional[SyncResult] = None
        self.last_error: Optional[str] = None

        self._online = online
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._status_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    @property
    def online(self) -> bool:
        return self._online

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> "SyncSession":
        if self.running:
            return self
        self._stopped.clear()
        if self.subscriber is not None:
            self.subscriber.start()
        self._worker = threading.Thread(
            target=self._run, name=f"focusgrid-sync-{self.user_id}", daemon=True
        )
        self._worker.start()
        # Initial sync when the session opens
        self._wake.set()
        logger.info(f"Sync session started for user {self.user_id}")
        return self

    def close(self) -> None:
        """Stop the worker, cancel any in-flight sync and unsubscribe."""
        try:
            self._stopped.set()
            self._wake.set()
            self.coordinator.cancel(self.user_id)
            if self._worker is not None and self._worker is not threading.current_thread():
                self._worker.join(timeout=max(self.interval_seconds, 5.0))
        finally:
            self._worker = None
            if self.subscriber is not None:
                self.subscriber.stop()
            logger.info(f"Sync session closed for user {self.user_id}")

    def __enter__(self) -> "SyncSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Triggers

    def set_online(self, online: bool) -> None:
        """Record connectivity; going from offline to online triggers a sync."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.debug(f"User {self.user_id} back online; triggering sync")
            self._wake.set()

    def notify_change(self) -> None:
        """Ask the worker for a sync soon (e.g. after a local edit)."""
        self._wake.set()

    def _on_remote_change(self, task_id: str) -> None:
        logger.debug(f"Remote change to task {task_id}; triggering sync")
        self._wake.set()

    def request_sync(self) -> SyncResult:
        """Explicit user sync on the caller's thread.

        Errors are recorded in the session status and re-raised.
        """
        try:
            result = self.coordinator.sync_now(self.user_id)
        except Exception as e:
            self._record_failure(e)
            raise
        self._record_success(result)
        return result

    # Worker

    def _run(self) -> None:
        while not self._stopped.is_set():
            # Timeout means the foreground timer fired
            self._wake.wait(self.interval_seconds)
            if self._stopped.is_set():
                break
            self._wake.clear()
            self._background_sync()

    def _background_sync(self) -> None:
        if not self._online:
            logger.debug(f"Skipping background sync for user {self.user_id}: offline")
            return
        try:
            result = self.coordinator.sync_now(self.user_id)
        except Exception as e:
            self._record_failure(e)
            logger.warning(f"Background sync failed for user {self.user_id}: {type(e).__name__}: {e}")
            return
        self._record_success(result)

    def _record_success(self, result: SyncResult) -> None:
        if result.coalesced:
            return
        with self._status_lock:
            self.last_result = result
            self.last_sync_at = utcnow()
            self.last_error = result.error

    def _record_failure(self, error: Exception) -> None:
        with self._status_lock:
            self.last_error = f"{type(error).__name__}: {error}"

"""Live row-level change feed for the task entity.

`ChangeFeed` is the in-process broker the server-side repository publishes
to; `ChangeFeedSubscriber` is the device side that merges events into the
local store.
"""

import itertools
import logging
import threading
from typing import Callable, Dict, Optional

from focusgrid.local.store import LocalStore
from focusgrid.models.sync import ChangeEvent, ChangeEventType
from focusgrid.models.task_factory import normalize_task_record

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for one owner-scoped subscription. `unsubscribe()` is idempotent."""

    def __init__(self, feed: "ChangeFeed", user_id: str, token: int):
        self._feed = feed
        self.user_id = user_id
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._feed._remove(self.user_id, self._token)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class ChangeFeed:
    """Thread-safe publish/subscribe broker keyed by owner."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, Dict[int, ChangeHandler]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, user_id: str, handler: ChangeHandler) -> Subscription:
        with self._lock:
            token = next(self._tokens)
            self._handlers.setdefault(user_id, {})[token] = handler
        logger.debug(f"Change feed subscription {token} opened for user {user_id}")
        return Subscription(self, user_id, token)

    def _remove(self, user_id: str, token: int) -> None:
        with self._lock:
            handlers = self._handlers.get(user_id, {})
            handlers.pop(token, None)
            if not handlers:
                self._handlers.pop(user_id, None)
        logger.debug(f"Change feed subscription {token} closed for user {user_id}")

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._handlers.get(user_id, {}))

    def publish(self, user_id: str, event: ChangeEvent) -> None:
        """Deliver an event to every subscriber of `user_id`.

        A failing handler is logged and does not stop delivery to the others
        or fail the write that published the event.
        """
        with self._lock:
            handlers = list(self._handlers.get(user_id, {}).values())
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Change feed handler failed for user {user_id}")


class ChangeFeedSubscriber:
    """Merges one owner's change events into the local store.

    Deletes remove the local record (nothing is queued); inserts and updates are
    normalized and merged with last-write-wins. `on_change(task_id)` is called
    after every applied event.
    """

    def __init__(
        self,
        store: LocalStore,
        feed: ChangeFeed,
        user_id: str,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.feed = feed
        self.user_id = user_id
        self.on_change = on_change
        self._subscription: Optional[Subscription] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> "ChangeFeedSubscriber":
        if not self.active:
            self._subscription = self.feed.subscribe(self.user_id, self.handle_event)
        return self

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "ChangeFeedSubscriber":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def handle_event(self, event: ChangeEvent) -> None:
        if event.event_type == ChangeEventType.DELETE.value:
            task_id = (event.old or {}).get("id")
            if not task_id:
                return
            self.store.delete(self.user_id, task_id, enqueue=False)
            self._notify(task_id)
            return

        if not event.new:
            return
        task = normalize_task_record(event.new)
        if task.user_id != self.user_id:
            logger.warning(f"Ignoring change event for task {task.id} of another user")
            return
        self.store.merge_incoming([task])
        self._notify(task.id)

    def _notify(self, task_id: str) -> None:
        if self.on_change is not None:
            self.on_change(task_id)

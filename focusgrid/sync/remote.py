"""Remote store contract used by the sync coordinator, and the device end of the change stream.

Rows cross this boundary in JSON wire form (`task_to_row` output): the
coordinator sends outbox payloads as-is and normalizes whatever comes back.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import requests
from pydantic import ValidationError
from sqlalchemy.orm import Session
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as websocket_connect

from focusgrid.database.repository import TaskRepository
from focusgrid.models.sync import ChangeEvent
from focusgrid.models.task_factory import normalize_task_record, task_to_row
from focusgrid.sync.change_feed import ChangeFeed, ChangeHandler

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """A remote store call failed (transport error or rejected request)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteStore(ABC):
    """Authoritative task storage shared by all devices."""

    @abstractmethod
    def upsert_task(self, row: Dict[str, Any]) -> None:
        """Insert or fully replace the task keyed by `row["id"]`."""

    @abstractmethod
    def delete_task(self, user_id: str, task_id: str) -> None:
        """Delete a task of `user_id`; deleting a missing task is not an error."""

    @abstractmethod
    def fetch_changes(self, user_id: str, since: datetime, limit: int) -> List[Dict[str, Any]]:
        """Rows of `user_id` with `updated_at > since`, ascending, at most `limit`."""


class RepositoryRemoteStore(RemoteStore):
    """In-process remote store backed by `TaskRepository` (one session per call)."""

    def __init__(self, session_factory: Callable[[], Session], feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self.feed = feed

    def upsert_task(self, row: Dict[str, Any]) -> None:
        task = normalize_task_record(row)
        with self._session_factory() as db:
            try:
                TaskRepository(db, feed=self.feed).upsert(task)
            except ValueError as e:
                raise RemoteStoreError(str(e), status_code=403) from e

    def delete_task(self, user_id: str, task_id: str) -> None:
        with self._session_factory() as db:
            TaskRepository(db, feed=self.feed).delete(user_id, task_id)

    def fetch_changes(self, user_id: str, since: datetime, limit: int) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            tasks = TaskRepository(db).list_changed_since(user_id, since, limit)
        return [task_to_row(task) for task in tasks]


class HttpRemoteStore(RemoteStore):
    """Remote store reached through the focusgrid HTTP API."""

    def __init__(self, base_url: str, token: str, timeout: float = 10, session=None):
        """Initialize the client.

        Args:
            base_url: API root, e.g. https://focusgrid.example.com
            token: Bearer JWT identifying the owner
            timeout: Per-request timeout in seconds
            session: Object with a requests-compatible `request()` (defaults to a requests.Session)
        """
        if not token:
            raise ValueError("An access token is required for the remote store")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    def upsert_task(self, row: Dict[str, Any]) -> None:
        self._request("PUT", f"/sync/tasks/{row['id']}", json=row)

    def delete_task(self, user_id: str, task_id: str) -> None:
        # The server scopes the delete to the token's owner
        self._request("DELETE", f"/sync/tasks/{task_id}")

    def fetch_changes(self, user_id: str, since: datetime, limit: int) -> List[Dict[str, Any]]:
        data = self._request("GET", "/sync/tasks", params={"since": since.isoformat(), "limit": limit})
        return list(data.get("tasks", []))

    def open_change_stream(self, handler: ChangeHandler, **kwargs) -> "RemoteChangeStream":
        """Start streaming this owner's change events to `handler`."""
        return RemoteChangeStream(self.base_url, self.token, handler, timeout=self.timeout, **kwargs).start()


def _websocket_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):]
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):]
    return base


def _open_websocket(url: str, headers: Dict[str, str], timeout: float):
    return websocket_connect(url, additional_headers=headers, open_timeout=timeout)


class RemoteChangeStream:
    """Device end of the `/sync/changes` WebSocket.

    A reader thread decodes every frame into a `ChangeEvent` and hands it to
    `handler`, usually `ChangeFeedSubscriber.handle_event` or the `publish` of
    a device-side `ChangeFeed` that a `SyncSession` listens on. `close()`
    closes the socket and joins the reader, so no event is handled after it
    returns.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        handler: ChangeHandler,
        timeout: float = 10,
        connect: Optional[Callable[[str, Dict[str, str], float], Any]] = None,
    ):
        """Initialize the stream (not connected until `start()`).

        Args:
            base_url: API root, e.g. https://focusgrid.example.com
            token: Bearer JWT identifying the owner
            handler: Called with each received event on the reader thread
            timeout: Handshake timeout and how long `close()` waits for the reader
            connect: `(url, headers, timeout) -> connection` whose connection
                iterates received messages and has `close()` (defaults to the
                websockets sync client)
        """
        if not token:
            raise ValueError("An access token is required for the change stream")
        self.url = f"{_websocket_url(base_url)}/sync/changes"
        self.headers = {"Authorization": f"Bearer {token}"}
        self.handler = handler
        self.timeout = timeout
        self._connect = connect or _open_websocket
        self._lock = threading.Lock()
        self._closing = threading.Event()
        self._connection = None
        self._reader: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    def start(self) -> "RemoteChangeStream":
        """Open the socket and start the reader.

        Raises:
            RemoteStoreError: If the handshake fails or is rejected
        """
        with self._lock:
            if self._reader is not None:
                return self
            self._closing.clear()
            try:
                connection = self._connect(self.url, self.headers, self.timeout)
            except Exception as e:
                raise RemoteStoreError(f"Could not open change stream: {type(e).__name__}: {e}") from e
            self._connection = connection
            self._reader = threading.Thread(
                target=self._read, args=(connection,), name="focusgrid-change-stream", daemon=True
            )
            self._reader.start()
        logger.info(f"Change stream connected to {self.url}")
        return self

    def close(self) -> None:
        """Close the socket and wait for the reader. Safe to call more than once."""
        with self._lock:
            connection, reader = self._connection, self._reader
            self._connection = None
            self._reader = None
        if connection is None:
            return
        self._closing.set()
        connection.close()
        if reader is not threading.current_thread():
            reader.join(timeout=self.timeout)
        logger.info(f"Change stream to {self.url} closed")

    def __enter__(self) -> "RemoteChangeStream":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def handle_message(self, message) -> None:
        """Decode one frame and pass it to the handler.

        Malformed frames and handler failures are logged and skipped, so one
        bad event does not end the stream.
        """
        try:
            event = ChangeEvent.model_validate_json(message)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed change event: {e}")
            return
        try:
            self.handler(event)
        except Exception:
            logger.exception("Change stream handler failed")

    def _read(self, connection) -> None:
        try:
            for message in connection:
                self.handle_message(message)
        except ConnectionClosed as e:
            if not self._closing.is_set():
                logger.warning(f"Change stream dropped: {e}")
            return
        if not self._closing.is_set():
            logger.info("Change stream ended by the server")

"""FastAPI web application for focusgrid (remote store, change stream, push and scheduled job endpoints)."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from focusgrid import __version__
from focusgrid.auth.dependencies import (
    get_current_user_id,
    get_websocket_user_id,
    require_cron_authorization,
    require_internal_secret,
)
from focusgrid.database.database import get_db
from focusgrid.database.push_subscription_repository import PushSubscriptionRepository
from focusgrid.database.repository import TaskRepository
from focusgrid.models.constants import DEFAULT_DUE_WINDOW_MINUTES, PULL_BATCH_LIMIT, PULL_CURSOR_EPOCH
from focusgrid.models.push import PushEndpoint, PushPayload
from focusgrid.models.task_factory import normalize_task_record, task_to_row
from focusgrid.models.timestamps import as_naive_utc
from focusgrid.notifications.dispatcher import dispatch_due_tasks
from focusgrid.notifications.web_push import PushDeliveryError, PushTransport, WebPushTransport
from focusgrid.sync.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="focusgrid API",
    description="Remote task store, change feed source and due-task reminders for focusgrid devices",
    version=__version__,
)

# Process-wide change feed; repositories publish committed writes to it
change_feed = ChangeFeed()


def get_change_feed() -> ChangeFeed:
    return change_feed


def get_push_transport() -> PushTransport:
    """Web Push transport configured from the environment."""
    try:
        return WebPushTransport()
    except ValueError as e:
        logger.error(f"Push transport unavailable: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Push is not configured")


# Request / response models
class TaskRowResponse(BaseModel):
    """A single task row in wire format."""
    task: Dict[str, Any]


class TaskRowsResponse(BaseModel):
    """Rows changed since a cursor, ascending by updated_at."""
    tasks: List[Dict[str, Any]]


class DeleteResponse(BaseModel):
    deleted: bool


class PushSubscriptionRequest(BaseModel):
    """Browser push subscription registered by a device."""
    endpoint: str = Field(..., min_length=1)
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)
    user_agent: Optional[str] = None


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)


class PushTarget(BaseModel):
    endpoint: str
    p256dh: str
    auth: str


class PushSendRequest(BaseModel):
    """Internal request to push one payload to one subscription."""
    subscription: PushTarget
    payload: PushPayload


class DispatchResponse(BaseModel):
    ok: bool = True
    scanned: int
    notified_tasks: int
    pushes_sent: int
    pruned_endpoints: int


def _parse_window(raw: Optional[str]) -> int:
    """Window in minutes; non-numeric or non-finite values fall back to the default."""
    if raw is None:
        return DEFAULT_DUE_WINDOW_MINUTES
    try:
        return int(float(raw))
    except (ValueError, OverflowError):
        return DEFAULT_DUE_WINDOW_MINUTES


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Remote store contract

@app.put("/sync/tasks/{task_id}", response_model=TaskRowResponse)
def upsert_task(
    task_id: str,
    row: Dict[str, Any],
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Insert or fully replace a task (conflict target: id). The server stamps updated_at."""
    task = normalize_task_record({**row, "id": task_id, "user_id": user_id})
    try:
        stored = TaskRepository(db, feed=feed).upsert(task)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return TaskRowResponse(task=task_to_row(stored))


@app.delete("/sync/tasks/{task_id}", response_model=DeleteResponse)
def delete_task(
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Delete a task of the caller. Deleting a missing task succeeds with deleted=false."""
    return DeleteResponse(deleted=TaskRepository(db, feed=feed).delete(user_id, task_id))


@app.get("/sync/tasks", response_model=TaskRowsResponse)
def list_changed_tasks(
    since: Optional[datetime] = None,
    limit: int = Query(PULL_BATCH_LIMIT, ge=1, le=PULL_BATCH_LIMIT),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Rows of the caller with updated_at strictly after `since`."""
    cursor = as_naive_utc(since) if since is not None else PULL_CURSOR_EPOCH
    tasks = TaskRepository(db).list_changed_since(user_id, cursor, limit)
    return TaskRowsResponse(tasks=[task_to_row(task) for task in tasks])


async def _forward_events(websocket: WebSocket, events: asyncio.Queue) -> None:
    """Send queued events until the client disconnects (frames from the client are ignored)."""
    receiver = asyncio.ensure_future(websocket.receive_text())
    getter = None
    try:
        while True:
            getter = asyncio.ensure_future(events.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                await websocket.send_json(getter.result().model_dump(mode="json"))
            else:
                getter.cancel()
            if receiver in done:
                # Raises WebSocketDisconnect once the client has gone
                receiver.result()
                receiver = asyncio.ensure_future(websocket.receive_text())
    finally:
        receiver.cancel()
        if getter is not None:
            getter.cancel()


@app.websocket("/sync/changes")
async def stream_changes(
    websocket: WebSocket,
    user_id: Optional[str] = Depends(get_websocket_user_id),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Stream the caller's task change events as JSON text frames."""
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()
    # Writes are published from worker threads; hand events over to this loop.
    # Subscribed before the handshake completes so no later write is missed.
    subscription = feed.subscribe(user_id, lambda event: loop.call_soon_threadsafe(events.put_nowait, event))
    try:
        await websocket.accept()
        logger.info(f"Change stream opened for user {user_id}")
        await _forward_events(websocket, events)
    except WebSocketDisconnect as e:
        logger.info(f"Change stream closed for user {user_id} (code={e.code})")
    finally:
        subscription.unsubscribe()


# Push subscriptions

@app.post("/push/subscriptions", response_model=PushEndpoint, status_code=status.HTTP_201_CREATED)
def subscribe_push(
    request: PushSubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Register (or refresh the keys of) a push endpoint for the caller."""
    return PushSubscriptionRepository(db).upsert(
        user_id,
        request.endpoint,
        request.p256dh,
        request.auth,
        user_agent=request.user_agent,
    )


@app.delete("/push/subscriptions", response_model=DeleteResponse)
def unsubscribe_push(
    request: PushUnsubscribeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    deleted = PushSubscriptionRepository(db).delete_for_user(user_id, request.endpoint)
    return DeleteResponse(deleted=deleted > 0)


@app.post("/push/send", dependencies=[Depends(require_internal_secret)])
def send_push(
    request: PushSendRequest,
    transport: PushTransport = Depends(get_push_transport),
):
    """Push one payload to one subscription (internal callers only)."""
    target = PushEndpoint(
        id="direct",
        user_id="",
        endpoint=request.subscription.endpoint,
        p256dh=request.subscription.p256dh,
        auth=request.subscription.auth,
    )
    try:
        transport.send(target, request.payload)
    except PushDeliveryError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Push failed: {e}")
    return {"ok": True}


# Scheduled job

@app.post("/cron/dispatch-due", response_model=DispatchResponse, dependencies=[Depends(require_cron_authorization)])
def dispatch_due(
    window: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    transport: PushTransport = Depends(get_push_transport),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Scan for due tasks and push them to every endpoint of their owner."""
    try:
        result = dispatch_due_tasks(db, transport, window_minutes=_parse_window(window), feed=feed)
    except Exception as e:
        logger.error(f"Due-task dispatch failed: {type(e).__name__}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Dispatch failed: {str(e)}")
    return DispatchResponse(
        scanned=result.scanned,
        notified_tasks=result.notified_tasks,
        pushes_sent=result.pushes_sent,
        pruned_endpoints=result.pruned_endpoints,
    )

"""Notification dispatcher: fan due tasks out to every push endpoint of their owner.

Delivery is at-least-once. Tasks are marked notified in one bulk call after
the whole batch, so a crash between delivery and marking re-sends on the next
run; the stable per-task tag makes the device replace the earlier notification.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Set
from sqlalchemy.orm import Session

from focusgrid.database.push_subscription_repository import PushSubscriptionRepository
from focusgrid.database.repository import TaskRepository
from focusgrid.models.constants import DEFAULT_DUE_WINDOW_MINUTES, PUSH_TITLE
from focusgrid.models.push import PushPayload
from focusgrid.models.task import DueTask
from focusgrid.models.timestamps import as_naive_utc, utcnow
from focusgrid.notifications.due import scan_due_tasks
from focusgrid.notifications.web_push import PushDeliveryError, PushTransport

if TYPE_CHECKING:
    from focusgrid.sync.change_feed import ChangeFeed

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    scanned: int = 0
    notified_tasks: int = 0
    pushes_sent: int = 0
    pruned_endpoints: int = 0


def build_payload(task: DueTask) -> PushPayload:
    """Push payload for a due task (tag is stable per task)."""
    return PushPayload(
        title=PUSH_TITLE,
        body=f"{task.title} • {task.scheduled_date.isoformat()} {task.due_time.strftime('%H:%M')}",
        url=f"/?tab=today&task={task.id}",
        tag=f"task-{task.id}",
    )


def dispatch_due_tasks(
    db: Session,
    transport: PushTransport,
    *,
    window_minutes: int = DEFAULT_DUE_WINDOW_MINUTES,
    now: Optional[datetime] = None,
    feed: Optional["ChangeFeed"] = None,
) -> DispatchResult:
    """Scan for due tasks, push them, prune dead endpoints and mark delivered tasks.

    Only `PushDeliveryError` is handled per endpoint; any other error aborts
    the run before anything is marked notified.
    """
    started = as_naive_utc(now) if now is not None else utcnow()
    tasks = TaskRepository(db, feed=feed)
    subscriptions = PushSubscriptionRepository(db)

    due = scan_due_tasks(tasks, now=started, window_minutes=window_minutes)
    result = DispatchResult(scanned=len(due))
    if not due:
        return result

    endpoints_by_user = subscriptions.list_for_users(task.user_id for task in due)
    delivered: List[str] = []
    pruned: Set[str] = set()

    for task in due:
        payload = build_payload(task)
        delivered_once = False
        for endpoint in endpoints_by_user.get(task.user_id, []):
            if endpoint.id in pruned:
                continue
            try:
                transport.send(endpoint, payload)
            except PushDeliveryError as e:
                if e.is_gone:
                    subscriptions.delete(endpoint.id)
                    pruned.add(endpoint.id)
                    logger.warning(f"Pruned push endpoint {endpoint.id} of user {task.user_id} (status {e.status_code})")
                else:
                    logger.warning(f"Push for task {task.id} to endpoint {endpoint.id} failed: {e}")
                continue
            delivered_once = True
            result.pushes_sent += 1
        if delivered_once:
            delivered.append(task.id)

    result.pruned_endpoints = len(pruned)
    if delivered:
        result.notified_tasks = tasks.mark_tasks_notified(delivered, now=started)

    logger.info(
        f"Dispatch: scanned {result.scanned}, notified {result.notified_tasks}, "
        f"pushes {result.pushes_sent}, pruned {result.pruned_endpoints}"
    )
    return result

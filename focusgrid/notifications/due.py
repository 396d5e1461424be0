"""Due-task scanner."""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional
import pytz

from focusgrid.database.repository import TaskRepository
from focusgrid.models.task import DueTask
from focusgrid.models.constants import DEFAULT_DUE_WINDOW_MINUTES, DEFAULT_TIMEZONE, MIN_DUE_WINDOW_MINUTES
from focusgrid.models.timestamps import as_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _resolve_zone(name: Optional[str]):
    try:
        return pytz.timezone(name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {name!r}; using UTC")
        return pytz.utc


def compose_due_instant(scheduled_date: date, due_time: time, timezone: Optional[str]) -> datetime:
    """Due instant (naive UTC) of a wall-clock date + time in `timezone`.

    An empty or unknown zone name is treated as UTC.
    """
    zone = _resolve_zone(timezone)
    local = zone.localize(datetime.combine(scheduled_date, due_time.replace(tzinfo=None)))
    return local.astimezone(pytz.utc).replace(tzinfo=None)


def scan_due_tasks(
    repo: TaskRepository,
    now: Optional[datetime] = None,
    window_minutes: int = DEFAULT_DUE_WINDOW_MINUTES,
) -> List[DueTask]:
    """Open tasks whose due instant falls in [now, now + window) and that were
    not yet notified for that instant, ordered by due instant.

    A task notified before its current due instant (because its date or time
    moved later) is selected again.
    """
    start = as_naive_utc(now) if now is not None else utcnow()
    window = max(int(window_minutes), MIN_DUE_WINDOW_MINUTES)
    end = start + timedelta(minutes=window)

    # Zone offsets stay within a day, so this date range covers every candidate
    candidates = repo.list_due_candidates(start.date() - timedelta(days=1), end.date() + timedelta(days=1))

    due: List[DueTask] = []
    for task in candidates:
        due_at = compose_due_instant(task.scheduled_date, task.due_time, task.timezone)
        if not (start <= due_at < end):
            continue
        if task.last_notified_at is not None and task.last_notified_at >= due_at:
            continue
        due.append(
            DueTask(
                id=task.id,
                user_id=task.user_id,
                title=task.title,
                scheduled_date=task.scheduled_date,
                due_time=task.due_time,
                timezone=task.timezone,
                due_at=due_at,
            )
        )

    due.sort(key=lambda item: (item.due_at, item.id))
    logger.debug(f"Due scan [{start.isoformat()}, {end.isoformat()}): {len(due)} of {len(candidates)} candidates")
    return due

"""Constants for focusgrid.

This module centralizes all magic numbers and default values used throughout the application.
"""

from datetime import datetime


# Task defaults
DEFAULT_TIMEZONE = "UTC"
TOP3_SLOTS = (1, 2, 3)

# Outbox / sync
SYNC_BATCH_SIZE = 100  # Operations flushed per sync pass
PULL_BATCH_LIMIT = 1000  # Rows fetched per pull (no looping past this)
SYNC_INTERVAL_SECONDS = 60.0  # Foreground timer trigger
OUTBOX_MAX_RETRIES = 8  # Failed attempts before an operation is dead-lettered
PULL_CURSOR_EPOCH = datetime(1970, 1, 1)

# Due-task notifications
DEFAULT_DUE_WINDOW_MINUTES = 5
MIN_DUE_WINDOW_MINUTES = 1
GONE_STATUS_CODES = frozenset({404, 410})  # Push service: endpoint permanently invalid
PUSH_ICON_URL = "/icons/icon-192.png"
PUSH_TITLE = "Task due now"

# Legacy browser storage keys migrated once per owner
LEGACY_KEYS = (
    "fg_tasks",
    "fg_gym_history",
    "fg_meals",
    "fg_meal_history",
    "fg_thesis_logs",
    "fg_workout_templates",
    "fg_resources",
)
LEGACY_TASK_TITLE = "Imported task"
LEGACY_MIGRATED_TAG = "legacy-migrated"

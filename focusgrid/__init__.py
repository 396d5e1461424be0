"""focusgrid: offline-first task sync and due-task push reminders."""

__version__ = "0.1.0"

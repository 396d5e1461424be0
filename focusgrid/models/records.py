"""Plain per-owner records kept alongside tasks (no conflict logic)."""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class GymExercise(BaseModel):
    id: str
    name: str
    sets: Optional[int] = None
    reps: Optional[int] = None
    weight_kg: Optional[float] = None


class GymSession(BaseModel):
    """A logged gym session."""

    id: str
    user_id: str
    date: str = Field(..., description="Session date (YYYY-MM-DD)")
    session_name: str
    duration_minutes: Optional[int] = None
    effort_1_to_5: Optional[int] = None
    notes: str = ""
    exercises: List[GymExercise] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ThesisLog(BaseModel):
    """A daily thesis writing log entry."""

    id: str
    user_id: str
    date: str = Field(..., description="Log date (YYYY-MM-DD)")
    focus_minutes: int = 0
    words_written: int = 0
    note: str = ""
    created_at: datetime
    updated_at: datetime


class LegacyBackup(BaseModel):
    """Raw snapshot of pre-migration storage, kept for recovery."""

    id: str
    user_id: str
    payload: Dict[str, Optional[str]] = Field(default_factory=dict)
    created_at: datetime

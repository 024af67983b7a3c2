from __future__ import annotations
from typing import Literal
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime


class EntryCreate(BaseModel):
    competition_id: UUID


class EntryPublic(BaseModel):
    id: UUID
    player_id: UUID
    competition_id: UUID
    attempt_window_start: datetime
    attempt_window_end: datetime
    remaining_seconds: int
    is_open: bool
    outcome_self: str | None = None
    outcome_reported_at: datetime | None = None
    auto_miss_applied: bool
    status: str


class OutcomeReport(BaseModel):
    outcome: Literal["win", "miss"]


class OutcomeOut(BaseModel):
    entry: EntryPublic
    verification_id: UUID | None = None


class SweepOut(BaseModel):
    resolved: int

from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from holeinone.auth_deps import get_current_user, is_admin, require_admin
from holeinone.db import get_session, utcnow
from holeinone.jobs.auto_miss import schedule_auto_miss
from holeinone.models.competition import Entry
from holeinone.models.user import User
from holeinone.schemas.entry import EntryCreate, EntryPublic, OutcomeReport, OutcomeOut, SweepOut
from holeinone.services.attempt_window import (
    is_open, open_entry, remaining_seconds, report_outcome, resolve_if_expired, sweep_expired_entries,
)

router = APIRouter(prefix="/entries", tags=["entries"])

def to_public(e: Entry) -> EntryPublic:
    now = utcnow()
    return EntryPublic(
        id=e.id, player_id=e.player_id, competition_id=e.competition_id,
        attempt_window_start=e.attempt_window_start, attempt_window_end=e.attempt_window_end,
        remaining_seconds=remaining_seconds(e, now), is_open=is_open(e, now),
        outcome_self=e.outcome_self, outcome_reported_at=e.outcome_reported_at,
        auto_miss_applied=e.auto_miss_applied, status=e.status,
    )

@router.post("", status_code=201, response_model=EntryPublic)
async def create_entry(
    payload: EntryCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    entry = await open_entry(session, user.id, payload.competition_id)
    schedule_auto_miss(entry.id, entry.attempt_window_end)
    return to_public(entry)

# Declared before /{entry_id} routes
@router.post("/auto-miss/sweep", response_model=SweepOut)
async def sweep(admin: User = Depends(require_admin), session: AsyncSession = Depends(get_session)):
    return SweepOut(resolved=await sweep_expired_entries(session))

@router.get("/{entry_id}", response_model=EntryPublic)
async def get_entry(
    entry_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    entry = await session.get(Entry, entry_id, populate_existing=True)
    if not entry or (entry.player_id != user.id and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Entry not found")
    # Reads close elapsed windows even if nobody was watching the countdown
    entry = await resolve_if_expired(session, entry)
    return to_public(entry)

@router.post("/{entry_id}/outcome", response_model=OutcomeOut)
async def post_outcome(
    entry_id: uuid.UUID,
    payload: OutcomeReport,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    result = await report_outcome(session, entry_id, user.id, payload.outcome)
    return OutcomeOut(
        entry=to_public(result.entry),
        verification_id=result.verification.id if result.verification else None,
    )

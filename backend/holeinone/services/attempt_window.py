"""Attempt windows: Open -> SelfReported | AutoMissed.

`outcome_self` is written at most once. The self-report and the auto-miss are
both single UPDATEs gated on `outcome_self IS NULL`, so whichever lands first
wins and the other sees rowcount 0. Expiry is enforced three ways: the ticker
(while a client is watching), a lazy check on every read, and the sweep job.
"""
from __future__ import annotations
import asyncio
import math
import uuid
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from holeinone.config import settings
from holeinone.db import SessionLocal, utcnow
from holeinone.models.competition import Competition, Entry
from holeinone.models.verification import Verification
from holeinone.services.claims import open_claim
from holeinone.services.errors import (
    AttemptWindowClosed, NotFound, OutcomeAlreadyReported, StoreFailure, ValidationError,
)

log = structlog.get_logger()

SELF_REPORTED = ("win", "miss")
AUTO_MISS = "auto_miss"


@dataclass
class OutcomeResult:
    entry: Entry
    verification: Verification | None = None


def remaining_seconds(entry: Entry, now: datetime | None = None) -> int:
    now = now or utcnow()
    return max(0, math.ceil((entry.attempt_window_end - now).total_seconds()))


def is_open(entry: Entry, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return entry.outcome_self is None and now < entry.attempt_window_end


async def open_entry(session: AsyncSession, player_id: uuid.UUID, competition_id: uuid.UUID,
                     now: datetime | None = None) -> Entry:
    now = now or utcnow()
    competition = await session.get(Competition, competition_id)
    if competition is None or competition.status != "active":
        raise NotFound("Competition not found")
    minutes = competition.attempt_window_minutes or settings.attempt_window_minutes
    entry = Entry(
        player_id=player_id,
        competition_id=competition.id,
        attempt_window_start=now,
        attempt_window_end=now + timedelta(minutes=minutes),
        status="in_progress",
    )
    session.add(entry)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("entry_open_failed", competition_id=str(competition_id), error=type(e).__name__)
        raise StoreFailure() from e
    log.info("entry_opened", entry_id=str(entry.id), player_id=str(player_id),
             window_end=entry.attempt_window_end.isoformat())
    return entry


async def apply_auto_miss(session: AsyncSession, entry_id: uuid.UUID, now: datetime | None = None) -> bool:
    """Resolve an elapsed, unreported entry as `auto_miss`. True only for the call that wrote it."""
    now = now or utcnow()
    try:
        res = await session.execute(
            update(Entry)
            .where(
                Entry.id == entry_id,
                Entry.outcome_self.is_(None),
                Entry.attempt_window_end <= now,
            )
            .values(
                outcome_self=AUTO_MISS,
                outcome_reported_at=now,
                auto_miss_applied=True,
                status="completed",
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.warning("auto_miss_write_failed", entry_id=str(entry_id), error=type(e).__name__)
        raise StoreFailure() from e
    applied = res.rowcount == 1
    if applied:
        log.info("auto_miss_applied", entry_id=str(entry_id))
    return applied


async def resolve_if_expired(session: AsyncSession, entry: Entry, now: datetime | None = None) -> Entry:
    now = now or utcnow()
    if entry.outcome_self is None and now >= entry.attempt_window_end:
        await apply_auto_miss(session, entry.id, now)
        await session.refresh(entry)
    return entry


async def report_outcome(session: AsyncSession, entry_id: uuid.UUID, player_id: uuid.UUID, outcome: str,
                         now: datetime | None = None) -> OutcomeResult:
    if outcome not in SELF_REPORTED:
        raise ValidationError("Outcome must be 'win' or 'miss'")
    now = now or utcnow()
    entry = await session.get(Entry, entry_id, populate_existing=True)
    if entry is None or entry.player_id != player_id:
        raise NotFound("Entry not found")

    verification = None
    try:
        res = await session.execute(
            update(Entry)
            .where(
                Entry.id == entry_id,
                Entry.outcome_self.is_(None),
                Entry.attempt_window_end > now,
            )
            .values(
                outcome_self=outcome,
                outcome_reported_at=now,
                status="verification_pending" if outcome == "win" else "completed",
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            if outcome == "win":
                verification = open_claim(session, entry_id)
            await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("outcome_write_failed", entry_id=str(entry_id), error=type(e).__name__)
        raise StoreFailure() from e

    if res.rowcount != 1:
        await session.refresh(entry)
        if entry.outcome_self is not None:
            log.info("outcome_already_reported", entry_id=str(entry_id), outcome=entry.outcome_self)
            raise OutcomeAlreadyReported(entry.outcome_self)
        # Window elapsed with nothing recorded: resolve it now
        await apply_auto_miss(session, entry_id, now)
        raise AttemptWindowClosed()

    await session.refresh(entry)
    log.info("outcome_reported", entry_id=str(entry_id), outcome=outcome)
    return OutcomeResult(entry=entry, verification=verification)


async def sweep_expired_entries(session: AsyncSession, now: datetime | None = None, limit: int | None = None) -> int:
    now = now or utcnow()
    limit = limit or settings.auto_miss_batch_size
    ids = (await session.execute(
        select(Entry.id)
        .where(Entry.outcome_self.is_(None), Entry.attempt_window_end <= now)
        .order_by(Entry.attempt_window_end)
        .limit(limit)
    )).scalars().all()
    resolved = 0
    for entry_id in ids:
        if await apply_auto_miss(session, entry_id, now):
            resolved += 1
    log.info("auto_miss_sweep", candidates=len(ids), resolved=resolved)
    return resolved


class AttemptWindowTicker:
    """
    Fixed-cadence countdown for one entry. Each tick reports the remaining
    seconds to `on_tick`; the first tick at zero issues the auto-miss write,
    and a failed write is simply tried again on the next tick. Stopping the
    ticker never resolves anything by itself.
    """

    def __init__(
        self,
        entry_id: uuid.UUID,
        window_end: datetime,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        interval: float | None = None,
        on_tick: Callable[[int], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.entry_id = entry_id
        self.window_end = window_end
        self.resolved = False
        self._session_factory = session_factory
        self._interval = settings.auto_miss_tick_seconds if interval is None else interval
        self._on_tick = on_tick
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def tick(self) -> bool:
        if self.resolved:
            return True
        now = self._clock()
        remaining = max(0, math.ceil((self.window_end - now).total_seconds()))
        if self._on_tick:
            self._on_tick(remaining)
        if remaining > 0:
            return False
        try:
            async with self._session_factory() as session:
                await apply_auto_miss(session, self.entry_id, now)
        except (StoreFailure, SQLAlchemyError):
            log.info("auto_miss_retry_next_tick", entry_id=str(self.entry_id))
            return False
        # Either we wrote auto_miss or an outcome was already there
        self.resolved = True
        return True

    async def run(self) -> None:
        while not await self.tick():
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

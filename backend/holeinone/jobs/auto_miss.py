from __future__ import annotations
import asyncio
import uuid
from datetime import datetime

import structlog
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from holeinone.config import settings
from holeinone.db import SessionLocal, utcnow
from holeinone.services.attempt_window import apply_auto_miss, sweep_expired_entries

log = structlog.get_logger()

_queue: Queue | None = None


def get_queue() -> Queue:
    # RQ queue (lazy single instance)
    global _queue
    if _queue is None:
        _queue = Queue("default", connection=Redis.from_url(settings.redis_url))
    return _queue


async def _auto_miss_one(entry_id: str) -> bool:
    async with SessionLocal() as session:
        return await apply_auto_miss(session, uuid.UUID(entry_id), utcnow())


async def _sweep(limit: int) -> int:
    async with SessionLocal() as session:
        return await sweep_expired_entries(session, utcnow(), limit)


def auto_miss_entry(entry_id: str) -> bool:
    # RQ entry point (sync); run the async coroutine.
    # A job that fires a moment early is a no-op; the sweep catches it.
    return asyncio.run(_auto_miss_one(entry_id))


def sweep_auto_miss(limit: int | None = None) -> int:
    return asyncio.run(_sweep(limit or settings.auto_miss_batch_size))


def schedule_auto_miss(entry_id: uuid.UUID, at: datetime) -> None:
    """Ask a worker (`rq worker --with-scheduler`) to resolve the entry when its window ends."""
    if settings.auto_miss_scheduler != "rq":
        return
    try:
        get_queue().enqueue_at(at, auto_miss_entry, str(entry_id))
    except RedisError as e:
        # Lazy read checks and the sweep still enforce the window
        log.warning("auto_miss_schedule_failed", entry_id=str(entry_id), error=type(e).__name__)

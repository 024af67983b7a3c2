from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from typing import AsyncGenerator
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from holeinone.config import settings

class Base(DeclarativeBase):
    pass

class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that is always stored and returned in UTC."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(dt_tz.utc)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        # sqlite hands back naive values
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=dt_tz.utc)
        return value

def utcnow() -> datetime:
    return datetime.now(dt_tz.utc)

engine = create_async_engine(settings.database_url, future=True, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

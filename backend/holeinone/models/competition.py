from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Boolean, String, Integer, ForeignKey, Uuid, func
from holeinone.db import Base, UTCDateTime, utcnow

class Competition(Base):
    __tablename__ = "competitions"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    club_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    hole_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")  # draft|active|ended
    attempt_window_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)  # null => settings default
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

class Entry(Base):
    __tablename__ = "entries"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    player_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), index=True, nullable=False)

    attempt_window_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    attempt_window_end: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)

    # Written once: by the player (win|miss) or by auto-resolution (auto_miss)
    outcome_self: Mapped[str | None] = mapped_column(String(16), nullable=True)
    outcome_reported_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    auto_miss_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(24), nullable=False, default="in_progress")  # in_progress|verification_pending|completed
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

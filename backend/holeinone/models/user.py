from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Uuid, func
from holeinone.db import Base, UTCDateTime, utcnow

class User(Base):
    __tablename__ = "users"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)  # lower-cased, trimmed
    first_name: Mapped[str] = mapped_column(String(80), nullable=False, default="Golfer")
    last_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    phone_e164: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    age_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    handicap: Mapped[float | None] = mapped_column(Float, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="player")  # player|admin|club_admin
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

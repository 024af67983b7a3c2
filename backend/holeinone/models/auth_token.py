from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Boolean, Index, String, Integer, Float, Text, Uuid, func, text
from holeinone.db import Base, UTCDateTime, utcnow

class MagicLinkToken(Base):
    """
    Single-use sign-in credential carrying the entry intent it was issued for.
    Lifecycle:
      - issued   => used = false, expires_at = created_at + flow TTL
      - redeemed => used = true,  used_at set (conditional update, once)
      - replaced => used = true when a newer token is issued for the same email
    Only the sha256 of the emailed token is kept.
    """
    __tablename__ = "magic_link_tokens"
    __table_args__ = (
        # At most one unconsumed token per address
        Index("ix_magic_link_tokens_email_unused", "email", unique=True,
              postgresql_where=text("used = false"), sqlite_where=text("used = 0")),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    flow: Mapped[str] = mapped_column(String(16), nullable=False, default="branded")  # otp|secure|branded

    # Entry intent snapshot (defaults already applied)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    phone_e164: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    age_years: Mapped[int] = mapped_column(Integer, nullable=False)
    handicap: Mapped[float | None] = mapped_column(Float, nullable=True)
    competition_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    club_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    redirect_url: Mapped[str] = mapped_column(Text(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import JSON, Index, String, Text, ForeignKey, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from holeinone.db import Base, UTCDateTime, utcnow

class Verification(Base):
    """
    Adjudication record for a self-reported win.
    Status flow: initiated -> pending -> under_review -> verified | rejected
    verified/rejected are terminal; approve/reject may skip review.
    """
    __tablename__ = "verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("entries.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="initiated")

    evidence_captured_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    selfie_url: Mapped[str | None] = mapped_column(Text(), nullable=True)
    id_document_url: Mapped[str | None] = mapped_column(Text(), nullable=True)

    witness_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    witness_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    witness_confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

class WitnessConfirmation(Base):
    """
    Single-use witness link. A resend sets `retired_at` (and cuts `expires_at` short)
    on every unconfirmed predecessor, so one link per claim is live.
    """
    __tablename__ = "witness_confirmations"
    __table_args__ = (
        Index("uq_witness_confirmations_live", "verification_id", unique=True,
              postgresql_where=text("confirmed_at IS NULL AND retired_at IS NULL"),
              sqlite_where=text("confirmed_at IS NULL AND retired_at IS NULL")),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    verification_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("verifications.id", ondelete="CASCADE"), index=True, nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    witness_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    retired_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # user_agent / ip_address (coarse) / confirmed_timestamp
    meta_json: Mapped[dict] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

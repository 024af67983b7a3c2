from __future__ import annotations
from typing import Literal
from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from datetime import datetime

ClaimStatus = Literal["initiated", "pending", "under_review", "verified", "rejected"]


class ClaimPublic(BaseModel):
    id: UUID
    entry_id: UUID
    status: ClaimStatus
    evidence_captured_at: datetime | None = None
    selfie_url: str | None = None
    id_document_url: str | None = None
    witness_name: str | None = None
    witness_email: str | None = None
    # Advisory: a claim may be verified without it, but adjudicators must see it is missing
    witness_confirmed: bool
    witness_confirmed_at: datetime | None = None
    verified_at: datetime | None = None
    verified_by: UUID | None = None
    created_at: datetime
    updated_at: datetime
    warnings: list[str] = Field(default_factory=list)


class ClaimCounts(BaseModel):
    total: int
    pending: int
    under_review: int
    verified: int
    rejected: int


class ClaimList(BaseModel):
    items: list[ClaimPublic]
    counts: ClaimCounts


class EvidenceIn(BaseModel):
    selfie_url: str | None = Field(default=None, max_length=2048)
    id_document_url: str | None = Field(default=None, max_length=2048)
    witness_name: str | None = Field(default=None, max_length=120)
    witness_email: EmailStr | None = None


class EvidenceOut(BaseModel):
    claim: ClaimPublic
    witness_email_sent: bool | None = None


class WitnessRequestIn(BaseModel):
    witness_name: str | None = Field(default=None, max_length=120)
    witness_email: EmailStr | None = None


class WitnessRequestOut(BaseModel):
    expires_at: datetime
    email_sent: bool

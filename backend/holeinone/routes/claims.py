from __future__ import annotations
import uuid
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from holeinone.auth_deps import get_current_user, is_admin, require_admin
from holeinone.db import get_session
from holeinone.models.user import User
from holeinone.models.verification import Verification
from holeinone.schemas.claim import (
    ClaimPublic, ClaimList, ClaimCounts, EvidenceIn, EvidenceOut, WitnessRequestIn, WitnessRequestOut,
)
from holeinone.services import claims
from holeinone.services.mailer import Mailer, get_mailer
from holeinone.services.witness import issue_witness_token

router = APIRouter(prefix="/claims", tags=["claims"])

def to_public(v: Verification) -> ClaimPublic:
    return ClaimPublic(
        id=v.id, entry_id=v.entry_id, status=v.status,
        evidence_captured_at=v.evidence_captured_at,
        selfie_url=v.selfie_url, id_document_url=v.id_document_url,
        witness_name=v.witness_name, witness_email=v.witness_email,
        witness_confirmed=v.witness_confirmed_at is not None,
        witness_confirmed_at=v.witness_confirmed_at,
        verified_at=v.verified_at, verified_by=v.verified_by,
        created_at=v.created_at, updated_at=v.updated_at,
        warnings=claims.claim_warnings(v),
    )

async def _claim_for(session: AsyncSession, claim_id: uuid.UUID, user: User) -> Verification:
    v = await session.get(Verification, claim_id, populate_existing=True)
    if not v or (not is_admin(user) and await claims.claim_owner_id(session, v) != user.id):
        raise HTTPException(status_code=404, detail="Claim not found")
    return v

@router.get("", response_model=ClaimList)
async def list_claims(
    status: str | None = Query(None, pattern="^(initiated|pending|under_review|verified|rejected)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    items = await claims.list_claims(session, status=status, limit=limit, offset=offset)
    counts = await claims.status_counts(session)
    return ClaimList(items=[to_public(v) for v in items], counts=ClaimCounts(**counts))

@router.get("/{claim_id}", response_model=ClaimPublic)
async def get_claim(
    claim_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return to_public(await _claim_for(session, claim_id, user))

@router.post("/{claim_id}/evidence", response_model=EvidenceOut)
async def submit_evidence(
    claim_id: uuid.UUID,
    payload: EvidenceIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    v = await claims.submit_evidence(
        session, mailer, claim_id, user.id,
        selfie_url=payload.selfie_url, id_document_url=payload.id_document_url,
        witness_name=payload.witness_name, witness_email=payload.witness_email,
    )
    witness_email_sent = None
    if payload.witness_email:
        req = await issue_witness_token(session, mailer, claim_id)
        witness_email_sent = req.email_sent
        v = await claims.get_claim(session, claim_id)
    return EvidenceOut(claim=to_public(v), witness_email_sent=witness_email_sent)

@router.post("/{claim_id}/witness-request", response_model=WitnessRequestOut)
async def request_witness(
    claim_id: uuid.UUID,
    payload: WitnessRequestIn | None = Body(None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    await _claim_for(session, claim_id, user)
    payload = payload or WitnessRequestIn()
    req = await issue_witness_token(
        session, mailer, claim_id, witness_name=payload.witness_name, witness_email=payload.witness_email,
    )
    return WitnessRequestOut(expires_at=req.expires_at, email_sent=req.email_sent)

@router.post("/{claim_id}/review", response_model=ClaimPublic)
async def move_to_review(
    claim_id: uuid.UUID,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return to_public(await claims.move_to_review(session, claim_id))

@router.post("/{claim_id}/approve", response_model=ClaimPublic)
async def approve(
    claim_id: uuid.UUID,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    return to_public(await claims.approve(session, mailer, claim_id, admin))

@router.post("/{claim_id}/reject", response_model=ClaimPublic)
async def reject(
    claim_id: uuid.UUID,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    return to_public(await claims.reject(session, mailer, claim_id, admin))

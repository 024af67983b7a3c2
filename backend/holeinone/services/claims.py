"""Claim verification state machine.

    initiated -> pending -> under_review -> verified | rejected

`verified` and `rejected` absorb. Approve/reject may skip review. Every
transition is one UPDATE guarded on the allowed prior statuses, so two admins
racing on the same claim cannot both decide it.
"""
from __future__ import annotations
import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holeinone.config import settings
from holeinone.db import utcnow
from holeinone.models.competition import Competition, Entry
from holeinone.models.user import User
from holeinone.models.verification import Verification
from holeinone.services.email_templates import claim_decision_email, claim_submitted_email
from holeinone.services.errors import DeliveryFailure, InvalidTransition, NotFound, StoreFailure
from holeinone.services.mailer import Mailer

log = structlog.get_logger()

TERMINAL = ("verified", "rejected")
OPEN = ("initiated", "pending", "under_review")

# action -> (allowed prior statuses, target status)
TRANSITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "submit_evidence": (("initiated", "pending"), "pending"),
    "move_to_review": (("pending",), "under_review"),
    "approve": (OPEN, "verified"),
    "reject": (OPEN, "rejected"),
}


def open_claim(session: AsyncSession, entry_id: uuid.UUID) -> Verification:
    # Joins the caller's transaction; committed together with the win report
    v = Verification(id=uuid.uuid4(), entry_id=entry_id, status="initiated")
    session.add(v)
    return v


def is_terminal(v: Verification) -> bool:
    return v.status in TERMINAL


def claim_warnings(v: Verification) -> list[str]:
    warnings = []
    if v.witness_confirmed_at is None:
        warnings.append("witness_unconfirmed")
    return warnings


async def get_claim(session: AsyncSession, verification_id: uuid.UUID) -> Verification:
    v = await session.get(Verification, verification_id, populate_existing=True)
    if v is None:
        raise NotFound("Claim not found")
    return v


async def claim_owner_id(session: AsyncSession, v: Verification) -> uuid.UUID | None:
    return await session.scalar(select(Entry.player_id).where(Entry.id == v.entry_id))


async def _transition(session: AsyncSession, verification_id: uuid.UUID, action: str, now: datetime,
                      **values) -> Verification:
    allowed, target = TRANSITIONS[action]
    try:
        res = await session.execute(
            update(Verification)
            .where(Verification.id == verification_id, Verification.status.in_(allowed))
            .values(status=target, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("claim_transition_failed", claim_id=str(verification_id), action=action, error=type(e).__name__)
        raise StoreFailure() from e

    if res.rowcount != 1:
        v = await get_claim(session, verification_id)
        log.info("claim_transition_refused", claim_id=str(verification_id), action=action, status=v.status)
        raise InvalidTransition(f"Cannot {action.replace('_', ' ')} a claim that is {v.status}")

    v = await session.get(Verification, verification_id, populate_existing=True)
    log.info("claim_transition", claim_id=str(verification_id), action=action, status=target)
    return v


async def submit_evidence(
    session: AsyncSession,
    mailer: Mailer,
    verification_id: uuid.UUID,
    player_id: uuid.UUID,
    *,
    selfie_url: str | None = None,
    id_document_url: str | None = None,
    witness_name: str | None = None,
    witness_email: str | None = None,
    now: datetime | None = None,
) -> Verification:
    now = now or utcnow()
    v = await get_claim(session, verification_id)
    if await claim_owner_id(session, v) != player_id:
        raise NotFound("Claim not found")
    first_submission = v.status == "initiated"
    values = {"evidence_captured_at": now}
    for name, value in (("selfie_url", selfie_url), ("id_document_url", id_document_url),
                        ("witness_name", witness_name), ("witness_email", witness_email)):
        if value:
            values[name] = value
    v = await _transition(session, verification_id, "submit_evidence", now, **values)
    if first_submission:
        await _notify_adjudicators(session, mailer, v, now)
    return v


async def _notify_adjudicators(session: AsyncSession, mailer: Mailer, v: Verification, now: datetime) -> None:
    if not settings.claims_notify_email:
        return
    row = (await session.execute(
        select(User.email, User.first_name, User.last_name, Competition.name, Competition.club_name,
               Competition.hole_number)
        .join(Entry, Entry.player_id == User.id)
        .join(Competition, Competition.id == Entry.competition_id)
        .where(Entry.id == v.entry_id)
    )).first()
    if row is None:
        return
    email, first_name, last_name, competition_name, club_name, hole_number = row
    subject, html = claim_submitted_email(
        player_name=f"{first_name} {last_name}".strip(),
        player_email=email,
        competition_name=competition_name,
        club_name=club_name,
        hole_number=hole_number,
        status=v.status,
        submitted_at=now,
        review_link=f"{settings.app_base_url.rstrip('/')}/admin/claims/{v.id}",
        claim_id=str(v.id),
    )
    try:
        await mailer.send(settings.claims_notify_email, subject, html, sender=settings.claims_email_from)
    except DeliveryFailure:
        log.warning("claim_submitted_email_failed", claim_id=str(v.id))


async def move_to_review(session: AsyncSession, verification_id: uuid.UUID,
                         now: datetime | None = None) -> Verification:
    return await _transition(session, verification_id, "move_to_review", now or utcnow())


async def _notify_player(session: AsyncSession, mailer: Mailer, v: Verification, approved: bool) -> None:
    row = (await session.execute(
        select(User.email, User.first_name, Competition.name)
        .join(Entry, Entry.player_id == User.id)
        .join(Competition, Competition.id == Entry.competition_id)
        .where(Entry.id == v.entry_id)
    )).first()
    if row is None:
        return
    email, first_name, competition_name = row
    subject, html = claim_decision_email(first_name=first_name, competition_name=competition_name, approved=approved)
    try:
        await mailer.send(email, subject, html, sender=settings.claims_email_from)
    except DeliveryFailure:
        # The decision stands; the email can be re-sent by support
        log.warning("claim_decision_email_failed", claim_id=str(v.id), approved=approved)


async def approve(session: AsyncSession, mailer: Mailer, verification_id: uuid.UUID, admin: User,
                  now: datetime | None = None) -> Verification:
    now = now or utcnow()
    v = await _transition(session, verification_id, "approve", now, verified_at=now, verified_by=admin.id)
    if v.witness_confirmed_at is None:
        log.info("claim_approved_without_witness", claim_id=str(v.id))
    await _notify_player(session, mailer, v, approved=True)
    return v


async def reject(session: AsyncSession, mailer: Mailer, verification_id: uuid.UUID, admin: User,
                 now: datetime | None = None) -> Verification:
    now = now or utcnow()
    v = await _transition(session, verification_id, "reject", now, verified_at=now, verified_by=admin.id)
    await _notify_player(session, mailer, v, approved=False)
    return v


async def status_counts(session: AsyncSession) -> dict[str, int]:
    rows = (await session.execute(
        select(Verification.status, func.count()).group_by(Verification.status)
    )).all()
    by_status = {status: int(n) for status, n in rows}
    return {
        "total": sum(by_status.values()),
        "pending": sum(by_status.get(s, 0) for s in OPEN),
        "under_review": by_status.get("under_review", 0),
        "verified": by_status.get("verified", 0),
        "rejected": by_status.get("rejected", 0),
    }


async def list_claims(session: AsyncSession, status: str | None = None, limit: int = 50,
                      offset: int = 0) -> list[Verification]:
    q = select(Verification).order_by(Verification.created_at.desc(), Verification.id)
    if status == "pending":
        q = q.where(Verification.status.in_(OPEN))
    elif status:
        q = q.where(Verification.status == status)
    q = q.limit(limit).offset(offset).execution_options(populate_existing=True)
    return list((await session.execute(q)).scalars().all())

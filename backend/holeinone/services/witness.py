"""Witness confirmation for a claimed hole-in-one.

A third party gets a single-use link (`/confirm-witness?id=<claim>&token=<t>`)
that lives longer than a sign-in link. Confirming is advisory evidence on the
claim; it never moves the claim's status.
"""
from __future__ import annotations
import ipaddress
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from html import escape
from typing import Literal
from urllib.parse import quote

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holeinone.config import settings
from holeinone.db import utcnow
from holeinone.models.competition import Competition, Entry
from holeinone.models.user import User
from holeinone.models.verification import Verification, WitnessConfirmation
from holeinone.security import generate_link_token, hash_link_token, token_ref
from holeinone.services.claims import is_terminal
from holeinone.services.email_templates import witness_request_email
from holeinone.services.errors import (
    DeliveryFailure, InvalidToken, InvalidTransition, LinkExpired, NotFound, StoreFailure, ValidationError,
)
from holeinone.services.magic_links import ISSUE_ATTEMPTS, validate_email
from holeinone.services.mailer import Mailer

log = structlog.get_logger()

EXPIRED_MESSAGE = "This confirmation link has expired. Please contact the player to request a new one."


@dataclass
class WitnessRequest:
    confirmation_id: uuid.UUID
    expires_at: datetime
    email_sent: bool
    email_id: str | None = None
    token: str = field(default="", repr=False)


@dataclass
class WitnessResult:
    status: Literal["confirmed", "already_confirmed"]
    verification_id: uuid.UUID
    confirmed_at: datetime


def coarse_ip(raw: str | None) -> str | None:
    """Network the visitor came from, not the address: /24 for IPv4, /48 for IPv6."""
    if not raw:
        return None
    try:
        ip = ipaddress.ip_address(raw.split(",")[0].strip())
    except ValueError:
        return None
    prefix = 24 if ip.version == 4 else 48
    return str(ipaddress.ip_network(f"{ip}/{prefix}", strict=False))


def witness_link(verification_id: uuid.UUID, token: str) -> str:
    return f"{settings.public_api_url.rstrip('/')}/confirm-witness?id={verification_id}&token={quote(token, safe='')}"


async def issue_witness_token(
    session: AsyncSession,
    mailer: Mailer,
    verification_id: uuid.UUID,
    *,
    witness_name: str | None = None,
    witness_email: str | None = None,
    now: datetime | None = None,
) -> WitnessRequest:
    now = now or utcnow()
    v = await session.get(Verification, verification_id, populate_existing=True)
    if v is None:
        raise NotFound("Claim not found")
    if is_terminal(v):
        raise InvalidTransition(f"Claim is already {v.status}")
    if not (witness_email or v.witness_email):
        raise ValidationError("Witness email is required")
    email = validate_email(witness_email or v.witness_email)
    name = witness_name or v.witness_name or "there"
    resent = await session.scalar(
        select(WitnessConfirmation.id).where(WitnessConfirmation.verification_id == verification_id).limit(1)
    ) is not None

    plain, token_hash = generate_link_token()
    expires_at = now + timedelta(hours=settings.witness_ttl_hours)
    # uq_witness_confirmations_live allows one live token per claim; losing a
    # concurrent issue surfaces as IntegrityError and the retry retires it.
    for attempt in range(1, ISSUE_ATTEMPTS + 1):
        confirmation = WitnessConfirmation(
            id=uuid.uuid4(),
            verification_id=verification_id,
            token_hash=token_hash,
            witness_email=email,
            expires_at=expires_at,
            meta_json={},
        )
        try:
            # Only the newest link stays live
            await session.execute(
                update(WitnessConfirmation)
                .where(
                    WitnessConfirmation.verification_id == verification_id,
                    WitnessConfirmation.confirmed_at.is_(None),
                    WitnessConfirmation.retired_at.is_(None),
                )
                .values(
                    retired_at=now,
                    expires_at=case((WitnessConfirmation.expires_at > now, now), else_=WitnessConfirmation.expires_at),
                )
                .execution_options(synchronize_session=False)
            )
            v.witness_email = email
            if witness_name:
                v.witness_name = witness_name
            session.add(confirmation)
            await session.commit()
            break
        except IntegrityError as e:
            await session.rollback()
            if attempt == ISSUE_ATTEMPTS:
                log.error("witness_token_store_failed", claim_id=str(verification_id), error=type(e).__name__)
                raise StoreFailure() from e
            log.info("witness_token_issue_conflict", claim_id=str(verification_id), attempt=attempt)
            await session.refresh(v)
        except SQLAlchemyError as e:
            await session.rollback()
            log.error("witness_token_store_failed", claim_id=str(verification_id), error=type(e).__name__)
            raise StoreFailure() from e
    log.info("witness_token_issued", claim_id=str(verification_id), token_ref=token_ref(token_hash), resent=resent)

    row = (await session.execute(
        select(User.first_name, User.last_name, Competition.name, Competition.club_name, Competition.hole_number)
        .join(Entry, Entry.player_id == User.id)
        .join(Competition, Competition.id == Entry.competition_id)
        .where(Entry.id == v.entry_id)
    )).first()
    first_name, last_name, competition_name, club_name, hole_number = row or ("", "", "", "", None)
    subject, html = witness_request_email(
        witness_name=name,
        player_name=f"{first_name} {last_name}".strip() or "A player",
        competition_name=competition_name,
        club_name=club_name,
        hole_number=hole_number,
        link=witness_link(verification_id, plain),
        ttl_hours=settings.witness_ttl_hours,
        resent=resent,
    )
    try:
        sent = await mailer.send(email, subject, html, sender=settings.claims_email_from)
    except DeliveryFailure:
        log.warning("witness_email_failed", claim_id=str(verification_id), token_ref=token_ref(token_hash))
        return WitnessRequest(confirmation.id, expires_at, email_sent=False, token=plain)
    return WitnessRequest(confirmation.id, expires_at, email_sent=True, email_id=sent.id, token=plain)


async def confirm_witness(
    session: AsyncSession,
    verification_id: uuid.UUID,
    token: str,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> WitnessResult:
    now = now or utcnow()
    token_hash = hash_link_token(token.strip())
    try:
        wc = await session.scalar(
            select(WitnessConfirmation).where(
                WitnessConfirmation.verification_id == verification_id,
                WitnessConfirmation.token_hash == token_hash,
            ).execution_options(populate_existing=True)
        )
    except SQLAlchemyError as e:
        log.error("witness_lookup_failed", claim_id=str(verification_id), error=type(e).__name__)
        raise StoreFailure() from e
    if wc is None:
        log.info("witness_token_invalid", claim_id=str(verification_id), token_ref=token_ref(token_hash))
        raise InvalidToken()
    # Stale bookmarks of a confirmed link are benign, even after expiry
    if wc.confirmed_at is not None:
        return WitnessResult("already_confirmed", verification_id, wc.confirmed_at)
    if now > wc.expires_at or wc.retired_at is not None:
        log.info("witness_token_expired", claim_id=str(verification_id), token_ref=token_ref(token_hash))
        raise LinkExpired(EXPIRED_MESSAGE)

    meta = {
        "user_agent": (user_agent or "")[:512] or None,
        "ip_address": coarse_ip(ip_address),
        "confirmed_timestamp": now.isoformat(),
    }
    try:
        res = await session.execute(
            update(WitnessConfirmation)
            .where(
                WitnessConfirmation.id == wc.id,
                WitnessConfirmation.confirmed_at.is_(None),
                WitnessConfirmation.retired_at.is_(None),
            )
            .values(confirmed_at=now, meta_json=meta)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            await session.execute(
                update(Verification)
                .where(Verification.id == verification_id, Verification.witness_confirmed_at.is_(None))
                .values(witness_confirmed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("witness_confirm_failed", claim_id=str(verification_id), error=type(e).__name__)
        raise StoreFailure() from e

    if res.rowcount != 1:
        wc = await session.get(WitnessConfirmation, wc.id, populate_existing=True)
        if wc.confirmed_at is None:
            # Retired by a resend after we read it
            raise LinkExpired(EXPIRED_MESSAGE)
        return WitnessResult("already_confirmed", verification_id, wc.confirmed_at)
    log.info("witness_confirmed", claim_id=str(verification_id), token_ref=token_ref(token_hash))
    return WitnessResult("confirmed", verification_id, now)


_PAGE_TONES = {
    "success": ("#10b981", "&#10003;"),
    "info": ("#3b82f6", "&#8505;"),
    "warning": ("#f59e0b", "&#9888;"),
    "error": ("#ef4444", "&#10007;"),
}


def render_page(title: str, message: str, tone: str = "info") -> str:
    color, icon = _PAGE_TONES[tone]
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"><title>{escape(title)}</title></head>
<body style="margin:0;min-height:100vh;display:flex;align-items:center;justify-content:center;background:#f9fafb;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
  <div style="max-width:480px;margin:20px;padding:40px;background:#ffffff;border-radius:12px;text-align:center;box-shadow:0 4px 6px rgba(0,0,0,0.1);">
    <div style="font-size:48px;color:{color};">{icon}</div>
    <h1 style="color:#111827;font-size:24px;">{escape(title)}</h1>
    <p style="color:#6b7280;font-size:16px;line-height:1.6;">{escape(message)}</p>
    <p style="color:#9ca3af;font-size:12px;margin-top:30px;">{escape(settings.app_display_name)}</p>
  </div>
</body>
</html>"""

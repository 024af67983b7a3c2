"""Passwordless entry links: issuance and redemption.

One parameterized issuer serves every flow; a flow only chooses the link
lifetime, how strictly the entry intent is validated, and which email is sent.
Redemption flips `used` with a conditional update in the same transaction that
creates/updates the account and mints the session, so a failed session issue
leaves the token redeemable and two concurrent redemptions cannot both win.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal
from urllib.parse import quote, urlsplit

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holeinone.config import settings
from holeinone.db import utcnow
from holeinone.models.auth_token import MagicLinkToken
from holeinone.models.user import User
from holeinone.schemas.auth import DEFAULT_AGE_YEARS, DEFAULT_FIRST_NAME, EntryIntent
from holeinone.security import generate_link_token, hash_link_token, make_access_token, make_refresh_token, token_ref
from holeinone.services.email_templates import magic_link_email
from holeinone.services.errors import (
    DeliveryFailure, StoreFailure, TokenAlreadyUsed, TokenExpired, TokenNotFound, ValidationError,
)
from holeinone.services.mailer import Mailer

log = structlog.get_logger()

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 255
HANDICAP_RANGE = (-10.0, 54.0)
ISSUE_ATTEMPTS = 3

Strictness = Literal["lenient", "strict"]


@dataclass(frozen=True)
class IssuanceFlow:
    name: str
    ttl_minutes: int
    strictness: Strictness
    min_age: int = 13
    max_age: int = 120
    branded: bool = False

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


def get_flow(name: str) -> IssuanceFlow:
    flows = {
        # bare OTP-style sign-in link
        "otp": IssuanceFlow("otp", settings.otp_link_ttl_minutes, "lenient"),
        "secure": IssuanceFlow("secure", settings.secure_link_ttl_minutes, "strict", min_age=16),
        # entry form with full profile, longer lived
        "branded": IssuanceFlow("branded", settings.branded_link_ttl_minutes, "strict", branded=True),
    }
    try:
        return flows[name]
    except KeyError:
        raise ValidationError(f"Unknown entry flow: {name}")


@dataclass
class IssueResult:
    expires_at: datetime
    email_sent: bool
    email_id: str | None = None
    delivery_error: str | None = None
    token: str = field(default="", repr=False)


@dataclass
class RedeemResult:
    user: User
    access: str
    refresh: str
    redirect_url: str


def validate_email(email: str) -> str:
    email = email.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH or not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address")
    return email


def _validate_intent(flow: IssuanceFlow, intent: EntryIntent) -> None:
    validate_email(intent.email)
    if flow.strictness != "strict":
        return
    if "first_name" not in intent.model_fields_set:
        raise ValidationError("First name is required")
    if not (flow.min_age <= intent.age_years <= flow.max_age):
        raise ValidationError(f"Age must be between {flow.min_age} and {flow.max_age}")
    lo, hi = HANDICAP_RANGE
    if intent.handicap is not None and not (lo <= intent.handicap <= hi):
        raise ValidationError(f"Handicap must be between {lo:g} and {hi:g}")


def resolve_redirect(redirect_url: str, flow: IssuanceFlow) -> tuple[str, str]:
    """
    Returns (origin, destination). Paths are resolved against the app origin;
    absolute URLs must be http(s). Strict flows only resume on allowed origins.
    """
    destination = redirect_url.strip()
    if destination.startswith("/") and not destination.startswith("//"):
        absolute = settings.app_base_url.rstrip("/") + destination
    else:
        absolute = destination
    parts = urlsplit(absolute)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError("Invalid redirect URL")
    origin = f"{parts.scheme}://{parts.netloc}"
    if flow.strictness == "strict" and origin not in settings.redirect_origins():
        raise ValidationError("Redirect URL is not allowed")
    return origin, destination


def build_magic_link(origin: str, token: str, destination: str) -> str:
    return f"{origin}/auth/callback?token={quote(token, safe='')}&redirect={quote(destination, safe='')}"


async def issue_magic_link(
    session: AsyncSession,
    mailer: Mailer,
    *,
    flow_name: str,
    intent: EntryIntent,
    redirect_url: str,
    now: datetime | None = None,
) -> IssueResult:
    flow = get_flow(flow_name)
    _validate_intent(flow, intent)
    origin, destination = resolve_redirect(redirect_url, flow)
    now = now or utcnow()
    plain, token_hash = generate_link_token()
    expires_at = now + flow.ttl

    # ix_magic_link_tokens_email_unused allows one unconsumed row per email; a
    # concurrent issue that commits first makes our insert fail, and the retry
    # retires its token like any other.
    for attempt in range(1, ISSUE_ATTEMPTS + 1):
        try:
            # Any unconsumed link for this address stops working from here on
            replaced = await session.execute(
                update(MagicLinkToken)
                .where(MagicLinkToken.email == intent.email, MagicLinkToken.used.is_(False))
                .values(used=True, used_at=now)
                .execution_options(synchronize_session=False)
            )
            session.add(MagicLinkToken(
                token_hash=token_hash,
                email=intent.email,
                flow=flow.name,
                first_name=intent.first_name,
                last_name=intent.last_name,
                phone_e164=intent.phone,
                age_years=intent.age_years,
                handicap=intent.handicap,
                competition_name=intent.competition_name,
                club_name=intent.club_name,
                redirect_url=destination,
                created_at=now,
                expires_at=expires_at,
                used=False,
            ))
            await session.commit()
            break
        except IntegrityError as e:
            await session.rollback()
            if attempt == ISSUE_ATTEMPTS:
                log.error("magic_link_store_failed", email=intent.email, flow=flow.name, error=type(e).__name__)
                raise StoreFailure("Failed to create secure entry link") from e
            log.info("magic_link_issue_conflict", email=intent.email, attempt=attempt)
        except SQLAlchemyError as e:
            await session.rollback()
            log.error("magic_link_store_failed", email=intent.email, flow=flow.name, error=type(e).__name__)
            raise StoreFailure("Failed to create secure entry link") from e

    log.info("magic_link_issued", email=intent.email, flow=flow.name, token_ref=token_ref(token_hash),
             replaced=replaced.rowcount or 0, expires_at=expires_at.isoformat())

    subject, html = magic_link_email(
        branded=flow.branded,
        first_name=intent.first_name,
        last_name=intent.last_name,
        age_years=intent.age_years,
        handicap=intent.handicap,
        competition_name=intent.competition_name,
        club_name=intent.club_name,
        link=build_magic_link(origin, plain, destination),
        ttl_minutes=flow.ttl_minutes,
    )
    try:
        sent = await mailer.send(intent.email, subject, html)
    except DeliveryFailure as e:
        # The stored link stays valid so a resend can still succeed
        log.warning("magic_link_email_failed", email=intent.email, token_ref=token_ref(token_hash))
        return IssueResult(expires_at=expires_at, email_sent=False, delivery_error=e.message, token=plain)
    return IssueResult(expires_at=expires_at, email_sent=True, email_id=sent.id, token=plain)


async def _get_or_create_user(session: AsyncSession, t: MagicLinkToken) -> tuple[User, bool]:
    user = await session.scalar(select(User).where(User.email == t.email))
    if user:
        return user, False
    try:
        async with session.begin_nested():
            user = User(
                email=t.email,
                first_name=t.first_name,
                last_name=t.last_name,
                phone_e164=t.phone_e164,
                age_years=t.age_years,
                handicap=t.handicap,
                role="player",
            )
            session.add(user)
    except IntegrityError:
        # Concurrent first sign-in for the same address created it first
        user = await session.scalar(select(User).where(User.email == t.email))
        if user is None:
            raise
        return user, False
    return user, True


def _upsert_profile(user: User, t: MagicLinkToken) -> None:
    # Placeholder defaults never overwrite what an existing account already holds
    if t.first_name and (t.first_name != DEFAULT_FIRST_NAME or not user.first_name):
        user.first_name = t.first_name
    if t.last_name:
        user.last_name = t.last_name
    if t.phone_e164:
        user.phone_e164 = t.phone_e164
    if t.age_years != DEFAULT_AGE_YEARS or user.age_years is None:
        user.age_years = t.age_years
    if t.handicap is not None:
        user.handicap = t.handicap


async def redeem_magic_link(session: AsyncSession, token: str, now: datetime | None = None) -> RedeemResult:
    now = now or utcnow()
    token_hash = hash_link_token(token.strip())
    t = await session.scalar(
        select(MagicLinkToken)
        .where(MagicLinkToken.token_hash == token_hash)
        .execution_options(populate_existing=True)
    )
    if t is None:
        log.info("magic_link_not_found", token_ref=token_ref(token_hash))
        raise TokenNotFound()
    # Expiry wins over `used`: an expired link always reads as expired
    if now > t.expires_at:
        log.info("magic_link_expired", token_ref=token_ref(token_hash), email=t.email)
        raise TokenExpired()
    if t.used:
        log.info("magic_link_reused", token_ref=token_ref(token_hash), email=t.email)
        raise TokenAlreadyUsed()

    try:
        claimed = await session.execute(
            update(MagicLinkToken)
            .where(MagicLinkToken.id == t.id, MagicLinkToken.used.is_(False))
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 1:
            user, created = await _get_or_create_user(session, t)
            if not created:
                _upsert_profile(user, t)
            access = make_access_token(str(user.id))
            refresh = make_refresh_token(str(user.id))
            await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("magic_link_redeem_failed", token_ref=token_ref(token_hash), error=type(e).__name__)
        raise StoreFailure() from e
    except Exception:
        # Undoes the `used` flip so the link can be tried again
        await session.rollback()
        raise

    if claimed.rowcount != 1:
        # A concurrent redemption flipped it between our read and our write
        log.info("magic_link_redeem_lost_race", token_ref=token_ref(token_hash), email=t.email)
        raise TokenAlreadyUsed()

    log.info("magic_link_redeemed", token_ref=token_ref(token_hash), user_id=str(user.id), new_account=created)
    return RedeemResult(user=user, access=access, refresh=refresh, redirect_url=t.redirect_url)

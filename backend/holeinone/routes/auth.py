from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from holeinone.auth_deps import get_current_user
from holeinone.config import settings
from holeinone.db import get_session
from holeinone.models.user import User
from holeinone.schemas.auth import (
    MagicLinkRequest, ResendLinkRequest, MagicLinkIssued, VerifyMagicLinkRequest,
    SessionOut, TokenPair, UserPublic,
)
from holeinone.security import make_access_token, make_refresh_token, decode_token
from holeinone.services.magic_links import IssueResult, issue_magic_link, redeem_magic_link
from holeinone.services.mailer import Mailer, get_mailer
from holeinone.services.throttle import Throttle, get_throttle

router = APIRouter(prefix="/auth", tags=["auth"])

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"

def to_public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id, email=user.email, first_name=user.first_name, last_name=user.last_name,
        role=user.role, created_at=user.created_at,
    )

def _issued(result: IssueResult) -> MagicLinkIssued:
    if result.email_sent:
        message = "Check your email for your secure entry link"
    else:
        message = "Your entry link was created but the email could not be sent. Please request it again."
    return MagicLinkIssued(
        success=True, message=message, email_sent=result.email_sent,
        expires_at=result.expires_at, email_id=result.email_id,
    )

@router.post("/magic-link", response_model=MagicLinkIssued)
async def request_magic_link(
    payload: MagicLinkRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    throttle: Throttle = Depends(get_throttle),
):
    key = f"magic_link:{client_ip(request)}"
    limit = settings.magic_link_rate_limit
    if throttle.limiter.is_rate_limited(key, limit, settings.magic_link_rate_window_seconds * 1000):
        raise HTTPException(status_code=429, detail="Too many requests. Please try again later.",
                            headers=throttle.limiter.headers(key, limit))
    response.headers.update(throttle.limiter.headers(key, limit))
    result = await issue_magic_link(
        session, mailer, flow_name=payload.flow, intent=payload.to_intent(), redirect_url=payload.redirect_url,
    )
    return _issued(result)

@router.post("/magic-link/resend", response_model=MagicLinkIssued)
async def resend_magic_link(
    payload: ResendLinkRequest,
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    throttle: Throttle = Depends(get_throttle),
):
    key = f"resend:{payload.email.lower()}"
    cooldown = throttle.cooldowns.state(key)
    if cooldown.is_active:
        raise HTTPException(
            status_code=429,
            detail=f"Please wait {cooldown.remaining_seconds} seconds before requesting another link",
            headers={"Retry-After": str(cooldown.remaining_seconds)},
        )
    limit = settings.max_resend_attempts
    if throttle.limiter.is_rate_limited(key, limit, settings.resend_window_seconds * 1000):
        raise HTTPException(status_code=429, detail="Too many resend attempts. Please try again later.",
                            headers=throttle.limiter.headers(key, limit))
    result = await issue_magic_link(
        session, mailer, flow_name=payload.flow, intent=payload.to_intent(), redirect_url=payload.redirect_url,
    )
    throttle.cooldowns.start_cooldown(key)
    return _issued(result)

@router.post("/verify-magic-link", response_model=SessionOut)
async def verify_magic_link(payload: VerifyMagicLinkRequest, session: AsyncSession = Depends(get_session)):
    result = await redeem_magic_link(session, payload.token)
    return SessionOut(
        session=TokenPair(access=result.access, refresh=result.refresh),
        redirect=result.redirect_url,
        user=to_public(result.user),
    )

@router.post("/refresh", response_model=TokenPair)
async def refresh(authorization: str | None = Header(None)):
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing refresh token")
    token = authorization.split(" ", 1)[1]
    try:
        data = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Wrong token type")
    sub = data.get("sub")
    return TokenPair(access=make_access_token(sub), refresh=make_refresh_token(sub))

@router.get("/me", response_model=UserPublic)
async def me(user: User = Depends(get_current_user)):
    return to_public(user)

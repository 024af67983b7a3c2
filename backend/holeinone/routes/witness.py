from __future__ import annotations
import uuid
import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession
from holeinone.db import get_session
from holeinone.routes.auth import client_ip
from holeinone.services.errors import InvalidToken, LinkExpired, ServiceError
from holeinone.services.witness import confirm_witness, render_page

router = APIRouter(tags=["witness"])
log = structlog.get_logger()

INVALID = ("Invalid Link", "This confirmation link is invalid.", "error")

# Plain HTML only: witnesses open this straight from their inbox
@router.get("/confirm-witness", response_class=HTMLResponse)
async def confirm_witness_page(
    request: Request,
    id: str | None = Query(None),
    token: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    try:
        verification_id = uuid.UUID(id or "")
    except ValueError:
        return HTMLResponse(render_page(*INVALID), status_code=400)
    if not token:
        return HTMLResponse(render_page(*INVALID), status_code=400)
    try:
        result = await confirm_witness(
            session, verification_id, token,
            user_agent=request.headers.get("user-agent"),
            ip_address=client_ip(request),
        )
    except InvalidToken:
        return HTMLResponse(render_page(*INVALID), status_code=400)
    except LinkExpired as e:
        return HTMLResponse(render_page("Link Expired", e.message, "warning"), status_code=410)
    except ServiceError as e:
        log.error("witness_page_error", code=e.code)
        return HTMLResponse(
            render_page("Something went wrong", "We could not record your confirmation. Please try again later.", "error"),
            status_code=500,
        )
    if result.status == "already_confirmed":
        return HTMLResponse(render_page("Already Confirmed", "You have already confirmed this hole-in-one. Thank you!", "info"))
    return HTMLResponse(render_page(
        "Confirmation Received",
        "Thank you for confirming this hole-in-one. Your confirmation has been recorded.",
        "success",
    ))

from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from holeinone.config import settings
from holeinone.services.errors import DeliveryFailure

log = structlog.get_logger()

_RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class SendResult:
    # Provider message id. Accepted by the provider, not necessarily delivered.
    id: str


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html: str, *, sender: str | None = None) -> SendResult: ...


class ResendMailer:
    def __init__(self, api_key: str, default_sender: str, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self._api_key = api_key
        self._sender = default_sender
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, subject: str, html: str, *, sender: str | None = None) -> SendResult:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={"from": sender or self._sender, "to": [to], "subject": subject, "html": html},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            log.warning("email_rejected", to=to, status=e.response.status_code)
            raise DeliveryFailure("The email provider rejected the message") from e
        except httpx.HTTPError as e:
            log.warning("email_send_failed", to=to, error=type(e).__name__)
            raise DeliveryFailure() from e
        message_id = str(data.get("id") or "")
        log.info("email_accepted", to=to, email_id=message_id)
        return SendResult(id=message_id)


class LogMailer:
    """Used when no provider key is configured (local dev). Bodies are not logged: they hold live links."""

    async def send(self, to: str, subject: str, html: str, *, sender: str | None = None) -> SendResult:
        message_id = f"log-{uuid.uuid4()}"
        log.info("email_skipped_no_provider", to=to, subject=subject, email_id=message_id)
        return SendResult(id=message_id)


def get_mailer() -> Mailer:
    if settings.resend_api_key:
        return ResendMailer(settings.resend_api_key, settings.email_from, settings.email_timeout_seconds)
    return LogMailer()

"""Transactional email (Resend).

Only one message is sent by this service: the organization invitation.
Its body is deliberately plain; the link is the only thing that matters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape
from typing import Protocol, runtime_checkable

import httpx

from app.core.config import SETTINGS
from app.models.invitation import INVITATION_TTL

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"


class MailerError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str


@runtime_checkable
class Mailer(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


def invitation_email(
    *, to: str, organization_name: str, inviter_name: str, link: str
) -> EmailMessage:
    days = INVITATION_TTL.days
    subject = f"You're invited to join {organization_name}"
    text = (
        f"{inviter_name} has invited you to join {organization_name}.\n\n"
        f"Accept the invitation: {link}\n\n"
        f"This invitation expires in {days} days."
    )
    html = (
        f"<p>{escape(inviter_name)} has invited you to join "
        f"<strong>{escape(organization_name)}</strong>.</p>"
        f'<p><a href="{escape(link)}">Accept invitation</a></p>'
        f"<p>This invitation expires in {days} days.</p>"
    )
    return EmailMessage(to=to, subject=subject, text=text, html=html)


class InMemoryMailer:
    """Collects messages instead of sending them.

    Addresses in ``failing`` raise MailerError, for exercising the
    warning path of invitation issuance.
    """

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []
        self.failing: set[str] = set()

    def reset(self) -> None:
        self.sent.clear()
        self.failing.clear()

    async def send(self, message: EmailMessage) -> None:
        if message.to in self.failing:
            raise MailerError(f"delivery to {message.to} rejected")
        self.sent.append(message)
        logger.debug("Captured email to=%s subject=%s", message.to, message.subject)


class ResendMailer:
    def __init__(
        self,
        api_key: str,
        from_email: str,
        *,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._from = from_email
        self._http = http or httpx.AsyncClient(
            base_url=RESEND_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(10.0),
        )

    async def send(self, message: EmailMessage) -> None:
        try:
            resp = await self._http.post(
                "/emails",
                json={
                    "from": self._from,
                    "to": [message.to],
                    "subject": message.subject,
                    "text": message.text,
                    "html": message.html,
                },
            )
        except httpx.HTTPError as e:
            raise MailerError(f"email provider unreachable: {e}") from e
        if resp.status_code >= 400:
            raise MailerError(f"email provider returned {resp.status_code}")
        logger.info("Sent email to=%s subject=%s", message.to, message.subject)

    async def aclose(self) -> None:
        await self._http.aclose()


if SETTINGS.resend_api_key:
    mailer: Mailer = ResendMailer(SETTINGS.resend_api_key, SETTINGS.from_email)
else:
    mailer = InMemoryMailer()

"""Transactional and broadcast email delivery for the waitlist."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import anyio
import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import DEFAULT_BATCH_DELAY, DEFAULT_BATCH_SIZE, DEFAULT_FROM_EMAIL, DEFAULT_FROM_NAME, Settings
from .models import (
    BroadcastResult,
    DeliveryResult,
    RecipientResult,
    WelcomeProfile,
    challenge_label,
    skill_label,
)

logger = logging.getLogger("zintle.mailer")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

RESEND_API_URL = "https://api.resend.com/emails"
FALLBACK_SENDER = DEFAULT_FROM_EMAIL
WELCOME_SUBJECT = "🚀 Welcome to Zintle's Private Beta!"

_UNVERIFIED_DOMAIN_MARKER = "domain is not verified"
_TAG_PATTERN = re.compile(r"<[^>]*>")


class MailTransportError(RuntimeError):
    """Raised when the mail provider rejects or fails to accept a message."""


@dataclass
class EmailMessage:
    sender: str
    to: List[str]
    subject: str
    html: str
    text: str


class MailTransport(Protocol):
    async def send(self, message: EmailMessage) -> Optional[str]:
        """Deliver ``message`` and return the provider's message id."""


class ResendTransport:
    """Deliver messages through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = RESEND_API_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ValueError("A Resend API key is required")
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client = client

    async def send(self, message: EmailMessage) -> Optional[str]:
        payload = {
            "from": message.sender,
            "to": list(message.to),
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(self._base_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._base_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise MailTransportError(f"Failed to contact mail provider: {exc}") from exc

        if response.status_code >= 400:
            raise MailTransportError(_error_message(response))

        try:
            data = response.json()
        except ValueError:
            return None
        return data.get("id") if isinstance(data, dict) else None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"Mail provider responded with {response.status_code}: {response.text.strip()}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Mail provider responded with {response.status_code}"


def _template_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def strip_tags(content: str) -> str:
    return _TAG_PATTERN.sub("", content)


async def _sleep(seconds: float) -> None:
    await anyio.sleep(seconds)


class Mailer:
    """Render and send the welcome email and batched progress updates.

    Without a transport the mailer runs in demo mode: messages are logged and
    reported as delivered, and nothing leaves the process.
    """

    def __init__(
        self,
        transport: Optional[MailTransport] = None,
        *,
        from_email: str = DEFAULT_FROM_EMAIL,
        from_name: str = DEFAULT_FROM_NAME,
        development: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = _sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._transport = transport
        self._from_email = from_email
        self._from_name = from_name
        self._development = development
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._sleep = sleep
        self._templates = _template_environment()

        logger.info(
            "Email service initialised: %s (from %s)",
            "ACTIVE" if self.is_configured else "DEMO MODE",
            self._from_email,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        transport = ResendTransport(settings.resend_api_key) if settings.mail_configured else None
        return cls(
            transport,
            from_email=settings.from_email,
            from_name=settings.from_name,
            development=settings.development,
            batch_size=settings.broadcast_batch_size,
            batch_delay=settings.broadcast_batch_delay,
        )

    @property
    def is_configured(self) -> bool:
        return self._transport is not None

    @property
    def sender(self) -> str:
        return f"{self._from_name} <{self._from_email}>"

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def _welcome_context(self, profile: WelcomeProfile) -> Dict[str, Any]:
        return {
            "position": profile.position if profile.position is not None else "XX",
            "profile": profile,
            "primary_skill": skill_label(profile.primary_skill),
            "biggest_challenge": challenge_label(profile.biggest_challenge),
            "interest_level": profile.interest_level if profile.interest_level else "N/A",
            "development": self._development,
            "year": datetime.now().year,
        }

    def render_welcome(self, profile: WelcomeProfile) -> tuple[str, str]:
        """Return the (html, text) bodies of the welcome email."""

        context = self._welcome_context(profile)
        html = self._templates.get_template("emails/welcome.html").render(context)
        text = self._templates.get_template("emails/welcome.txt").render(context)
        return html, text

    def render_update(self, subject: str, content: str) -> str:
        return self._templates.get_template("emails/update.html").render(
            {"subject": subject, "content": content, "year": datetime.now().year}
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def send_welcome(self, email: str, profile: WelcomeProfile) -> DeliveryResult:
        """Send the welcome email to a new signup.

        Never raises: transport failures are logged and reported through the
        returned :class:`DeliveryResult`.
        """

        if self._transport is None:
            logger.info(
                "Welcome email (demo mode) to=%s founder=#%s skill=%s challenge=%s interest=%s/5",
                email,
                profile.position,
                profile.primary_skill,
                profile.biggest_challenge,
                profile.interest_level,
            )
            return DeliveryResult(success=True, demo=True)

        try:
            html, text = self.render_welcome(profile)
        except Exception as exc:
            logger.exception("Failed to render welcome email for %s", email)
            return DeliveryResult(success=False, error=str(exc))

        message = EmailMessage(
            sender=FALLBACK_SENDER if self._development else self.sender,
            to=[email],
            subject=WELCOME_SUBJECT,
            html=html,
            text=text,
        )

        try:
            message_id = await self._transport.send(message)
        except MailTransportError as exc:
            if _UNVERIFIED_DOMAIN_MARKER not in str(exc).lower() or message.sender == FALLBACK_SENDER:
                logger.error("Welcome email to %s failed: %s", email, exc)
                return DeliveryResult(success=False, error=str(exc))
            logger.warning("Sender domain not verified; retrying welcome email to %s via %s", email, FALLBACK_SENDER)
            return await self._retry_with_fallback(message)
        except Exception as exc:
            logger.exception("Welcome email to %s failed unexpectedly", email)
            return DeliveryResult(success=False, error=str(exc))

        logger.info("Welcome email sent to %s", email)
        return DeliveryResult(success=True, message_id=message_id)

    async def _retry_with_fallback(self, message: EmailMessage) -> DeliveryResult:
        assert self._transport is not None
        retry = replace(message, sender=FALLBACK_SENDER)
        try:
            message_id = await self._transport.send(retry)
        except Exception as exc:
            logger.error("Retry of welcome email to %s failed: %s", ", ".join(retry.to), exc)
            return DeliveryResult(success=False, error=str(exc))
        logger.info("Welcome email sent to %s (via fallback sender)", ", ".join(retry.to))
        return DeliveryResult(success=True, message_id=message_id)

    async def send_broadcast(self, emails: Sequence[str], subject: str, content: str) -> BroadcastResult:
        """Send a progress update to every address in fixed-size batches.

        A failing batch is recorded against each of its recipients and the
        remaining batches are still attempted.
        """

        recipients = list(emails)
        total = len(recipients)
        batches = [
            recipients[index : index + self._batch_size]
            for index in range(0, total, self._batch_size)
        ]

        if self._transport is None:
            logger.info("Progress update (demo mode) would be sent to %s recipient(s)", total)
            return BroadcastResult(
                success=True,
                sent=total,
                total=total,
                results=[RecipientResult(email=email, success=True) for email in recipients],
                batches=len(batches),
            )

        html = self.render_update(subject, content)
        text = strip_tags(content)
        results: List[RecipientResult] = []

        for number, batch in enumerate(batches, start=1):
            message = EmailMessage(sender=self.sender, to=batch, subject=subject, html=html, text=text)
            try:
                await self._transport.send(message)
            except Exception as exc:
                logger.error("Batch %s/%s (%s recipients) failed: %s", number, len(batches), len(batch), exc)
                results.extend(RecipientResult(email=email, success=False, error=str(exc)) for email in batch)
            else:
                logger.info("Batch %s/%s sent to %s recipient(s)", number, len(batches), len(batch))
                results.extend(RecipientResult(email=email, success=True) for email in batch)

            if number < len(batches):
                await self._sleep(self._batch_delay)

        sent = sum(1 for result in results if result.success)
        return BroadcastResult(success=True, sent=sent, total=total, results=results, batches=len(batches))


__all__ = [
    "EmailMessage",
    "FALLBACK_SENDER",
    "MailTransport",
    "MailTransportError",
    "Mailer",
    "ResendTransport",
    "WELCOME_SUBJECT",
    "strip_tags",
]

from __future__ import annotations

import json
from typing import Dict, List, Optional, Set

import anyio
import httpx
import pytest

from waitlist.config import Settings
from waitlist.mailer import (
    FALLBACK_SENDER,
    WELCOME_SUBJECT,
    EmailMessage,
    Mailer,
    MailTransportError,
    ResendTransport,
    strip_tags,
)
from waitlist.models import WelcomeProfile


PROFILE = WelcomeProfile(position=7, primary_skill="design", biggest_challenge="skill_gaps", interest_level=4)


class StubTransport:
    def __init__(self, failures: Optional[Dict[int, str]] = None) -> None:
        self.messages: List[EmailMessage] = []
        self._failures = failures or {}

    async def send(self, message: EmailMessage) -> Optional[str]:
        self.messages.append(message)
        call = len(self.messages)
        if call in self._failures:
            raise MailTransportError(self._failures[call])
        return f"msg-{call}"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_demo_mode_reports_success_without_sending() -> None:
    mailer = Mailer.from_settings(Settings())

    result = anyio.run(mailer.send_welcome, "a@x.com", PROFILE)

    assert mailer.is_configured is False
    assert result.success is True
    assert result.demo is True
    assert result.error is None


def test_welcome_email_is_sent_through_transport() -> None:
    transport = StubTransport()
    mailer = Mailer(transport, from_email="hello@zintle.co", from_name="Zintle Team")

    result = anyio.run(mailer.send_welcome, "a@x.com", PROFILE)

    assert result.success is True
    assert result.message_id == "msg-1"
    message = transport.messages[0]
    assert message.sender == "Zintle Team <hello@zintle.co>"
    assert message.to == ["a@x.com"]
    assert message.subject == WELCOME_SUBJECT
    assert "Founder #7" in message.html
    assert "Graphic Design" in message.html
    assert "Skill Gaps" in message.text


def test_unverified_domain_retries_with_fallback_sender() -> None:
    transport = StubTransport(failures={1: "The zintle.co domain is not verified."})
    mailer = Mailer(transport, from_email="hello@zintle.co")

    result = anyio.run(mailer.send_welcome, "a@x.com", PROFILE)

    assert result.success is True
    assert [message.sender for message in transport.messages] == [
        "Zintle Team <hello@zintle.co>",
        FALLBACK_SENDER,
    ]


def test_other_transport_errors_are_returned_not_raised() -> None:
    transport = StubTransport(failures={1: "Invalid API key"})
    mailer = Mailer(transport, from_email="hello@zintle.co")

    result = anyio.run(mailer.send_welcome, "a@x.com", PROFILE)

    assert result.success is False
    assert result.error == "Invalid API key"
    assert len(transport.messages) == 1


def test_development_mode_uses_fallback_sender() -> None:
    transport = StubTransport()
    mailer = Mailer(transport, from_email="hello@zintle.co", development=True)

    anyio.run(mailer.send_welcome, "a@x.com", PROFILE)

    assert transport.messages[0].sender == FALLBACK_SENDER


def test_welcome_text_labels_unknown_and_missing_answers() -> None:
    mailer = Mailer()

    _, text = mailer.render_welcome(WelcomeProfile(position=3, primary_skill="weaving"))

    assert "Primary Skill: weaving" in text
    assert "Biggest Challenge: Not specified" in text
    assert "Founder #3" in text


def test_broadcast_is_split_into_paced_batches() -> None:
    transport = StubTransport()
    sleep = RecordingSleep()
    mailer = Mailer(transport, batch_size=50, batch_delay=1.0, sleep=sleep)
    recipients = [f"user{index}@x.com" for index in range(120)]

    result = anyio.run(mailer.send_broadcast, recipients, "Beta news", "<p>We are <b>close</b></p>")

    assert [len(message.to) for message in transport.messages] == [50, 50, 20]
    assert result.batches == 3
    assert len(result.results) == 120
    assert result.sent == 120
    assert result.total == 120
    assert sleep.delays == [1.0, 1.0]
    assert transport.messages[0].text == "We are close"
    assert "<b>close</b>" in transport.messages[0].html


def test_failed_batch_does_not_stop_the_broadcast() -> None:
    transport = StubTransport(failures={2: "rate limited"})
    mailer = Mailer(transport, sleep=RecordingSleep())
    recipients = [f"user{index}@x.com" for index in range(120)]

    result = anyio.run(mailer.send_broadcast, recipients, "Beta news", "Hello")

    assert len(transport.messages) == 3
    assert result.success is True
    assert result.sent == 70
    assert result.failed == 50
    failed: Set[str] = {item.email for item in result.results if not item.success}
    assert failed == {f"user{index}@x.com" for index in range(50, 100)}
    assert all(item.error == "rate limited" for item in result.results if not item.success)


def test_demo_broadcast_reports_every_recipient_sent() -> None:
    mailer = Mailer(sleep=RecordingSleep())

    result = anyio.run(mailer.send_broadcast, ["a@x.com", "b@x.com"], "Hi", "Body")

    assert result.sent == 2
    assert result.total == 2
    assert all(item.success for item in result.results)


def test_batch_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Mailer(batch_size=0)


def test_strip_tags() -> None:
    assert strip_tags("<h1>Launch</h1><p>Soon &amp; <a href='#'>now</a></p>") == "LaunchSoon &amp; now"


def test_resend_transport_posts_message() -> None:
    captured: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "re_123"})

    async def scenario() -> Optional[str]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = ResendTransport("re_key", client=client)
            return await transport.send(
                EmailMessage(sender="Zintle <a@zintle.co>", to=["b@x.com"], subject="Hi", html="<p>Hi</p>", text="Hi")
            )

    assert anyio.run(scenario) == "re_123"
    request = captured[0]
    assert request.headers["Authorization"] == "Bearer re_key"
    body = json.loads(request.content)
    assert body["from"] == "Zintle <a@zintle.co>"
    assert body["to"] == ["b@x.com"]


def test_resend_transport_raises_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "The zintle.co domain is not verified."})

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = ResendTransport("re_key", client=client)
            await transport.send(EmailMessage(sender="a@zintle.co", to=["b@x.com"], subject="Hi", html="", text=""))

    with pytest.raises(MailTransportError, match="domain is not verified"):
        anyio.run(scenario)


def test_resend_transport_requires_api_key() -> None:
    with pytest.raises(ValueError):
        ResendTransport("")


def test_from_settings_uses_resend_when_key_is_set() -> None:
    mailer = Mailer.from_settings(Settings(resend_api_key="re_test", from_email="hello@zintle.co"))

    assert mailer.is_configured is True
    assert mailer.sender == "Zintle Team <hello@zintle.co>"

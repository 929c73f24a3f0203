import socket

import pytest

from mail_gate.config_loader import SmtpConfig
from mail_gate.errors import DeliveryError
from mail_gate.models import Message
from mail_gate.sender import SmtpSender, build_email, envelope_recipients


class DummySMTP:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.logins = []
        self.sent = []
        DummySMTP.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def login(self, user, password):
        self.logins.append((user, password))

    async def send_message(self, email, recipients=None):
        self.sent.append((email, recipients))


@pytest.fixture
def dummy_smtp(monkeypatch):
    DummySMTP.instances = []
    monkeypatch.setattr("mail_gate.sender.aiosmtplib.SMTP", DummySMTP)
    return DummySMTP


def test_build_plain_email():
    message = Message(
        to="anna@example.com",
        subject="Meeting notes",
        body="See you on Monday.",
        cc=["carl@example.com"],
        bcc=["dora@example.com"],
        reply_to="bob@example.com",
    )
    email = build_email(message, "noreply@example.com")
    assert email["From"] == "noreply@example.com"
    assert email["To"] == "anna@example.com"
    assert email["Cc"] == "carl@example.com"
    assert email["Reply-To"] == "bob@example.com"
    assert email["Subject"] == "Meeting notes"
    assert email["Bcc"] is None
    assert email["Message-ID"].endswith("@example.com>")
    assert email.get_content_type() == "text/plain"
    assert "See you on Monday." in email.get_content()


def test_build_html_email_uses_override_body():
    message = Message(to="anna@example.com", subject="Notes", body="<p>x</p><script>y()</script>", is_html=True,
                      from_addr="bob@example.com")
    email = build_email(message, "noreply@example.com", body="<p>x</p>")
    assert email["From"] == "bob@example.com"
    assert email.get_content_type() == "text/html"
    assert "script" not in email.get_content()


def test_envelope_includes_bcc():
    message = Message(to="a@example.com", cc=["b@example.com"], bcc=["c@example.com"])
    assert envelope_recipients(message) == ["a@example.com", "b@example.com", "c@example.com"]


@pytest.mark.asyncio
async def test_send_plain(dummy_smtp):
    sender = SmtpSender(SmtpConfig(host="smtp.example.com", port=25))
    email = build_email(Message(to="a@example.com", subject="Hi", body="text"), "noreply@example.com")
    await sender.send(email, ["a@example.com"])

    smtp = dummy_smtp.instances[0]
    assert smtp.kwargs["use_tls"] is False
    assert smtp.kwargs["start_tls"] is False
    assert smtp.logins == []
    assert smtp.sent == [(email, ["a@example.com"])]


@pytest.mark.asyncio
async def test_send_with_starttls_and_login(dummy_smtp):
    sender = SmtpSender(SmtpConfig(host="smtp.example.com", port=587, use_tls=True, user="u", password="p"))
    await sender.send(build_email(Message(to="a@example.com"), "noreply@example.com"))

    smtp = dummy_smtp.instances[0]
    assert smtp.kwargs["use_tls"] is False
    assert smtp.kwargs["start_tls"] is True
    assert smtp.logins == [("u", "p")]


@pytest.mark.asyncio
async def test_send_with_implicit_tls(dummy_smtp):
    sender = SmtpSender(SmtpConfig(host="smtp.example.com", port=465, use_tls=True))
    await sender.send(build_email(Message(to="a@example.com"), "noreply@example.com"))
    assert dummy_smtp.instances[0].kwargs["use_tls"] is True
    assert dummy_smtp.instances[0].kwargs["start_tls"] is False


@pytest.mark.asyncio
async def test_connection_failure_raises_delivery_error():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    sender = SmtpSender(SmtpConfig(host="127.0.0.1", port=port, timeout=2.0))
    with pytest.raises(DeliveryError):
        await sender.send(build_email(Message(to="a@example.com"), "noreply@example.com"))

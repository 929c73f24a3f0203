import asyncio

import pytest

from mail_gate.config_loader import GateConfig, RateLimitConfig, SmtpConfig
from mail_gate.core import MailGate
from mail_gate.errors import DeliveryError, StorageUnavailableError
from mail_gate.history import MemoryHistoryStore
from mail_gate.models import Message


NOW = 1_700_000_000
IP = "203.0.113.7"


class DummySender:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send(self, email, recipients=None):
        if self.fail:
            raise DeliveryError("connection refused")
        self.sent.append((email, recipients))


class BrokenStore(MemoryHistoryStore):
    async def prune(self, identity, cutoff):
        raise StorageUnavailableError()


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    monkeypatch.setattr("mail_gate.rate_limit.time.time", lambda: NOW)


def make_gate(sender=None, store=None, **limits):
    config = GateConfig(
        rate_limit=RateLimitConfig(**limits) if limits else RateLimitConfig(),
        smtp=SmtpConfig(default_from="noreply@example.com"),
    )
    return MailGate(config, store=store or MemoryHistoryStore(), sender=sender or DummySender())


def clean_message(**overrides):
    data = {"to": "anna@example.com", "subject": "Meeting notes", "body": "See you on Monday."}
    data.update(overrides)
    return Message(**data)


def metric(gate, name, **labels):
    return gate.metrics.registry.get_sample_value(name, labels or None) or 0


@pytest.mark.asyncio
async def test_send_delivers_and_records():
    sender = DummySender()
    gate = make_gate(sender)
    await gate.start()

    outcome = await gate.send(IP, clean_message(bcc=["dora@example.com"]))

    assert outcome.status == "sent"
    assert outcome.decision.allowed is True
    assert outcome.sent_at is not None
    email, recipients = sender.sent[0]
    assert email["From"] == "noreply@example.com"
    assert recipients == ["anna@example.com", "dora@example.com"]
    assert (await gate.stats(IP)).sent_last_minute == 1
    assert gate.limiter.in_flight(IP) == 0
    assert metric(gate, "gmg_sent_total") == 1
    await gate.stop()


@pytest.mark.asyncio
async def test_second_send_is_rate_limited():
    sender = DummySender()
    gate = make_gate(sender)

    await gate.send(IP, clean_message())
    outcome = await gate.send(IP, clean_message())

    assert outcome.status == "rate_limited"
    assert outcome.decision.retry_after == 60
    assert outcome.validation is None
    assert len(sender.sent) == 1
    assert metric(gate, "gmg_rate_limited_total", window="minute") == 1


@pytest.mark.asyncio
async def test_rejected_message_frees_the_slot():
    sender = DummySender()
    gate = make_gate(sender)

    outcome = await gate.send(IP, clean_message(body="Buy now, cheap viagra"))
    assert outcome.status == "rejected"
    assert "content" in outcome.validation.violations
    assert sender.sent == []
    assert gate.limiter.in_flight(IP) == 0
    assert metric(gate, "gmg_rejected_total", field="content") == 1

    # A rejection does not consume quota.
    assert (await gate.send(IP, clean_message())).status == "sent"


@pytest.mark.asyncio
async def test_html_body_is_sanitized_before_sending():
    sender = DummySender()
    gate = make_gate(sender)

    await gate.send(IP, clean_message(body="<p>See you on Monday.</p><script>steal()</script>", is_html=True))

    email, _ = sender.sent[0]
    assert email.get_content_type() == "text/html"
    content = email.get_content()
    assert "<p>See you on Monday.</p>" in content
    assert "steal" not in content


@pytest.mark.asyncio
async def test_delivery_failure_releases_slot_and_propagates():
    gate = make_gate(DummySender(fail=True))

    with pytest.raises(DeliveryError):
        await gate.send(IP, clean_message())

    assert gate.limiter.in_flight(IP) == 0
    assert (await gate.stats(IP)).sent_last_minute == 0
    assert metric(gate, "gmg_errors_total", kind="delivery") == 1


@pytest.mark.asyncio
async def test_storage_failure_propagates():
    gate = make_gate(store=BrokenStore())

    with pytest.raises(StorageUnavailableError):
        await gate.send(IP, clean_message())
    with pytest.raises(StorageUnavailableError):
        await gate.stats(IP)
    assert metric(gate, "gmg_errors_total", kind="storage") == 2


@pytest.mark.asyncio
async def test_fail_open_keeps_sending_when_history_is_down():
    sender = DummySender()
    gate = make_gate(sender, store=BrokenStore(), per_minute=1, per_hour=3, per_day=5, fail_open=True)

    outcome = await gate.send(IP, clean_message())
    assert outcome.status == "sent"
    assert len(sender.sent) == 1


class HangingSender(DummySender):
    async def send(self, email, recipients=None):
        await asyncio.sleep(10)


class ReadOnlyStore(MemoryHistoryStore):
    async def append(self, identity, timestamp):
        raise StorageUnavailableError("read-only")


@pytest.mark.asyncio
async def test_cancelled_send_frees_the_slot():
    gate = make_gate(HangingSender(), per_minute=1, per_hour=3, per_day=5)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(gate.send(IP, clean_message()), 0.05)

    assert gate.limiter.in_flight(IP) == 0
    gate.sender = DummySender()
    assert (await gate.send(IP, clean_message())).status == "sent"


@pytest.mark.asyncio
async def test_compose_failure_frees_the_slot(monkeypatch):
    def broken_build_email(*args, **kwargs):
        raise ValueError("bad header")

    monkeypatch.setattr("mail_gate.core.build_email", broken_build_email)
    gate = make_gate(per_minute=1, per_hour=3, per_day=5)

    with pytest.raises(ValueError):
        await gate.send(IP, clean_message())
    assert gate.limiter.in_flight(IP) == 0
    assert (await gate.limiter.check(IP)).allowed


@pytest.mark.asyncio
async def test_record_failure_frees_the_slot():
    gate = make_gate(store=ReadOnlyStore())

    with pytest.raises(StorageUnavailableError):
        await gate.send(IP, clean_message())
    assert gate.limiter.in_flight(IP) == 0
    assert metric(gate, "gmg_errors_total", kind="storage") == 1

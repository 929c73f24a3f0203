# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send-dispatch orchestration around the two gates.

:class:`MailGate` wires the rate limiter, the content validator and the
mail sender together in the order the gates must run:

1. reserve a rate-limit slot for the caller (cheapest rejection first)
2. validate the content
3. sanitize HTML bodies and compose the message
4. deliver it, then record the send (or release the slot on failure)

Policy rejections come back as :class:`SendOutcome` values. Storage and
delivery faults propagate as :class:`~mail_gate.errors.StorageUnavailableError`
and :class:`~mail_gate.errors.DeliveryError`.

Example::

    gate = MailGate(load_gate_config())
    await gate.start()
    outcome = await gate.send("203.0.113.7", Message(to="a@example.com", subject="Hi", body="..."))
    await gate.stop()
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from .config_loader import GateConfig
from .errors import StorageUnavailableError
from .history import HistoryStore, create_history_store
from .logger import get_logger
from .models import Message, RateDecision, UsageSnapshot, ValidationResult
from .prometheus import GateMetrics
from .rate_limit import RateLimiter
from .sender import MailSender, SmtpSender, build_email, envelope_recipients
from .validator import ContentValidator

logger = get_logger("core")


class SendOutcome(BaseModel):
    """Result of one dispatch attempt.

    Attributes:
        status: "sent", "rate_limited" or "rejected".
        decision: The rate limiter's answer.
        validation: The validator's answer; None when the rate limit
            rejected the request before validation ran.
        sent_at: Local time the message was handed to the sender.
    """

    status: Literal["sent", "rate_limited", "rejected"]
    decision: RateDecision
    validation: ValidationResult | None = None
    sent_at: datetime | None = None


class MailGate:
    """Abuse-prevention front for outbound email.

    Attributes:
        config: The configuration in force.
        store: Send history backend.
        limiter: Per-identity rate limiter.
        validator: Content validator.
        sender: Mail delivery collaborator.
        metrics: Prometheus counters.
    """

    def __init__(
        self,
        config: GateConfig | None = None,
        *,
        store: HistoryStore | None = None,
        sender: MailSender | None = None,
        metrics: GateMetrics | None = None,
    ):
        self.config = config if config is not None else GateConfig()
        self.store = store if store is not None else create_history_store(self.config.db_path)
        self.limiter = RateLimiter(self.store, self.config.rate_limit)
        self.validator = ContentValidator(self.config.validation)
        self.sender: MailSender = sender if sender is not None else SmtpSender(self.config.smtp)
        self.metrics = metrics if metrics is not None else GateMetrics()

    async def start(self) -> None:
        """Prepare the history store."""
        await self.store.init()
        logger.info("Mail gate started (store=%s)", type(self.store).__name__)

    async def stop(self) -> None:
        await self.store.close()
        logger.info("Mail gate stopped")

    async def stats(self, identity: str) -> UsageSnapshot:
        try:
            return await self.limiter.stats(identity)
        except StorageUnavailableError:
            self.metrics.inc_error("storage")
            raise

    async def send(self, identity: str, message: Message) -> SendOutcome:
        """Run both gates and deliver the message when they pass.

        Args:
            identity: Caller identity (network address).
            message: The candidate message.

        Returns:
            SendOutcome describing what happened.

        Raises:
            StorageUnavailableError: History could not be read or written.
            DeliveryError: The sender failed.

        Once a slot is reserved it is released on every exit that does not
        reach :meth:`RateLimiter.record`, including exceptions from
        sanitizing or composing and cancellation of the calling task.
        """
        try:
            decision = await self.limiter.reserve(identity)
        except StorageUnavailableError:
            self.metrics.inc_error("storage")
            raise
        if not decision.allowed:
            logger.warning("Rate limit exceeded for %s: %s", identity, decision.reason)
            self.metrics.inc_rate_limited(decision.window)
            return SendOutcome(status="rate_limited", decision=decision)

        recorded = False
        try:
            validation = self.validator.validate(message)
            if not validation.valid:
                logger.warning(
                    "Security validation failed for %s: %s", identity, ", ".join(validation.violations)
                )
                self.metrics.inc_rejected(validation.violations)
                return SendOutcome(status="rejected", decision=decision, validation=validation)

            body = self.validator.sanitize_html(message.body) if message.is_html else None
            email = build_email(message, self.config.smtp.default_from, body)
            try:
                await self.sender.send(email, envelope_recipients(message))
            except Exception:
                self.metrics.inc_error("delivery")
                raise

            # record() gives the slot back itself, even when the write fails.
            recorded = True
            try:
                await self.limiter.record(identity)
            except StorageUnavailableError:
                self.metrics.inc_error("storage")
                raise
        finally:
            if not recorded:
                await self.limiter.release(identity)

        self.metrics.inc_sent()
        logger.info("Email sent for %s to %s (subject=%r)", identity, message.to, message.subject)
        return SendOutcome(status="sent", decision=decision, validation=validation, sent_at=datetime.now())


__all__ = ["MailGate", "SendOutcome"]

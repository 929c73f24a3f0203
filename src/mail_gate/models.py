# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models shared by the mail-gate components.

Models:
    - Message: candidate outbound email handed to the content validator
    - ValidationResult: outcome of ContentValidator.validate
    - RateDecision: outcome of RateLimiter.check / reserve
    - UsageSnapshot: per-identity counts and remaining quota

Wire names follow the camelCase used by the HTTP payloads (``replyTo``,
``isHtml``, ``retryAfter``, ``sentLastMinute`` ...); Python attributes are
snake_case and both spellings are accepted on input.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


class Message(BaseModel):
    """Candidate email as seen by the content validator.

    Missing text fields read as empty strings and missing recipient lists
    as empty lists, so the validator can run every check on partial input.
    A single string passed for ``cc`` or ``bcc`` is treated as one address.

    Attributes:
        to: Primary recipient address.
        subject: Subject line.
        body: Plain text or HTML body, depending on ``is_html``.
        from_addr: Optional sender address (wire name ``from``).
        reply_to: Optional reply-to address (wire name ``replyTo``).
        cc: Carbon-copy recipients.
        bcc: Blind carbon-copy recipients.
        is_html: Whether ``body`` is HTML (wire name ``isHtml``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    to: str = ""
    subject: str = ""
    body: str = ""
    from_addr: Annotated[str | None, Field(default=None, alias="from")]
    reply_to: Annotated[str | None, Field(default=None, alias="replyTo")]
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    is_html: Annotated[bool, Field(default=False, alias="isHtml")]

    @field_validator("to", "subject", "body", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("from_addr", "reply_to", mode="before")
    @classmethod
    def _coerce_optional_text(cls, v: Any) -> str | None:
        return None if v is None else _as_text(v)

    @field_validator("cc", "bcc", mode="before")
    @classmethod
    def _coerce_address_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        if isinstance(v, (list, tuple, set, frozenset)):
            return [_as_text(item) for item in v]
        return []

    @field_validator("is_html", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "on")
        return bool(v)

    @property
    def recipient_count(self) -> int:
        """Number of recipients: the primary one plus cc and bcc."""
        return 1 + len(self.cc) + len(self.bcc)


class ValidationResult(BaseModel):
    """Outcome of a content validation run.

    ``details`` keeps every reason collected for a field, in pipeline order.
    ``violations`` is the flat field -> reason view returned to callers;
    when several checks flag the same field their reasons are joined with
    ``"; "``.
    """

    valid: bool
    violations: dict[str, str] = Field(default_factory=dict)
    details: dict[str, list[str]] = Field(default_factory=dict)

    @classmethod
    def from_details(cls, details: dict[str, list[str]]) -> ValidationResult:
        return cls(
            valid=not details,
            violations={name: "; ".join(reasons) for name, reasons in details.items()},
            details={name: list(reasons) for name, reasons in details.items()},
        )


class RateDecision(BaseModel):
    """Answer of the rate limiter for one send attempt.

    Attributes:
        allowed: Whether another send is permitted now.
        reason: Human-readable reason naming the exceeded window and limit.
        retry_after: Advisory wait in seconds (the exceeded window length).
        window: Name of the exceeded window ("minute", "hour", "day").
    """

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    reason: str | None = None
    retry_after: Annotated[int | None, Field(default=None, alias="retryAfter")]
    window: str | None = None


class UsageSnapshot(BaseModel):
    """Send counts and remaining quota of one identity for each window."""

    model_config = ConfigDict(populate_by_name=True)

    identity: Annotated[str, Field(alias="ip")]
    sent_last_minute: Annotated[int, Field(alias="sentLastMinute")]
    sent_last_hour: Annotated[int, Field(alias="sentLastHour")]
    sent_last_day: Annotated[int, Field(alias="sentLastDay")]
    remaining_minute: Annotated[int, Field(alias="remainingMinute")]
    remaining_hour: Annotated[int, Field(alias="remainingHour")]
    remaining_day: Annotated[int, Field(alias="remainingDay")]


__all__ = [
    "Message",
    "RateDecision",
    "UsageSnapshot",
    "ValidationResult",
]

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Abuse-prevention gate for outbound email.

Features:
    - Per-caller sliding-window rate limiting (minute/hour/day)
    - Concurrency-safe reservations with per-identity locking
    - Content validation: header injection, spam heuristics, recipient
      limits, domain whitelist, suspicious URLs, control characters
    - Allow-list HTML sanitization
    - Memory or SQLite send history
    - FastAPI dispatch endpoint, Prometheus metrics, click CLI

Example::

    from mail_gate import ContentValidator, RateLimiter

    limiter = RateLimiter()
    decision = await limiter.check("203.0.113.7")
    result = ContentValidator().validate({"to": "a@example.com", "subject": "Hi", "body": "..."})
"""

from .config_loader import GateConfig, RateLimitConfig, ValidationConfig, load_gate_config
from .errors import DeliveryError, MailGateError, StorageUnavailableError
from .history import HistoryStore, MemoryHistoryStore, SqliteHistoryStore, create_history_store
from .models import Message, RateDecision, UsageSnapshot, ValidationResult
from .rate_limit import RateLimiter
from .spam_rules import DEFAULT_SPAM_RULES, SpamRule
from .validator import ContentValidator

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_SPAM_RULES",
    "ContentValidator",
    "DeliveryError",
    "GateConfig",
    "HistoryStore",
    "MailGateError",
    "MemoryHistoryStore",
    "Message",
    "RateDecision",
    "RateLimitConfig",
    "RateLimiter",
    "SpamRule",
    "SqliteHistoryStore",
    "StorageUnavailableError",
    "UsageSnapshot",
    "ValidationConfig",
    "ValidationResult",
    "create_history_store",
    "load_gate_config",
]

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclasses and loader for mail-gate.

Settings are resolved with the priority config file > environment variables
> defaults. Each dataclass validates itself on construction, so a bad
threshold fails at startup rather than on the first request.

Example:
    Configuration file format (config.ini)::

        [rate_limit]
        per_minute = 1
        per_hour = 3
        per_day = 5
        fail_open = false

        [validation]
        max_body_length = 10000
        max_recipients = 5
        allowed_domains = example.com, example.org

        [storage]
        db_path = /data/mail_gate.db

        [smtp]
        host = smtp.example.com
        port = 587
        use_tls = true

    Loading it::

        config = load_gate_config("/etc/mail-gate/config.ini")
        limiter = RateLimiter(store, config.rate_limit)
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .logger import get_logger
from .spam_rules import DEFAULT_SPAM_RULES, DEFAULT_URL_SHORTENERS, SpamRule

logger = get_logger("config_loader")

_TRUTHY = ("1", "true", "yes", "on")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


def _parse_domains(value: str | Iterable[str] | None) -> frozenset[str]:
    if value is None:
        return frozenset()
    items = value.split(",") if isinstance(value, str) else value
    return frozenset(d.strip().lower() for d in items if d and d.strip())


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window thresholds for one caller identity.

    Attributes:
        per_minute: Max accepted sends in the last 60 seconds.
        per_hour: Max accepted sends in the last 3600 seconds.
        per_day: Max accepted sends in the last 86400 seconds.
        fail_open: Treat an unreadable history as empty instead of raising.
    """

    per_minute: int = 1
    per_hour: int = 3
    per_day: int = 5
    fail_open: bool = False

    def __post_init__(self) -> None:
        for name in ("per_minute", "per_hour", "per_day"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if not (self.per_minute <= self.per_hour <= self.per_day):
            logger.warning(
                "Rate limits are not nested (minute=%d, hour=%d, day=%d); "
                "the narrowest window may never trigger",
                self.per_minute, self.per_hour, self.per_day,
            )


@dataclass(frozen=True)
class ValidationConfig:
    """Static limits and rule sets for the content validator.

    Attributes:
        max_body_length: Max body length in characters.
        max_recipients: Max recipients counting to, cc and bcc.
        allowed_domains: Recipient domain whitelist; empty means unrestricted.
        spam_rules: Ordered spam heuristics.
        url_shorteners: URL shortener domains rejected in the body.
        max_urls: Max ``http(s)://`` occurrences in the body.
        caps_ratio: Max share of uppercase letters among all letters.
    """

    max_body_length: int = 10000
    max_recipients: int = 5
    allowed_domains: frozenset[str] = field(default_factory=frozenset)
    spam_rules: tuple[SpamRule, ...] = DEFAULT_SPAM_RULES
    url_shorteners: tuple[str, ...] = DEFAULT_URL_SHORTENERS
    max_urls: int = 5
    caps_ratio: float = 0.5

    def __post_init__(self) -> None:
        for name in ("max_body_length", "max_recipients", "max_urls"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if not 0 < self.caps_ratio <= 1:
            raise ValueError(f"caps_ratio must be in (0, 1], got {self.caps_ratio!r}")
        object.__setattr__(self, "allowed_domains", _parse_domains(self.allowed_domains))
        object.__setattr__(self, "spam_rules", tuple(self.spam_rules))
        object.__setattr__(self, "url_shorteners", tuple(self.url_shorteners))


@dataclass
class SmtpConfig:
    """Outbound SMTP server used by the dispatch endpoint."""

    host: str = "localhost"
    port: int = 25
    user: str | None = None
    password: str | None = None
    use_tls: bool = False
    default_from: str = "noreply@localhost"
    timeout: float = 10.0


@dataclass
class ServerConfig:
    """HTTP server bind settings."""

    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class GateConfig:
    """Main configuration container.

    Attributes:
        rate_limit: Rate limiter thresholds.
        validation: Content validator limits.
        db_path: History store connection string; empty selects the
            in-process store.
        smtp: Outbound SMTP settings.
        server: HTTP bind settings.
    """

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    db_path: str = ""
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# key -> (section, option, env var, parser, default)
_SETTINGS: dict[str, tuple[str, str, str, Callable[[str], Any], Any]] = {
    "per_minute": ("rate_limit", "per_minute", "GMG_RATE_PER_MINUTE", int, 1),
    "per_hour": ("rate_limit", "per_hour", "GMG_RATE_PER_HOUR", int, 3),
    "per_day": ("rate_limit", "per_day", "GMG_RATE_PER_DAY", int, 5),
    "fail_open": ("rate_limit", "fail_open", "GMG_RATE_FAIL_OPEN", _parse_bool, False),
    "max_body_length": ("validation", "max_body_length", "GMG_MAX_BODY_LENGTH", int, 10000),
    "max_recipients": ("validation", "max_recipients", "GMG_MAX_RECIPIENTS", int, 5),
    "allowed_domains": ("validation", "allowed_domains", "GMG_ALLOWED_DOMAINS", _parse_domains, frozenset()),
    "db_path": ("storage", "db_path", "GMG_DB_PATH", str.strip, ""),
    "smtp_host": ("smtp", "host", "GMG_SMTP_HOST", str.strip, "localhost"),
    "smtp_port": ("smtp", "port", "GMG_SMTP_PORT", int, 25),
    "smtp_user": ("smtp", "user", "GMG_SMTP_USER", str.strip, None),
    "smtp_password": ("smtp", "password", "GMG_SMTP_PASSWORD", str, None),
    "smtp_use_tls": ("smtp", "use_tls", "GMG_SMTP_USE_TLS", _parse_bool, False),
    "default_from": ("smtp", "default_from", "GMG_DEFAULT_FROM", str.strip, "noreply@localhost"),
    "server_host": ("server", "host", "GMG_HOST", str.strip, "0.0.0.0"),
    "server_port": ("server", "port", "GMG_PORT", int, 8000),
}


def load_gate_config(config_path: str | None = None) -> GateConfig:
    """Load mail-gate configuration from config file or environment.

    Priority: config file > environment variables > defaults. Unparseable
    values are logged and replaced by the default; values that parse but
    are out of range (e.g. a zero threshold) raise ``ValueError`` from the
    config dataclasses.

    Environment variables:
        GMG_CONFIG: Config file path used when ``config_path`` is None.
        GMG_RATE_PER_MINUTE, GMG_RATE_PER_HOUR, GMG_RATE_PER_DAY,
        GMG_RATE_FAIL_OPEN: Rate limiter settings.
        GMG_MAX_BODY_LENGTH, GMG_MAX_RECIPIENTS, GMG_ALLOWED_DOMAINS
        (comma separated): Content validator settings.
        GMG_DB_PATH: History store connection string.
        GMG_SMTP_HOST, GMG_SMTP_PORT, GMG_SMTP_USER, GMG_SMTP_PASSWORD,
        GMG_SMTP_USE_TLS, GMG_DEFAULT_FROM: Outbound SMTP settings.
        GMG_HOST, GMG_PORT: HTTP bind settings.

    Args:
        config_path: Optional path to config.ini file.

    Returns:
        GateConfig with parsed settings.
    """
    values: dict[str, Any] = {}

    for key, (_, _, env_var, parse, default) in _SETTINGS.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            values[key] = default
            continue
        try:
            values[key] = parse(env_value)
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {env_var}, using default")
            values[key] = default

    config_path = config_path or os.environ.get("GMG_CONFIG")
    if config_path and Path(config_path).exists():
        parser = configparser.ConfigParser()
        parser.read(config_path)
        for key, (section, option, _, parse, _) in _SETTINGS.items():
            if not parser.has_option(section, option):
                continue
            raw = parser.get(section, option)
            try:
                values[key] = parse(raw)
            except (ValueError, TypeError):
                logger.warning(f"Invalid value for [{section}] {option}, keeping {values[key]!r}")
    elif config_path:
        logger.warning(f"Config file not found: {config_path}, using environment and defaults")

    return GateConfig(
        rate_limit=RateLimitConfig(
            per_minute=values["per_minute"],
            per_hour=values["per_hour"],
            per_day=values["per_day"],
            fail_open=values["fail_open"],
        ),
        validation=ValidationConfig(
            max_body_length=values["max_body_length"],
            max_recipients=values["max_recipients"],
            allowed_domains=values["allowed_domains"],
        ),
        db_path=values["db_path"],
        smtp=SmtpConfig(
            host=values["smtp_host"],
            port=values["smtp_port"],
            user=values["smtp_user"] or None,
            password=values["smtp_password"] or None,
            use_tls=values["smtp_use_tls"],
            default_from=values["default_from"],
        ),
        server=ServerConfig(host=values["server_host"], port=values["server_port"]),
    )


__all__ = [
    "GateConfig",
    "RateLimitConfig",
    "ServerConfig",
    "SmtpConfig",
    "ValidationConfig",
    "load_gate_config",
]

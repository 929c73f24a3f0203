# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Content security validator for outbound email.

The validator runs a fixed pipeline of checks over a candidate message and
reports every violation at once, keyed by field:

1. header injection (CR/LF in single-line fields)
2. body length
3. spam heuristics (rule list + uppercase ratio)
4. recipient count
5. recipient domain whitelist
6. suspicious URLs (shorteners, too many links)
7. control characters in the subject

It also exposes :meth:`ContentValidator.sanitize_html`, the allow-list
transform applied to HTML bodies before composition.

The validator holds only immutable configuration and is safe to share
between concurrent requests.

Example:
    Validating a request payload::

        validator = ContentValidator(ValidationConfig(allowed_domains={"example.com"}))
        result = validator.validate({"to": "user@example.com", "subject": "Hi", "body": "..."})
        if not result.valid:
            return {"errors": result.violations}
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from bs4 import BeautifulSoup
from bs4.element import CData, Comment, Declaration, Doctype, ProcessingInstruction
from pydantic import ValidationError

from .config_loader import ValidationConfig
from .logger import get_logger
from .models import Message, ValidationResult

logger = get_logger("validator")

ALLOWED_TAGS = frozenset(
    {"p", "br", "b", "strong", "i", "em", "u", "h1", "h2", "h3", "h4", "ul", "ol", "li", "a"}
)
# Dropped together with everything inside them.
DROP_WITH_CONTENT = frozenset(
    {"script", "style", "iframe", "object", "embed", "template", "noscript", "head", "title"}
)
ALLOWED_LINK_SCHEMES = ("http://", "https://", "mailto:")

_LINE_BREAK = re.compile(r"[\r\n]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_UPPER = re.compile(r"[A-Z]")
_ALPHA = re.compile(r"[A-Za-z]")
_URL = re.compile(r"https?://[^\s]+")
_NON_TEXT_NODES = (CData, Comment, Declaration, Doctype, ProcessingInstruction)


class ContentValidator:
    """Validates candidate messages against abuse heuristics.

    Attributes:
        config: Limits, domain whitelist and rule sets in force.
    """

    def __init__(self, config: ValidationConfig | None = None):
        self.config = config if config is not None else ValidationConfig()
        self._spam_rules = [(rule.compile(), rule.category) for rule in self.config.spam_rules]
        # Matches after a subdomain label ("www.bit.ly") but not inside a
        # longer name ("great.com" never matches "t.co").
        self._shorteners = [
            re.compile(rf"(?<![\w-]){re.escape(domain)}(?![\w-])", re.IGNORECASE)
            for domain in self.config.url_shorteners
        ]

    def validate(self, message: Message | Mapping[str, Any]) -> ValidationResult:
        """Run every check and collect the violations.

        Never raises on malformed input: missing fields read as empty, and a
        mapping that cannot be coerced at all is reported as a ``message``
        violation.

        Args:
            message: A Message, or a mapping with the wire field names.

        Returns:
            ValidationResult with ``valid=True`` when no check failed.
        """
        if not isinstance(message, Message):
            try:
                message = Message.model_validate(dict(message or {}))
            except (ValidationError, TypeError, ValueError) as exc:
                logger.info("Unreadable message payload: %s", exc)
                return ValidationResult.from_details({"message": ["Message payload could not be read"]})

        details: dict[str, list[str]] = {}

        def flag(name: str, reason: str) -> None:
            details.setdefault(name, []).append(reason)

        for name, value in self._single_line_fields(message):
            if self.has_header_injection(value):
                flag(name, f"Possible header injection detected in {name}")

        if len(message.body) > self.config.max_body_length:
            flag("body", f"Body exceeds the limit of {self.config.max_body_length} characters")

        categories = self.spam_categories(message.subject, message.body)
        if categories:
            flag("content", "Content matches suspicious spam patterns (" + ", ".join(categories) + ")")

        if message.recipient_count > self.config.max_recipients:
            flag("recipients", f"Maximum number of recipients exceeded (max: {self.config.max_recipients})")

        if self.config.allowed_domains:
            if not self.is_allowed_domain(message.to):
                flag("to", "Recipient domain is not in the allowed list")
            if any(not self.is_allowed_domain(addr) for addr in message.cc):
                flag("cc", "One or more CC domains are not allowed")
            if any(not self.is_allowed_domain(addr) for addr in message.bcc):
                flag("bcc", "One or more BCC domains are not allowed")

        if self.has_suspicious_urls(message.body):
            flag("body", "Body contains potentially malicious URLs")

        if self.has_control_chars(message.subject):
            flag("subject", "Subject contains forbidden control characters")

        return ValidationResult.from_details(details)

    @staticmethod
    def _single_line_fields(message: Message) -> list[tuple[str, str]]:
        fields = [("subject", message.subject), ("to", message.to)]
        if message.from_addr is not None:
            fields.append(("from", message.from_addr))
        if message.reply_to is not None:
            fields.append(("replyTo", message.reply_to))
        fields.extend(("cc", addr) for addr in message.cc)
        fields.extend(("bcc", addr) for addr in message.bcc)
        return fields

    @staticmethod
    def has_header_injection(value: str) -> bool:
        """True if ``value`` carries a CR or LF that could start a new header."""
        return _LINE_BREAK.search(value) is not None

    @staticmethod
    def has_control_chars(value: str) -> bool:
        """True if ``value`` holds C0 control characters other than tab, LF, CR."""
        return _CONTROL_CHARS.search(value) is not None

    def spam_categories(self, subject: str, body: str) -> list[str]:
        """Return the categories of spam heuristics triggered by the content.

        An uppercase-to-letter ratio above ``caps_ratio`` reports the
        ``caps_ratio`` category. Empty list when nothing matched.
        """
        content = f"{subject} {body}"
        categories: list[str] = []
        for pattern, category in self._spam_rules:
            if category not in categories and pattern.search(content):
                categories.append(category)

        total_alpha = len(_ALPHA.findall(content))
        if total_alpha and len(_UPPER.findall(content)) / total_alpha > self.config.caps_ratio:
            categories.append("caps_ratio")
        return categories

    def is_allowed_domain(self, address: str) -> bool:
        """True if the domain after the last ``@`` is whitelisted.

        Always true when no whitelist is configured. Addresses without
        ``@`` have no domain and are never allowed by a whitelist.
        """
        if not self.config.allowed_domains:
            return True
        if "@" not in address:
            return False
        domain = address.rsplit("@", 1)[1].strip().lower()
        return domain in self.config.allowed_domains

    def has_suspicious_urls(self, content: str) -> bool:
        """True for URL-shortener links or more than ``max_urls`` links."""
        if any(pattern.search(content) for pattern in self._shorteners):
            return True
        return len(_URL.findall(content)) > self.config.max_urls

    def sanitize_html(self, html: str) -> str:
        """Strip all markup outside the allow-list.

        Allowed tags keep their text and lose every attribute except an
        ``href`` on ``<a>`` pointing at http, https or mailto. Other tags
        are unwrapped (their text survives); script-like containers are
        removed with their content; comments are dropped.

        Args:
            html: Untrusted HTML fragment.

        Returns:
            The sanitized fragment.
        """
        soup = BeautifulSoup(html or "", "html.parser")

        for node in soup.find_all(string=lambda text: isinstance(text, _NON_TEXT_NODES)):
            node.extract()

        for tag in soup.find_all(True):
            if tag.decomposed:
                continue
            name = tag.name.lower()
            if name in DROP_WITH_CONTENT:
                tag.decompose()
            elif name not in ALLOWED_TAGS:
                tag.unwrap()
            else:
                href = tag.get("href") if name == "a" else None
                tag.attrs = {}
                if isinstance(href, str) and href.strip().lower().startswith(ALLOWED_LINK_SCHEMES):
                    tag["href"] = href.strip()

        return str(soup)


__all__ = ["ALLOWED_TAGS", "ContentValidator"]

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the mail gate.

This module provides a centralized logger lookup helper. The actual logging
setup (level, handlers, format) is configured via ``logging.basicConfig()``
in the entry points (``mail_gate.server`` and the ``serve`` CLI command) to
avoid duplicate handlers.

Example:
    Typical usage in a module::

        from mail_gate.logger import get_logger

        logger = get_logger("rate_limit")
        logger.warning("Rate limit hit for %s", identity)
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "MailGate") -> logging.Logger:
    """Retrieve a logger bound to the ``mail_gate`` namespace.

    Args:
        name: Logger name suffix. Defaults to "MailGate".

    Returns:
        A ``logging.Logger`` instance named ``mail_gate.<name>``.
    """
    return logging.getLogger(f"mail_gate.{name}")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for an entry point.

    Unknown level names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=True,
    )

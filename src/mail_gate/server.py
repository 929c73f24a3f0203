# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module builds a MailGate from the configuration file and environment
and exposes the FastAPI application as ``app``.

Usage:
    uvicorn mail_gate.server:app --host 0.0.0.0 --port 8000

Environment variables:
    GMG_CONFIG: Path to config.ini (optional).
    GMG_LOG_LEVEL: Logging level (default: INFO).
    Every other GMG_* variable is documented in
    :func:`mail_gate.config_loader.load_gate_config`.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import load_gate_config
from .core import MailGate
from .logger import configure_logging, get_logger

configure_logging(os.environ.get("GMG_LOG_LEVEL", "INFO"))
_logger = get_logger("server")

_gate = MailGate(load_gate_config(os.environ.get("GMG_CONFIG")))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the history store on startup and close it on shutdown."""
    _logger.info("Starting mail-gate service...")
    await _gate.start()
    try:
        yield
    finally:
        _logger.info("Stopping mail-gate service...")
        await _gate.stop()


app = create_app(_gate, lifespan=lifespan)

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the mail gate.

Endpoints:
    - ``POST /api/email/send``: rate-limit, validate and deliver one email
    - ``GET /api/email/stats``: remaining quota for the calling address
    - ``GET /health``: liveness check
    - ``GET /metrics``: Prometheus exposition

The caller identity is the first entry of ``X-Forwarded-For`` when present,
else the direct peer address.

Example::

    gate = MailGate(load_gate_config())
    app = create_app(gate)
    uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Annotated

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .core import MailGate
from .errors import DeliveryError, StorageUnavailableError
from .logger import get_logger
from .models import Message

logger = get_logger("api")

FORWARDED_FOR_HEADER = "X-Forwarded-For"
UNKNOWN_CLIENT = "0.0.0.0"


class SendPayload(BaseModel):
    """Schema-level validation of ``POST /api/email/send``.

    Field presence and address syntax are checked here; abuse checks run
    in the content validator afterwards.
    """

    model_config = ConfigDict(populate_by_name=True)

    to: EmailStr
    subject: Annotated[str, Field(min_length=1, max_length=255)]
    body: Annotated[str, Field(min_length=1)]
    from_addr: Annotated[EmailStr | None, Field(default=None, alias="from")]
    reply_to: Annotated[EmailStr | None, Field(default=None, alias="replyTo")]
    cc: list[EmailStr] = Field(default_factory=list)
    bcc: list[EmailStr] = Field(default_factory=list)
    is_html: Annotated[bool, Field(default=False, alias="isHtml")]

    def to_message(self) -> Message:
        return Message(
            to=self.to,
            subject=self.subject,
            body=self.body,
            from_addr=self.from_addr,
            reply_to=self.reply_to,
            cc=list(self.cc),
            bcc=list(self.bcc),
            is_html=self.is_html,
        )


def client_identity(request: Request) -> str:
    """Return the caller identity used as rate-limit partition key."""
    forwarded = request.headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def create_app(
    gate: MailGate,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        gate: The MailGate that implements the send and stats operations.
        lifespan: Optional lifespan context manager for startup/shutdown.

    Returns:
        A configured application ready to be served by Uvicorn.
    """
    api = FastAPI(title="Mail Gate", lifespan=lifespan)
    api.state.gate = gate

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report schema errors as ``{field: message}`` like the security errors."""
        errors: dict[str, str] = {}
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            errors[".".join(loc) or "body"] = err.get("msg", "Invalid value")
        logger.info(f"Validation error on {request.method} {request.url.path}: {errors}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"success": False, "error": "Validation failed", "errors": errors},
        )

    @api.exception_handler(StorageUnavailableError)
    async def storage_exception_handler(request: Request, exc: StorageUnavailableError):
        logger.error(f"Storage unavailable on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "error": "Storage unavailable", "message": str(exc)},
        )

    @api.exception_handler(DeliveryError)
    async def delivery_exception_handler(request: Request, exc: DeliveryError):
        logger.error(f"Failed to send email for {client_identity(request)}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to send email", "message": str(exc)},
        )

    @api.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @api.get("/metrics")
    async def metrics() -> Response:
        return Response(content=gate.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    @api.post("/api/email/send")
    async def send_email(payload: SendPayload, request: Request):
        """Rate-limit, validate and deliver one email."""
        identity = client_identity(request)
        outcome = await gate.send(identity, payload.to_message())

        if outcome.status == "rate_limited":
            retry_after = outcome.decision.retry_after
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "Rate limit exceeded",
                    "message": outcome.decision.reason,
                    "retryAfter": retry_after,
                },
                headers={"Retry-After": str(retry_after)} if retry_after else None,
            )

        if outcome.status == "rejected":
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "success": False,
                    "error": "Security validation failed",
                    "errors": outcome.validation.violations if outcome.validation else {},
                },
            )

        return {
            "success": True,
            "message": "Email sent",
            "data": {
                "to": payload.to,
                "subject": payload.subject,
                "sentAt": outcome.sent_at.strftime("%Y-%m-%d %H:%M:%S") if outcome.sent_at else None,
            },
        }

    @api.get("/api/email/stats")
    async def email_stats(request: Request):
        """Remaining quota for the calling address."""
        snapshot = await gate.stats(client_identity(request))
        return {"success": True, "stats": snapshot.model_dump(by_alias=True)}

    return api


__all__ = ["SendPayload", "client_identity", "create_app"]

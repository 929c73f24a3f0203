# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by mail-gate components.

Policy outcomes (rate limited, content rejected) are never exceptions; they
are returned as ``RateDecision`` / ``ValidationResult`` values. The classes
below cover infrastructure faults only.
"""


class MailGateError(RuntimeError):
    """Base class for operational failures inside mail-gate."""

    code = "mail_gate_error"


class StorageUnavailableError(MailGateError):
    """Raised when the send history store cannot be read or written."""

    code = "storage_unavailable"

    def __init__(self, message: str = "Send history storage unavailable"):
        super().__init__(message)


class DeliveryError(MailGateError):
    """Raised when the mail sender fails to hand a message to the SMTP server."""

    code = "delivery_failed"

    def __init__(self, message: str = "Failed to send email"):
        super().__init__(message)

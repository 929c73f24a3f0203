# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the mail gate.

All metrics use the ``gmg_`` prefix.

Metrics exposed:
    - ``gmg_sent_total``: Counter of messages handed to the mail sender.
    - ``gmg_rate_limited_total``: Counter of rate limit hits per window.
    - ``gmg_rejected_total``: Counter of content violations per field.
    - ``gmg_errors_total``: Counter of operational failures per kind.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class GateMetrics:
    """Prometheus metrics collector for the mail gate.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A new one is
                created when omitted, so several apps can coexist in tests.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "gmg_sent_total",
            "Total messages handed to the mail sender",
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "gmg_rate_limited_total",
            "Total rate limit hits",
            ["window"],
            registry=self.registry,
        )
        self.rejected = Counter(
            "gmg_rejected_total",
            "Total content violations",
            ["field"],
            registry=self.registry,
        )
        self.errors = Counter(
            "gmg_errors_total",
            "Total operational failures",
            ["kind"],
            registry=self.registry,
        )

    def inc_sent(self) -> None:
        self.sent.inc()

    def inc_rate_limited(self, window: str | None) -> None:
        self.rate_limited.labels(window=window or "unknown").inc()

    def inc_rejected(self, fields) -> None:
        """Increment the rejection counter once per violated field."""
        for name in fields:
            self.rejected.labels(field=name).inc()

    def inc_error(self, kind: str) -> None:
        self.errors.labels(kind=kind or "unknown").inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

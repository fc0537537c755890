# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Log forwarder delivery.

Each sample becomes one JSON line on stdout, which the runtime ships to
CloudWatch Logs where the Datadog forwarder picks it up:

    {"m": "checkout.latency", "v": 12.5, "e": 1700000000, "t": ["env:prod"]}

Writing a line cannot fail from this side; losing it is the forwarder's
problem.
"""

from __future__ import annotations

import json
import sys
import threading
from typing import IO, Any

import structlog

from ddlambda.metrics.backends.base import DeliveryBackend, DeliveryResult
from ddlambda.metrics.batch import Distribution, MetricsBatch
from ddlambda.metrics.deadline import Deadline

logger = structlog.get_logger(__name__)


def format_log_line(sample: Distribution) -> str:
    """Render a sample in the log forwarder's line format."""
    record: dict[str, Any] = {
        "m": sample.name,
        "v": sample.value,
        "e": sample.unix_seconds,
        "t": list(sample.tags),
    }
    return json.dumps(record, allow_nan=False)


class LogForwarderBackend(DeliveryBackend):
    """Writes one structured log line per sample."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return "log_forwarder"

    def deliver(self, batch: MetricsBatch, deadline: Deadline) -> DeliveryResult:
        if not batch:
            return DeliveryResult(success=True)

        # Resolved per call so redirected stdout is honoured.
        stream = self._stream or sys.stdout
        lines = []
        for sample in batch:
            try:
                lines.append(format_log_line(sample))
            except ValueError as e:
                logger.error("metrics.serialize_failed", metric=sample.name, error=str(e))
        with self._lock:
            for line in lines:
                stream.write(line + "\n")
            stream.flush()
        return DeliveryResult(success=True, attempts=1, delivered=len(lines))

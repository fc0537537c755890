# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Base delivery backend abstraction.

A backend turns a drained MetricsBatch into telemetry the Datadog platform
receives, either by calling the API directly or by writing log lines for the
log forwarder. Backends never raise into the caller: every failure comes back
as an unsuccessful DeliveryResult.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ddlambda.metrics.batch import MetricsBatch
from ddlambda.metrics.deadline import Deadline


class DeliveryError(Exception):
    """A single delivery attempt failed."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


@dataclass
class DeliveryResult:
    """Outcome of delivering one batch."""

    success: bool
    attempts: int = 0
    delivered: int = 0
    error_message: str | None = None


class DeliveryBackend(ABC):
    """Abstract base for metric delivery mechanisms."""

    @abstractmethod
    def deliver(self, batch: MetricsBatch, deadline: Deadline) -> DeliveryResult:
        """
        Deliver a batch.

        Args:
            batch: Samples drained from a listener.
            deadline: No network call or retry may run past this point.

        Returns:
            DeliveryResult describing the outcome.
        """
        ...

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier ('api' or 'log_forwarder')."""
        ...

    def close(self) -> None:
        """Release held resources. Default: nothing to release."""
        return None

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Metric delivery backends."""

from __future__ import annotations

from ddlambda._config import MetricsConfig
from ddlambda.metrics.backends.api import APIBackend
from ddlambda.metrics.backends.base import DeliveryBackend, DeliveryError, DeliveryResult
from ddlambda.metrics.backends.log_forwarder import LogForwarderBackend

__all__ = [
    "APIBackend",
    "DeliveryBackend",
    "DeliveryError",
    "DeliveryResult",
    "LogForwarderBackend",
    "make_backend",
]


def make_backend(config: MetricsConfig, api_key: str | None) -> DeliveryBackend | None:
    """
    Select the delivery backend for a resolved config.

    Returns None when no API key resolved: telemetry is dropped for every
    invocation of the wrapped handler.
    """
    if not api_key:
        return None
    if config.should_use_log_forwarder:
        return LogForwarderBackend()
    return APIBackend(
        api_key,
        config.api_base_url,
        should_retry=config.should_retry_on_failure,
        max_retries=config.max_retries,
        retry_backoff_seconds=config.retry_backoff_seconds,
    )

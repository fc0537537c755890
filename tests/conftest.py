# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for ddlambda tests."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any

import pytest

from ddlambda import invocation
from ddlambda._config import MetricsConfig, build_api_base_url
from ddlambda._logging import reset_logging
from ddlambda.metrics.backends.base import DeliveryBackend, DeliveryResult
from ddlambda.metrics.batch import Distribution, MetricsBatch
from ddlambda.metrics.deadline import Deadline

_ENV_VARS = (
    "DD_API_KEY",
    "DD_KMS_API_KEY",
    "DD_SITE",
    "DD_LOG_LEVEL",
    "DD_FLUSH_TO_LOG",
    "_X_AMZN_TRACE_ID",
    "AWS_LAMBDA_FUNCTION_NAME",
)


class FakeClientContext:
    def __init__(self, custom: dict[str, Any] | None = None) -> None:
        self.custom = custom


class FakeLambdaContext:
    """Stand-in for the runtime's context object."""

    def __init__(
        self,
        *,
        remaining_ms: int = 30_000,
        custom: dict[str, Any] | None = None,
    ) -> None:
        self.aws_request_id = "req-0001"
        self.function_name = "checkout"
        self.client_context = FakeClientContext(custom) if custom is not None else None
        self._remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self) -> int:
        return self._remaining_ms


class RecordingBackend(DeliveryBackend):
    """Backend that keeps every batch it is given."""

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.batches: list[MetricsBatch] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return "recording"

    def deliver(self, batch: MetricsBatch, deadline: Deadline) -> DeliveryResult:
        with self._lock:
            self.batches.append(batch)
        if not self.succeed:
            return DeliveryResult(success=False, attempts=1, error_message="boom")
        return DeliveryResult(success=True, attempts=1, delivered=len(batch))

    def close(self) -> None:
        self.closed = True

    @property
    def samples(self) -> list[Distribution]:
        with self._lock:
            return [sample for batch in self.batches for sample in batch]


@pytest.fixture(autouse=True)
def clean_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Isolate tests from the environment and from each other's invocations."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    invocation.set_current_context(None)
    yield
    invocation.set_current_context(None)
    reset_logging()


@pytest.fixture
def metrics_config() -> MetricsConfig:
    """Resolved config with a plaintext key and no interval flushing."""
    return MetricsConfig(
        api_key="test-api-key",
        api_base_url=build_api_base_url("datadoghq.com"),
        batch_interval_seconds=0,
        flush_timeout_seconds=2.0,
        retry_backoff_seconds=0.01,
    )


@pytest.fixture
def recording_backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    return FakeLambdaContext()


@pytest.fixture
def make_lambda_context() -> type[FakeLambdaContext]:
    """Factory for runtime contexts with custom budgets or client context."""
    return FakeLambdaContext

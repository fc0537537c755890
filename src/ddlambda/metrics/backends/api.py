# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Direct API delivery.

POSTs the batch to the distribution points endpoint:

{
    "series": [
        {
            "metric": "checkout.latency",
            "tags": ["env:prod"],
            "type": "distribution",
            "points": [[1700000000, [12.5, 13.0]]]
        }
    ]
}

Retries are opt-in. When enabled, failed attempts are retried with
exponential backoff, but never past the flush deadline: the runtime bills for
the time and may freeze the process right after the handler returns.
"""

from __future__ import annotations

import json
import time

import httpx
import structlog

from ddlambda.metrics.backends.base import DeliveryBackend, DeliveryError, DeliveryResult
from ddlambda.metrics.batch import MetricsBatch
from ddlambda.metrics.deadline import Deadline

logger = structlog.get_logger(__name__)

DISTRIBUTION_POINTS_PATH = "/distribution_points"
API_KEY_HEADER = "DD-API-KEY"


class APIBackend(DeliveryBackend):
    """Submits batches to the Datadog API over HTTPS."""

    def __init__(
        self,
        api_key: str,
        api_base_url: str,
        *,
        should_retry: bool = False,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.25,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{api_base_url.rstrip('/')}{DISTRIBUTION_POINTS_PATH}"
        self._should_retry = should_retry
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def backend_name(self) -> str:
        return "api"

    @property
    def url(self) -> str:
        return self._url

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def deliver(self, batch: MetricsBatch, deadline: Deadline) -> DeliveryResult:
        if not batch:
            return DeliveryResult(success=True)

        try:
            payload = json.dumps({"series": batch.series()}, allow_nan=False)
        except (TypeError, ValueError) as e:
            logger.error("metrics.serialize_failed", error=str(e), samples=len(batch))
            return DeliveryResult(success=False, error_message=f"serialization failed: {e}")

        max_attempts = 1 + (self._max_retries if self._should_retry else 0)
        backoff = self._retry_backoff_seconds
        attempts = 0
        error_message = ""

        while attempts < max_attempts:
            if deadline.expired:
                reason = f"deadline exceeded after {attempts} attempt(s)"
                error_message = f"{reason}: {error_message}" if error_message else reason
                break

            attempts += 1
            try:
                self._send(payload, timeout=deadline.remaining())
            except DeliveryError as e:
                error_message = str(e)
                logger.debug(
                    "metrics.api_attempt_failed",
                    attempt=attempts,
                    error=error_message,
                    retryable=e.retryable,
                )
                if not e.retryable:
                    break
            else:
                logger.debug("metrics.api_delivered", samples=len(batch), attempts=attempts)
                return DeliveryResult(success=True, attempts=attempts, delivered=len(batch))

            if attempts >= max_attempts:
                break
            if backoff >= deadline.remaining():
                error_message = f"no time left to retry: {error_message}"
                break
            time.sleep(backoff)
            backoff *= 2

        return DeliveryResult(success=False, attempts=attempts, error_message=error_message)

    def _send(self, payload: str, *, timeout: float) -> None:
        """Issue one POST. Raises DeliveryError on any failure."""
        try:
            response = self._get_client().post(
                self._url,
                content=payload,
                headers={
                    "Content-Type": "application/json",
                    API_KEY_HEADER: self._api_key,
                },
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise DeliveryError(f"timeout: {e}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            # Client errors (bad key, bad payload) will not get better on retry.
            retryable = response.status_code >= 500 or response.status_code == 429
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                retryable=retryable,
            )

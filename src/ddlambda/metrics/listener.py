# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Per-invocation metrics listener.

A MetricsListener lives for exactly one invocation:

    IDLE --start()--> ACTIVE --flush_and_close()--> FLUSHING --> CLOSED

While ACTIVE it accepts samples from any thread. With a nonzero batch
interval a background thread drains and delivers pending samples at that
cadence; the final flush stops that thread, drains whatever is left and
delivers it within the flush deadline. Every sample is drained exactly once,
whichever flush picks it up.

Delivery failures are logged and the batch is dropped. Losing metrics is
preferred over delaying or failing the handler.
"""

from __future__ import annotations

import threading
from enum import StrEnum
from typing import Any

import structlog
from pydantic import ValidationError

from ddlambda._config import MetricsConfig
from ddlambda.invocation import HandlerListener, InvocationContext
from ddlambda.kms import KMSDecrypter, resolve_api_key
from ddlambda.metrics.backends import DeliveryBackend, make_backend
from ddlambda.metrics.batch import Batcher, Distribution, MetricsBatch
from ddlambda.metrics.deadline import Deadline

logger = structlog.get_logger(__name__)


class ListenerState(StrEnum):
    """Lifecycle state of a MetricsListener."""

    IDLE = "idle"
    ACTIVE = "active"
    FLUSHING = "flushing"
    CLOSED = "closed"


class MetricsListener:
    """Batches distribution samples for one invocation and delivers them."""

    def __init__(
        self,
        config: MetricsConfig,
        backend: DeliveryBackend | None,
        lambda_context: Any = None,
    ) -> None:
        self._config = config
        self._backend = backend
        self._lambda_context = lambda_context
        self._batcher = Batcher()

        # Guards state transitions and every append, so no sample lands after
        # the final drain.
        self._lock = threading.Lock()
        self._state = ListenerState.IDLE

        self._stop = threading.Event()
        self._flush_thread: threading.Thread | None = None

        self._stats_lock = threading.Lock()
        self._flush_count = 0
        self._delivered_count = 0
        self._dropped_count = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def flush_count(self) -> int:
        """Number of non-empty batches handed to the backend."""
        return self._flush_count

    @property
    def delivered_count(self) -> int:
        return self._delivered_count

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def pending_count(self) -> int:
        return self._batcher.pending

    def start(self) -> None:
        """Begin accepting samples."""
        with self._lock:
            if self._state is not ListenerState.IDLE:
                logger.warning("metrics.listener_already_started", state=self._state.value)
                return
            self._state = ListenerState.ACTIVE

        interval = self._config.batch_interval_seconds
        if self._backend is not None and interval > 0:
            self._flush_thread = threading.Thread(
                target=self._run_interval_flush,
                args=(interval,),
                name="ddlambda-metrics-flush",
                daemon=True,
            )
            self._flush_thread.start()

        logger.debug(
            "metrics.listener_started",
            backend=self._backend.backend_name if self._backend else None,
            batch_interval_seconds=interval,
        )

    def add_distribution(self, name: str, value: float, *tags: str) -> None:
        """Record one sample. Never raises; invalid or late calls are logged."""
        try:
            sample = Distribution(name=name, value=value, tags=tuple(tags))
        except ValidationError as e:
            logger.error("metrics.invalid_sample", metric=name, error=str(e))
            return

        with self._lock:
            if self._state is not ListenerState.ACTIVE:
                logger.error(
                    "metrics.listener_not_active",
                    metric=name,
                    state=self._state.value,
                )
                return
            self._batcher.add(sample)

    def flush_and_close(self) -> None:
        """Deliver everything still pending and close the listener."""
        with self._lock:
            if self._state in (ListenerState.FLUSHING, ListenerState.CLOSED):
                return
            if self._state is ListenerState.IDLE:
                self._state = ListenerState.CLOSED
                return
            self._state = ListenerState.FLUSHING

        deadline = Deadline.for_invocation(
            self._lambda_context, self._config.flush_timeout_seconds
        )

        self._stop.set()
        if self._flush_thread is not None:
            # An interval delivery in flight is bounded by its own deadline.
            self._flush_thread.join(timeout=deadline.remaining())
            if self._flush_thread.is_alive():
                logger.warning("metrics.interval_flush_still_running")
            self._flush_thread = None

        self._flush(deadline, final=True)

        with self._lock:
            self._state = ListenerState.CLOSED

        logger.debug(
            "metrics.listener_closed",
            flushes=self._flush_count,
            delivered=self._delivered_count,
            dropped=self._dropped_count,
        )

    def _run_interval_flush(self, interval: float) -> None:
        while not self._stop.wait(interval):
            deadline = Deadline.for_invocation(
                self._lambda_context, self._config.flush_timeout_seconds
            )
            self._flush(deadline, final=False)

    def _flush(self, deadline: Deadline, *, final: bool) -> None:
        batch = self._batcher.drain()
        if not batch:
            return

        if self._backend is None:
            self._record(dropped=len(batch))
            logger.debug("metrics.dropped_no_backend", samples=len(batch))
            return

        try:
            result = self._backend.deliver(batch, deadline)
        except Exception:
            # Backends report failures through DeliveryResult; this is a bug guard.
            logger.exception("metrics.backend_crashed", backend=self._backend.backend_name)
            self._record(flushed=True, dropped=len(batch))
            return

        if result.success:
            self._record(flushed=True, delivered=len(batch))
            return

        self._record(flushed=True, dropped=len(batch))
        logger.error(
            "metrics.flush_failed",
            backend=self._backend.backend_name,
            samples=len(batch),
            attempts=result.attempts,
            error=result.error_message,
            final=final,
        )

    def _record(self, *, flushed: bool = False, delivered: int = 0, dropped: int = 0) -> None:
        with self._stats_lock:
            if flushed:
                self._flush_count += 1
            self._delivered_count += delivered
            self._dropped_count += dropped


class MetricsHandlerListener(HandlerListener):
    """
    Creates a fresh MetricsListener for every invocation.

    Lives as long as the wrapped handler. The API key (decrypted through KMS
    if needed) and the delivery backend are set up on the first invocation
    and reused by later warm invocations.
    """

    def __init__(
        self,
        config: MetricsConfig,
        *,
        backend: DeliveryBackend | None = None,
        decrypter: KMSDecrypter | None = None,
    ) -> None:
        self._config = config
        self._backend = backend
        self._decrypter = decrypter
        self._initialized = backend is not None
        self._init_lock = threading.Lock()

    @property
    def config(self) -> MetricsConfig:
        return self._config

    @property
    def backend(self) -> DeliveryBackend | None:
        return self._backend

    def _ensure_backend(self) -> DeliveryBackend | None:
        with self._init_lock:
            if not self._initialized:
                api_key = resolve_api_key(self._config, self._decrypter)
                self._backend = make_backend(self._config, api_key)
                if self._backend is None:
                    logger.error("metrics.disabled", reason="no API key available")
                self._initialized = True
        return self._backend

    def handler_started(self, ctx: InvocationContext) -> None:
        listener = MetricsListener(self._config, self._ensure_backend(), ctx.lambda_context)
        listener.start()
        ctx.metrics_listener = listener

    def handler_finished(self, ctx: InvocationContext) -> None:
        if ctx.metrics_listener is not None:
            ctx.metrics_listener.flush_and_close()

    def close(self) -> None:
        if self._backend is not None:
            self._backend.close()

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Handler wrapping.

Every invocation of a wrapped handler follows the same lifecycle:

1. build a fresh InvocationContext and run each listener's start hook
2. publish the context as the process-wide current context
3. call the handler with its arguments untouched
4. run each listener's finish hook in a ``finally`` block, so metrics are
   flushed even when the handler raises
5. hand the handler's result (or exception) back unchanged

Listener failures are logged and never reach the runtime.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog

from ddlambda._config import Config, resolve_config
from ddlambda._logging import configure_logging
from ddlambda.invocation import HandlerListener, InvocationContext, set_current_context
from ddlambda.metrics.listener import MetricsHandlerListener
from ddlambda.trace.listener import TraceListener

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def wrap_handler(handler: F, config: Config | None = None) -> F:
    """
    Instrument a Lambda handler with trace extraction and metrics.

    Configuration is resolved once here and shared by every invocation of
    the returned handler.

    Args:
        handler: ``handler(event, context)``, sync or async.
        config: Explicit overrides; the environment fills the rest.

    Returns:
        A handler with the same call shape, ready to hand to the runtime.
    """
    debug = bool(config and config.debug_logging) or Config.from_env().debug_logging
    configure_logging(debug)

    metrics_config = resolve_config(config)
    return wrap_handler_with_listeners(
        handler,
        TraceListener(),
        MetricsHandlerListener(metrics_config),
    )


def datadog_lambda(config: Config | None = None) -> Callable[[F], F]:
    """Decorator form of :func:`wrap_handler`."""

    def decorator(handler: F) -> F:
        return wrap_handler(handler, config)

    return decorator


def wrap_handler_with_listeners(handler: F, *listeners: HandlerListener) -> F:
    """
    Wrap ``handler`` so ``listeners`` run around every call.

    The returned handler has a ``close()`` attribute releasing what the
    listeners hold across invocations, such as the API client. The runtime
    never calls it; a process that outlives its handlers may.
    """
    close = functools.partial(_close_listeners, listeners)

    if _is_async(handler):

        @functools.wraps(handler)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            # Start hooks may block too (KMS decrypt on the first invocation).
            ctx = await asyncio.to_thread(_start_invocation, args, kwargs, listeners)
            try:
                return await handler(*args, **kwargs)
            finally:
                # Final flush blocks on the network; keep it off the event loop.
                await asyncio.to_thread(_finish_invocation, ctx, listeners)

        async_wrapper.close = close  # type: ignore[attr-defined]
        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(handler)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        ctx = _start_invocation(args, kwargs, listeners)
        try:
            return handler(*args, **kwargs)
        finally:
            _finish_invocation(ctx, listeners)

    wrapper.close = close  # type: ignore[attr-defined]
    return wrapper  # type: ignore[return-value]


def _is_async(handler: Callable[..., Any]) -> bool:
    # Callable objects with an async __call__ are not coroutine functions themselves.
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


def _start_invocation(
    args: Sequence[Any],
    kwargs: dict[str, Any],
    listeners: Sequence[HandlerListener],
) -> InvocationContext:
    event = args[0] if len(args) > 0 else kwargs.get("event")
    lambda_context = args[1] if len(args) > 1 else kwargs.get("context")

    ctx = InvocationContext(event=event, lambda_context=lambda_context)
    for listener in listeners:
        try:
            listener.handler_started(ctx)
        except Exception:
            logger.exception("wrapper.listener_start_failed", listener=type(listener).__name__)

    set_current_context(ctx)
    logger.debug(
        "wrapper.invocation_started",
        request_id=getattr(lambda_context, "aws_request_id", None),
        traced=bool(ctx.trace_headers),
    )
    return ctx


def _finish_invocation(ctx: InvocationContext, listeners: Sequence[HandlerListener]) -> None:
    for listener in reversed(listeners):
        try:
            listener.handler_finished(ctx)
        except Exception:
            logger.exception("wrapper.listener_finish_failed", listener=type(listener).__name__)


def _close_listeners(listeners: Sequence[HandlerListener]) -> None:
    for listener in listeners:
        try:
            listener.close()
        except Exception:
            logger.exception("wrapper.listener_close_failed", listener=type(listener).__name__)

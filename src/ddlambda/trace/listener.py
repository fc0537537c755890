# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Handler listener that extracts trace context at invocation start."""

from __future__ import annotations

from ddlambda.invocation import HandlerListener, InvocationContext
from ddlambda.trace.context import extract


class TraceListener(HandlerListener):
    """Attaches the invocation's trace headers to its context."""

    def handler_started(self, ctx: InvocationContext) -> None:
        ctx.trace_headers = extract(ctx.event, ctx.lambda_context)

    def handler_finished(self, ctx: InvocationContext) -> None:
        # Headers are immutable; nothing to release.
        return None

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Datadog trace context extraction and propagation."""

from ddlambda.trace.context import (
    PARENT_ID_HEADER,
    SAMPLING_PRIORITY_HEADER,
    TRACE_ID_HEADER,
    TraceHeaders,
    extract,
    propagate,
)
from ddlambda.trace.listener import TraceListener

__all__ = [
    "TRACE_ID_HEADER",
    "PARENT_ID_HEADER",
    "SAMPLING_PRIORITY_HEADER",
    "TraceHeaders",
    "TraceListener",
    "extract",
    "propagate",
]

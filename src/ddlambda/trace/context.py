# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Trace context extraction and propagation.

Datadog trace context travels as three HTTP headers. An invocation may carry
them in several places, checked in this order:

1. ``event["headers"]`` (API Gateway / ALB / function URL events)
2. the event itself (direct invocations that pass the headers as payload)
3. ``context.client_context.custom`` (synchronous invokes from a traced
   caller, including the legacy nested ``_datadog`` dict)
4. the AWS X-Ray trace header, converted to Datadog ids

A carrier is only used when it holds both a trace id and a parent id. No
usable carrier yields an empty header set.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from types import MappingProxyType
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

TRACE_ID_HEADER = "x-datadog-trace-id"
PARENT_ID_HEADER = "x-datadog-parent-id"
SAMPLING_PRIORITY_HEADER = "x-datadog-sampling-priority"

CANONICAL_HEADERS = (TRACE_ID_HEADER, PARENT_ID_HEADER, SAMPLING_PRIORITY_HEADER)

XRAY_TRACE_ID_ENV_VAR = "_X_AMZN_TRACE_ID"

# Sampling priorities used for X-Ray sampled / not sampled.
USER_KEEP = 2
USER_REJECT = -1

TraceHeaders = Mapping[str, str]

EMPTY_HEADERS: TraceHeaders = MappingProxyType({})


def extract(event: Any, lambda_context: Any = None) -> TraceHeaders:
    """
    Build the canonical trace header set for one invocation.

    Args:
        event: The raw trigger payload.
        lambda_context: The runtime context object, if any.

    Returns:
        Read-only mapping of canonical header name to value. Empty when the
        invocation carries no trace context.
    """
    for source, carrier in _carriers(event, lambda_context):
        headers = _from_carrier(carrier)
        if headers:
            logger.debug("trace.context_extracted", source=source, headers=headers)
            return MappingProxyType(headers)

    xray = _from_xray_header(os.environ.get(XRAY_TRACE_ID_ENV_VAR, ""))
    if xray:
        logger.debug("trace.context_extracted", source="xray", headers=xray)
        return MappingProxyType(xray)

    logger.debug("trace.context_missing")
    return EMPTY_HEADERS


def propagate(headers: TraceHeaders, outbound: Any) -> None:
    """
    Write trace headers onto an outbound carrier.

    ``outbound`` is either a mutable mapping of headers or an object with a
    mutable ``headers`` attribute, such as ``httpx.Request`` or
    ``requests.PreparedRequest``.
    """
    if isinstance(outbound, MutableMapping):
        target = outbound
    else:
        target = getattr(outbound, "headers", None)
        if not isinstance(target, MutableMapping):
            raise TypeError(
                f"cannot propagate trace headers onto {type(outbound).__name__}: "
                "expected a mapping or an object with a headers mapping"
            )
    for key, value in headers.items():
        target[key] = value


def _carriers(event: Any, lambda_context: Any) -> list[tuple[str, Any]]:
    carriers: list[tuple[str, Any]] = []
    if isinstance(event, Mapping):
        headers = event.get("headers")
        if isinstance(headers, Mapping):
            carriers.append(("headers", headers))
        carriers.append(("event", event))

    client_context = getattr(lambda_context, "client_context", None)
    custom = getattr(client_context, "custom", None)
    if isinstance(custom, Mapping):
        legacy = custom.get("_datadog")
        if isinstance(legacy, Mapping):
            carriers.append(("client_context", legacy))
        carriers.append(("client_context", custom))
    return carriers


def _from_carrier(carrier: Mapping[str, Any]) -> dict[str, str]:
    lowered = {
        str(key).lower(): value
        for key, value in carrier.items()
        if isinstance(value, (str, int)) and not isinstance(value, bool)
    }
    trace_id = lowered.get(TRACE_ID_HEADER)
    parent_id = lowered.get(PARENT_ID_HEADER)
    if trace_id in (None, "") or parent_id in (None, ""):
        if trace_id or parent_id:
            logger.debug("trace.context_incomplete", trace_id=trace_id, parent_id=parent_id)
        return {}

    headers = {
        TRACE_ID_HEADER: str(trace_id),
        PARENT_ID_HEADER: str(parent_id),
    }
    sampling_priority = lowered.get(SAMPLING_PRIORITY_HEADER)
    if sampling_priority not in (None, ""):
        headers[SAMPLING_PRIORITY_HEADER] = str(sampling_priority)
    return headers


def _from_xray_header(header: str) -> dict[str, str]:
    """Convert ``Root=1-<time>-<id>;Parent=<id>;Sampled=<0|1>`` to Datadog headers."""
    if not header:
        return {}

    parts: dict[str, str] = {}
    for part in header.split(";"):
        key, sep, value = part.partition("=")
        if sep:
            parts[key.strip()] = value.strip()

    root = parts.get("Root", "")
    parent = parts.get("Parent", "")
    root_fields = root.split("-")
    if len(root_fields) != 3 or not parent:
        logger.debug("trace.xray_header_invalid", header=header)
        return {}

    try:
        # Datadog ids are the low 63 bits of the X-Ray root, and the parent as is.
        trace_id = 0x7FFFFFFFFFFFFFFF & int(root_fields[2][-16:], 16)
        parent_id = int(parent, 16)
    except ValueError:
        logger.debug("trace.xray_header_invalid", header=header)
        return {}

    headers = {
        TRACE_ID_HEADER: str(trace_id),
        PARENT_ID_HEADER: str(parent_id),
    }
    sampled = parts.get("Sampled")
    if sampled in ("0", "1"):
        headers[SAMPLING_PRIORITY_HEADER] = str(USER_KEEP if sampled == "1" else USER_REJECT)
    return headers

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Distribution metric batching and delivery."""

from ddlambda.metrics.batch import Distribution, MetricsBatch
from ddlambda.metrics.listener import ListenerState, MetricsHandlerListener, MetricsListener

__all__ = [
    "Distribution",
    "ListenerState",
    "MetricsBatch",
    "MetricsHandlerListener",
    "MetricsListener",
]

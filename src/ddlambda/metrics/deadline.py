# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Monotonic deadlines bounding delivery and retry."""

from __future__ import annotations

import time
from typing import Any

# Time kept back from the invocation's remaining budget so the runtime
# still gets the handler result after the final flush.
INVOCATION_SAFETY_MARGIN_SECONDS = 0.1


class Deadline:
    """An absolute point on the monotonic clock."""

    def __init__(self, seconds: float) -> None:
        self._expires_at = time.monotonic() + max(0.0, seconds)

    @classmethod
    def for_invocation(cls, lambda_context: Any, ceiling_seconds: float) -> Deadline:
        """Tighter of ``ceiling_seconds`` and the invocation's remaining time."""
        seconds = ceiling_seconds
        get_remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
        if callable(get_remaining):
            try:
                remaining = get_remaining() / 1000.0 - INVOCATION_SAFETY_MARGIN_SECONDS
            except (TypeError, ValueError):
                remaining = None
            if remaining is not None:
                seconds = min(seconds, remaining)
        return cls(seconds)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def bound(self, seconds: float) -> float:
        """Clamp a duration so it ends no later than the deadline."""
        return max(0.0, min(seconds, self.remaining()))

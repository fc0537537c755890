# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Distribution samples and batches.

Samples are kept individually: two samples with the same name and tags are
both delivered and the backend computes the distribution. Grouping only
happens when a batch is serialised for the API, where samples sharing name,
tags and second collapse into one point with several values.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DISTRIBUTION_TYPE = "distribution"


class Distribution(BaseModel):
    """One distribution metric sample."""

    model_config = ConfigDict(frozen=True)

    name: str
    # NaN and infinities have no JSON encoding and would poison a whole batch.
    value: float = Field(allow_inf_nan=False)
    tags: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def unix_seconds(self) -> int:
        return int(self.timestamp.timestamp())


class MetricsBatch:
    """Samples drained from a listener in one flush."""

    def __init__(self, samples: list[Distribution] | None = None) -> None:
        self._samples = samples or []

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Distribution]:
        return iter(self._samples)

    def __bool__(self) -> bool:
        return bool(self._samples)

    @property
    def samples(self) -> list[Distribution]:
        return list(self._samples)

    def series(self) -> list[dict[str, Any]]:
        """Group samples into API series, preserving first-seen order."""
        grouped: dict[tuple[str, tuple[str, ...]], dict[int, list[float]]] = {}
        for sample in self._samples:
            points = grouped.setdefault((sample.name, sample.tags), {})
            points.setdefault(sample.unix_seconds, []).append(sample.value)

        return [
            {
                "metric": name,
                "tags": list(tags),
                "type": DISTRIBUTION_TYPE,
                "points": [[ts, values] for ts, values in points.items()],
            }
            for (name, tags), points in grouped.items()
        ]


class Batcher:
    """Thread-safe sample accumulator. Each sample is drained exactly once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: list[Distribution] = []
        self._total = 0

    def add(self, sample: Distribution) -> None:
        with self._lock:
            self._samples.append(sample)
            self._total += 1

    def drain(self) -> MetricsBatch:
        with self._lock:
            samples, self._samples = self._samples, []
        return MetricsBatch(samples)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def total(self) -> int:
        """Samples ever added, drained or not."""
        with self._lock:
            return self._total

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the API and log forwarder delivery backends."""

from __future__ import annotations

import io
import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx

from ddlambda._config import MetricsConfig, build_api_base_url
from ddlambda.metrics.backends import (
    APIBackend,
    LogForwarderBackend,
    make_backend,
)
from ddlambda.metrics.backends.log_forwarder import format_log_line
from ddlambda.metrics.batch import Distribution, MetricsBatch
from ddlambda.metrics.deadline import Deadline

BASE_URL = build_api_base_url("datadoghq.com")
TS = datetime(2024, 1, 1, tzinfo=UTC)


def _batch(n: int = 2) -> MetricsBatch:
    return MetricsBatch(
        [
            Distribution(name="test.metric", value=float(i), tags=("env:test",), timestamp=TS)
            for i in range(n)
        ]
    )


def _backend(
    handler: Callable[[httpx.Request], httpx.Response],
    **kwargs: object,
) -> APIBackend:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return APIBackend("secret-key", BASE_URL, client=client, **kwargs)  # type: ignore[arg-type]


class TestAPIBackend:
    def test_posts_series(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202, json={})

        result = _backend(handler).deliver(_batch(), Deadline(5.0))

        assert result.success is True
        assert result.attempts == 1
        assert result.delivered == 2
        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == "https://api.datadoghq.com/api/v1/distribution_points"
        assert request.headers["DD-API-KEY"] == "secret-key"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body == {
            "series": [
                {
                    "metric": "test.metric",
                    "tags": ["env:test"],
                    "type": "distribution",
                    "points": [[int(TS.timestamp()), [0.0, 1.0]]],
                }
            ]
        }

    def test_empty_batch_makes_no_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = _backend(handler).deliver(MetricsBatch(), Deadline(5.0))
        assert result.success is True
        assert result.attempts == 0

    def test_server_error_without_retry_fails_once(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, text="Internal Server Error")

        result = _backend(handler).deliver(_batch(), Deadline(5.0))

        assert result.success is False
        assert result.attempts == 1
        assert calls == 1
        assert "HTTP 500" in (result.error_message or "")

    def test_network_error_is_a_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        result = _backend(handler).deliver(_batch(), Deadline(5.0))
        assert result.success is False
        assert "ConnectError" in (result.error_message or "")

    def test_timeout_is_a_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        result = _backend(handler).deliver(_batch(), Deadline(5.0))
        assert result.success is False
        assert "timeout" in (result.error_message or "")

    def test_retry_until_success(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(503), httpx.Response(202)])

        result = _backend(
            lambda req: next(responses),
            should_retry=True,
            max_retries=3,
            retry_backoff_seconds=0.001,
        ).deliver(_batch(), Deadline(5.0))

        assert result.success is True
        assert result.attempts == 3

    def test_retry_gives_up_after_max_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("down")

        result = _backend(
            handler, should_retry=True, max_retries=2, retry_backoff_seconds=0.001
        ).deliver(_batch(), Deadline(5.0))

        assert result.success is False
        assert result.attempts == 3
        assert calls == 3

    def test_client_errors_are_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(403, text="Forbidden")

        result = _backend(
            handler, should_retry=True, max_retries=3, retry_backoff_seconds=0.001
        ).deliver(_batch(), Deadline(5.0))

        assert result.success is False
        assert calls == 1

    def test_retry_respects_deadline(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        result = _backend(
            handler, should_retry=True, max_retries=10, retry_backoff_seconds=1.0
        ).deliver(_batch(), Deadline(0.5))

        assert result.success is False
        assert calls == 1
        assert "no time left" in (result.error_message or "")

    def test_expired_deadline_sends_nothing(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = _backend(handler).deliver(_batch(), Deadline(0))
        assert result.success is False
        assert result.attempts == 0
        assert "deadline exceeded" in (result.error_message or "")

    def test_non_finite_value_is_never_sent(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        # model_construct skips validation, as a sample built outside the listener might.
        bad = Distribution.model_construct(
            name="bad.metric", value=float("nan"), tags=(), timestamp=TS
        )
        result = _backend(handler).deliver(MetricsBatch([bad]), Deadline(5.0))

        assert result.success is False
        assert "serialization failed" in (result.error_message or "")

    def test_close_leaves_injected_client_open(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(202)))
        APIBackend("k", BASE_URL, client=client).close()
        assert client.is_closed is False


class TestLogForwarderBackend:
    def test_one_line_per_sample(self) -> None:
        stream = io.StringIO()
        result = LogForwarderBackend(stream).deliver(_batch(3), Deadline(5.0))

        lines = stream.getvalue().splitlines()
        assert result.success is True
        assert result.delivered == 3
        assert len(lines) == 3
        assert json.loads(lines[2]) == {
            "m": "test.metric",
            "v": 2.0,
            "e": int(TS.timestamp()),
            "t": ["env:test"],
        }

    def test_empty_batch_writes_nothing(self) -> None:
        stream = io.StringIO()
        LogForwarderBackend(stream).deliver(MetricsBatch(), Deadline(5.0))
        assert stream.getvalue() == ""

    def test_defaults_to_stdout(self, capsys: object) -> None:
        LogForwarderBackend().deliver(_batch(1), Deadline(5.0))
        out = capsys.readouterr().out  # type: ignore[attr-defined]
        assert json.loads(out)["m"] == "test.metric"

    def test_non_finite_line_is_skipped(self) -> None:
        stream = io.StringIO()
        bad = Distribution.model_construct(
            name="bad.metric", value=float("inf"), tags=(), timestamp=TS
        )
        good = Distribution(name="good.metric", value=1.0, timestamp=TS)

        result = LogForwarderBackend(stream).deliver(MetricsBatch([bad, good]), Deadline(5.0))

        lines = stream.getvalue().splitlines()
        assert result.delivered == 1
        assert [json.loads(line)["m"] for line in lines] == ["good.metric"]
        assert "Infinity" not in stream.getvalue()

    def test_format_log_line(self) -> None:
        sample = Distribution(name="a", value=1.5, tags=("x:y",), timestamp=TS)
        assert json.loads(format_log_line(sample)) == {
            "m": "a",
            "v": 1.5,
            "e": int(TS.timestamp()),
            "t": ["x:y"],
        }


class TestMakeBackend:
    def _config(self, **kwargs: object) -> MetricsConfig:
        return MetricsConfig(api_base_url=BASE_URL, **kwargs)  # type: ignore[arg-type]

    def test_no_key_means_no_backend(self) -> None:
        assert make_backend(self._config(), None) is None
        assert make_backend(self._config(should_use_log_forwarder=True), None) is None

    def test_api_backend(self) -> None:
        backend = make_backend(self._config(api_key="k"), "k")
        assert isinstance(backend, APIBackend)
        assert backend.url == "https://api.datadoghq.com/api/v1/distribution_points"

    def test_log_forwarder_backend(self) -> None:
        backend = make_backend(self._config(should_use_log_forwarder=True), "k")
        assert isinstance(backend, LogForwarderBackend)

#!/usr/bin/env python3
"""
Example: instrumented Lambda handler.

Records a distribution per order and forwards the incoming trace context to a
downstream service. Deploy with DD_API_KEY (or DD_KMS_API_KEY) set, or run
locally with DD_FLUSH_TO_LOG=true to see the metric lines on stdout:

    DD_API_KEY=dummy DD_FLUSH_TO_LOG=true python examples/lambda_handler.py
"""

import time

import httpx

import ddlambda


@ddlambda.datadog_lambda(ddlambda.Config(batch_interval_seconds=10))
def handler(event, context):
    started = time.perf_counter()

    request = httpx.Request("GET", "https://inventory.example.com/stock")
    ddlambda.add_trace_headers(request)

    for item in event.get("items", []):
        ddlambda.distribution("orders.item_price", item["price"], f"sku:{item['sku']}")

    ddlambda.distribution(
        "orders.handler_ms", (time.perf_counter() - started) * 1000, "env:example"
    )
    return {"statusCode": 200, "forwarded_headers": dict(request.headers)}


if __name__ == "__main__":
    event = {
        "headers": {"x-datadog-trace-id": "123", "x-datadog-parent-id": "456"},
        "items": [{"sku": "A-1", "price": 9.5}, {"sku": "B-2", "price": 20.0}],
    }
    print(handler(event, None))

# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Wrapper configuration.

``Config`` is the explicit override surface handed to ``wrap_handler``; every
field is optional and the environment fills the gaps. ``resolve_config``
merges the two into an immutable ``MetricsConfig`` used for the lifetime of
one wrapped handler.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)

# Environment variables. Users set these outside the code, keep them stable.
API_KEY_ENV_VAR = "DD_API_KEY"
KMS_API_KEY_ENV_VAR = "DD_KMS_API_KEY"
SITE_ENV_VAR = "DD_SITE"
LOG_LEVEL_ENV_VAR = "DD_LOG_LEVEL"
LOG_FORWARDER_ENV_VAR = "DD_FLUSH_TO_LOG"

DEFAULT_SITE = "datadoghq.com"
DEFAULT_BATCH_INTERVAL_SECONDS = 15.0
DEFAULT_FLUSH_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.25


class Config(BaseModel):
    """Explicit configuration for a wrapped handler."""

    # Credentials
    api_key: str | None = Field(
        default=None,
        description="Datadog API key used to submit metrics.",
    )
    kms_api_key: str | None = Field(
        default=None,
        description="Datadog API key encrypted with AWS KMS (base64 ciphertext).",
    )

    # Endpoint
    site: str | None = Field(
        default=None,
        description="Datadog site, e.g. datadoghq.eu. Falls back to DD_SITE, then datadoghq.com.",
    )

    # Batching and delivery
    batch_interval_seconds: float | None = Field(
        default=None,
        ge=0,
        description="How often pending metrics are flushed mid-invocation. 0 flushes only "
        "at the end of the invocation.",
    )
    should_retry_on_failure: bool | None = Field(
        default=None,
        description="Retry failed API submissions. Trades handler latency for durability.",
    )
    should_use_log_forwarder: bool = Field(
        default=False,
        description="Write metrics as log lines for the Datadog log forwarder instead of "
        "calling the API.",
    )
    flush_timeout_seconds: float = Field(
        default=DEFAULT_FLUSH_TIMEOUT_SECONDS,
        gt=0,
        description="Hard ceiling on the time spent delivering one batch, retries included.",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Additional attempts made when retry on failure is enabled.",
    )
    retry_backoff_seconds: float = Field(
        default=DEFAULT_RETRY_BACKOFF_SECONDS,
        ge=0,
        description="Initial backoff between retries; doubled after each attempt.",
    )

    # Logging
    debug_logging: bool = Field(
        default=False,
        description="Enable verbose library logging.",
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        """Build a config carrying only what the environment sets."""
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get(API_KEY_ENV_VAR) or None,
            kms_api_key=env.get(KMS_API_KEY_ENV_VAR) or None,
            site=env.get(SITE_ENV_VAR) or None,
            should_use_log_forwarder=_env_true(env, LOG_FORWARDER_ENV_VAR),
            debug_logging=env.get(LOG_LEVEL_ENV_VAR, "").lower() == "debug",
        )


class MetricsConfig(BaseModel):
    """Fully resolved configuration. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    kms_api_key: str | None = None
    api_base_url: str
    batch_interval_seconds: float = DEFAULT_BATCH_INTERVAL_SECONDS
    should_retry_on_failure: bool = False
    should_use_log_forwarder: bool = False
    debug_logging: bool = False
    flush_timeout_seconds: float = DEFAULT_FLUSH_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.kms_api_key)


def resolve_config(
    config: Config | None = None,
    environ: Mapping[str, str] | None = None,
) -> MetricsConfig:
    """
    Merge explicit configuration with the environment.

    Args:
        config: Explicit overrides. ``None`` means environment only.
        environ: Environment mapping, defaults to ``os.environ``.

    Returns:
        The resolved MetricsConfig. A missing API key is logged, not raised;
        the wrapper then runs without delivering telemetry.
    """
    cfg = config or Config()
    env_cfg = Config.from_env(environ)

    # Plaintext wins over encrypted, explicit over environment.
    api_key = cfg.api_key or None
    kms_api_key = cfg.kms_api_key or None
    if api_key is None and kms_api_key is None:
        api_key = env_cfg.api_key
        if api_key is None:
            kms_api_key = env_cfg.kms_api_key
    elif api_key is not None:
        kms_api_key = None

    if api_key is None and kms_api_key is None:
        logger.error(
            "config.api_key_missing",
            detail=f"couldn't read {API_KEY_ENV_VAR} or {KMS_API_KEY_ENV_VAR} from environment",
        )

    site = cfg.site or env_cfg.site or DEFAULT_SITE

    should_use_log_forwarder = cfg.should_use_log_forwarder or env_cfg.should_use_log_forwarder
    debug_logging = cfg.debug_logging or env_cfg.debug_logging

    batch_interval = cfg.batch_interval_seconds
    if batch_interval is None:
        batch_interval = DEFAULT_BATCH_INTERVAL_SECONDS

    return MetricsConfig(
        api_key=api_key,
        kms_api_key=kms_api_key,
        api_base_url=build_api_base_url(site),
        batch_interval_seconds=batch_interval,
        should_retry_on_failure=bool(cfg.should_retry_on_failure),
        should_use_log_forwarder=should_use_log_forwarder,
        debug_logging=debug_logging,
        flush_timeout_seconds=cfg.flush_timeout_seconds,
        max_retries=cfg.max_retries,
        retry_backoff_seconds=cfg.retry_backoff_seconds,
    )


def build_api_base_url(site: str) -> str:
    """Turn a site name like ``datadoghq.eu`` into the v1 API base URL."""
    site = site.strip().rstrip("/")
    for prefix in ("https://", "http://"):
        if site.startswith(prefix):
            site = site[len(prefix) :]
    if site.startswith("api."):
        site = site[len("api.") :]
    return f"https://api.{site}/api/v1"


def _env_true(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() == "true"

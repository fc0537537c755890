# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
KMS-encrypted API key support.

The encrypted key is the base64 ciphertext produced by ``aws kms encrypt``.
Keys encrypted from the Lambda console carry the function name as encryption
context, so decryption is tried with that context first and without it after.
boto3 is only needed when an encrypted key is actually configured; install
the ``kms`` extra outside the Lambda runtime.
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Any

import structlog

from ddlambda._config import MetricsConfig

logger = structlog.get_logger(__name__)

FUNCTION_NAME_ENV_VAR = "AWS_LAMBDA_FUNCTION_NAME"
ENCRYPTION_CONTEXT_KEY = "LambdaFunctionName"


class KMSDecryptionError(Exception):
    """Raised when an encrypted API key cannot be decrypted."""


class KMSDecrypter:
    """Decrypts ciphertext with AWS KMS through boto3."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise KMSDecryptionError(
                    "boto3 is required to decrypt DD_KMS_API_KEY; install ddlambda[kms]"
                ) from e
            self._client = boto3.client("kms")
        return self._client

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a base64 ciphertext and return the plaintext key."""
        try:
            blob = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KMSDecryptionError("encrypted API key is not valid base64") from e

        client = self._get_client()
        function_name = os.environ.get(FUNCTION_NAME_ENV_VAR)

        response = None
        if function_name:
            try:
                response = client.decrypt(
                    CiphertextBlob=blob,
                    EncryptionContext={ENCRYPTION_CONTEXT_KEY: function_name},
                )
            except Exception:
                logger.debug("kms.decrypt_with_context_failed", function_name=function_name)

        if response is None:
            try:
                response = client.decrypt(CiphertextBlob=blob)
            except Exception as e:
                raise KMSDecryptionError(f"KMS decrypt failed: {e}") from e

        plaintext = response.get("Plaintext")
        if not plaintext:
            raise KMSDecryptionError("KMS returned an empty plaintext")
        if isinstance(plaintext, bytes):
            return plaintext.decode("utf-8")
        return str(plaintext)


def resolve_api_key(
    config: MetricsConfig,
    decrypter: KMSDecrypter | None = None,
) -> str | None:
    """
    Return the plaintext API key for a resolved config.

    The encrypted key is only decrypted when no plaintext key exists.
    Failures are logged and return None, leaving the wrapper in degraded mode.
    """
    if config.api_key:
        return config.api_key
    if not config.kms_api_key:
        return None

    decrypter = decrypter or KMSDecrypter()
    try:
        api_key = decrypter.decrypt(config.kms_api_key)
    except KMSDecryptionError as e:
        logger.error("kms.decrypt_failed", error=str(e))
        return None

    logger.debug("kms.decrypt_ok")
    return api_key

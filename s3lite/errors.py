# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy for S3 operations.

Every failure surfaces as a subclass of ``S3Error``:

- ``ConfigError``: bad region, addressing or expiry input, detected
  before any network call.
- ``TransferError``: body length mismatch or stream read/write failure.
- ``RequestTimeout``: the transport timed out.
- ``HttpError``: non-2xx response without a parseable provider error.
- ``ServiceError``: non-2xx response with a provider ``<Error>`` body.
- ``DecodeError``: response body present but structurally invalid.
"""

from __future__ import annotations


class S3Error(Exception):
    """Base exception for all S3 client failures."""


class ConfigError(S3Error):
    """Invalid configuration detected before any request is sent."""


class TransferError(S3Error):
    """Body transfer failed (length mismatch, stream or socket error)."""


class RequestTimeout(S3Error):
    """The request did not complete within the configured timeout."""


class DecodeError(S3Error):
    """A response body could not be parsed into the expected shape."""


class HttpError(S3Error):
    """Non-2xx response whose body is absent or not a provider error.

    Attributes:
        http_status: HTTP status code of the response.
        body: Raw response body (possibly empty).
    """

    def __init__(self, http_status: int, body: bytes = b"") -> None:
        super().__init__(f"HTTP {http_status}")
        self.http_status = http_status
        self.body = body


class ServiceError(S3Error):
    """Non-2xx response carrying a provider ``<Error>`` document.

    Attributes:
        code: Provider error code (e.g. ``NoSuchKey``).
        message: Human-readable provider message.
        request_id: Provider request ID, if reported.
        http_status: HTTP status code of the response.
    """

    def __init__(
        self,
        code: str,
        message: str,
        request_id: str | None,
        http_status: int,
    ) -> None:
        super().__init__(f"{code} (HTTP {http_status}): {message}")
        self.code = code
        self.message = message
        self.request_id = request_id
        self.http_status = http_status

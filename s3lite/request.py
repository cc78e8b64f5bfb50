# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request assembly, signing and dispatch.

An ``S3Request`` describes one logical operation (method, key, query,
headers, body). ``S3Request.prepare()`` applies a bucket's addressing
style and extra headers, fixes the final header set, and signs it into a
``SignedRequest``. ``RequestExecutor`` sends signed requests through an
``httpx.AsyncClient`` and streams bodies in both directions.

No retries are performed here; every failure surfaces to the caller.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import httpx

from s3lite.errors import RequestTimeout, TransferError
from s3lite.responses import ResponseData, raise_for_status
from s3lite.signing import UNSIGNED_PAYLOAD, uri_encode
from s3lite.stream import ObjectStream, UploadSource


if TYPE_CHECKING:
    from s3lite.bucket import Bucket


logger = logging.getLogger(__name__)

#: Default per-request timeout in seconds.
DEFAULT_TIMEOUT = 60.0


def encode_query(params: list[tuple[str, str]]) -> str:
    """Encode query pairs for the wire, in the given order.

    Uses the same encoding as the canonical query string so the signed
    and the sent forms decode to identical values.
    """
    return "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in params)


@dataclass
class SignedRequest:
    """A request ready to dispatch.

    ``headers`` is exactly the header set that was signed. ``body`` is
    either buffered bytes or an ``ObjectStream`` for streaming uploads.
    """

    method: str
    url: str
    headers: dict[str, str]
    body: bytes | ObjectStream | None = None
    timeout: float | None = None


@dataclass
class S3Request:
    """Logical description of one S3 operation.

    Attributes:
        method: HTTP method.
        key: Object key, or ``""`` for bucket-level operations.
        query: Query parameters in wire order.
        headers: Operation-specific headers.
        body: Buffered bytes, or an upload source to stream.
        content_length: Declared length of a streamed body.
        content_type: Content type of the body.
        timeout: Per-call timeout overriding the bucket's.
    """

    method: str
    key: str = ""
    query: list[tuple[str, str]] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | UploadSource | None = None
    content_length: int | None = None
    content_type: str | None = None
    timeout: float | None = None

    @property
    def streaming(self) -> bool:
        """True if the body is streamed rather than buffered."""
        return self.body is not None and not isinstance(
            self.body, (bytes, bytearray, memoryview)
        )

    def path(self, base_path: str) -> str:
        """Encoded request path below an endpoint's base path."""
        key = self.key[1:] if self.key.startswith("/") else self.key
        return f"{base_path}/{uri_encode(key, encode_slash=False)}"

    def prepare(self, bucket: Bucket, now: datetime) -> SignedRequest:
        """Assemble the final request for ``bucket`` and sign it.

        Header order of precedence (later wins): host, bucket extra
        headers, operation headers, content headers. The assembled set
        is signed in full and sent unchanged.

        Args:
            bucket: Target bucket (addressing style, credentials).
            now: Signing time.

        Returns:
            The signed request.
        """
        endpoint = bucket.endpoint()
        path = self.path(endpoint.base_path)
        query = [*bucket.extra_query.items(), *self.query]

        headers: dict[str, str] = {"host": endpoint.host}
        headers.update(_lower(bucket.extra_headers))
        headers.update(_lower(self.headers))
        if self.content_type:
            headers["content-type"] = self.content_type

        body: bytes | ObjectStream | None
        if self.streaming:
            payload_hash = UNSIGNED_PAYLOAD
            if self.content_length is not None:
                headers["content-length"] = str(self.content_length)
            body = ObjectStream(
                self.body, expected_length=self.content_length
            )
        else:
            body = bytes(self.body) if self.body is not None else None
            if bucket.unsigned_payload:
                payload_hash = UNSIGNED_PAYLOAD
            else:
                payload_hash = hashlib.sha256(body or b"").hexdigest()

        signer = bucket.signer
        if signer is not None:
            headers = signer.sign_request(
                self.method, path, query, headers, payload_hash, now
            )

        url = f"{endpoint.scheme}://{endpoint.host}{path}"
        if query:
            url += "?" + encode_query(query)

        return SignedRequest(
            method=self.method,
            url=url,
            headers=headers,
            body=body,
            timeout=(
                self.timeout
                if self.timeout is not None
                else bucket.request_timeout
            ),
        )


def _lower(headers: Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): value for name, value in headers.items()}


class RequestExecutor:
    """Dispatches signed requests over an ``httpx.AsyncClient``.

    The executor owns the client it creates and closes it in
    ``aclose()``; a client passed in is left for the caller to close.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.verify = verify

    @property
    def client(self) -> httpx.AsyncClient:
        """The HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self.verify, timeout=self.timeout
            )
        return self._client

    async def aclose(self) -> None:
        """Close the client if this executor created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def open(self, signed: SignedRequest) -> httpx.Response:
        """Send a request and return the response with its body unread.

        A streamed upload body is closed once the request completes or
        fails, which cancels its producer task.

        Raises:
            RequestTimeout: The transport timed out.
            TransferError: The connection failed or the body could not be
                sent in full.
        """
        timeout = signed.timeout if signed.timeout is not None else self.timeout
        request = self.client.build_request(
            signed.method,
            signed.url,
            headers=signed.headers,
            content=signed.body,
            timeout=httpx.Timeout(timeout),
        )
        if "accept-encoding" not in _lower(signed.headers):
            # Object bodies are returned exactly as stored.
            request.headers["Accept-Encoding"] = "identity"
        logger.debug(
            "%s %s%s", signed.method, request.url.host, request.url.path
        )
        upload = signed.body if isinstance(signed.body, ObjectStream) else None
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise RequestTimeout(
                f"{signed.method} {request.url.path} timed out "
                f"after {timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise TransferError(
                f"{signed.method} {request.url.path} failed: {e}"
            ) from e
        finally:
            if upload is not None:
                await upload.aclose()

        logger.debug(
            "%s %s%s -> %d",
            signed.method,
            request.url.host,
            request.url.path,
            response.status_code,
        )
        return response

    async def execute(self, signed: SignedRequest) -> ResponseData:
        """Send a request and buffer the whole response body."""
        response = await self.open(signed)
        try:
            body = b"".join([chunk async for chunk in response.aiter_raw()])
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"Timed out reading response: {e}") from e
        except httpx.TransportError as e:
            raise TransferError(f"Failed reading response: {e}") from e
        finally:
            await response.aclose()
        return ResponseData(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
        )

    async def stream(
        self, signed: SignedRequest
    ) -> tuple[ResponseData, ObjectStream]:
        """Send a request and stream a successful response body.

        Returns:
            The response status and headers (with an empty body) and a
            stream over the body. The stream closes the response when it
            is exhausted, fails or is closed.

        Raises:
            ServiceError: Non-2xx response with a provider error body.
            HttpError: Non-2xx response without one.
        """
        response = await self.open(signed)
        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            raise_for_status(response.status_code, body)

        head = ResponseData(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=b"",
        )
        return head, ObjectStream(
            response.aiter_raw(), on_close=response.aclose
        )

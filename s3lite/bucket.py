# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Public bucket and object API.

A ``Bucket`` is the long-lived handle callers hold. Every operation builds
an ``S3Request``, signs it against the bucket's credentials and region,
dispatches it through the bucket's ``RequestExecutor`` and interprets the
response::

    async with Bucket("photos", "eu-central-1", credentials) as bucket:
        await bucket.put_object("cat.jpg", data)
        body = (await bucket.get_object("cat.jpg")).body

Credentials and region are immutable and shared by concurrent requests.
``addressing_style`` is a plain attribute; changing it while requests are
in flight is not synchronized.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from s3lite.credentials import Credentials
from s3lite.errors import ConfigError, ServiceError
from s3lite.logging import SecretFilter
from s3lite.post_policy import PostPolicy, PresignedPost
from s3lite.region import AddressingStyle, Endpoint, Region, resolve_endpoint
from s3lite.request import (
    DEFAULT_TIMEOUT,
    RequestExecutor,
    S3Request,
    SignedRequest,
    encode_query,
)
from s3lite.responses import (
    CorsRule,
    HeadObjectResult,
    ListBucketResult,
    ListBucketsResult,
    PutStreamResponse,
    ResponseData,
    Tag,
    build_create_bucket_xml,
    build_cors_xml,
    build_tagging_xml,
    parse_error,
    parse_list_bucket_result,
    parse_list_buckets,
    parse_location,
    parse_tagging,
    raise_for_status,
)
from s3lite.signing import (
    Signer,
    SigningAlgorithm,
    check_clock_skew,
    uri_encode,
    validate_expiry,
)
from s3lite.stream import ObjectStream, UploadSource


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ChunkWriter(Protocol):
    """Sink for downloaded chunks; ``write`` may be sync or async."""

    def write(self, data: bytes, /) -> object: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class BucketConfiguration:
    """Options for bucket creation.

    Attributes:
        acl: Canned ACL sent as ``x-amz-acl``.
        location_constraint: Explicit LocationConstraint. When None, AWS
            regions other than us-east-1 send their own name.
        object_lock_enabled: Enable S3 Object Lock on the new bucket.
    """

    acl: str = "private"
    location_constraint: str | None = None
    object_lock_enabled: bool = False

    def headers(self) -> dict[str, str]:
        """Request headers carrying these options."""
        headers = {"x-amz-acl": self.acl}
        if self.object_lock_enabled:
            headers["x-amz-bucket-object-lock-enabled"] = "true"
        return headers


@dataclass(frozen=True)
class CreateBucketResponse:
    """Outcome of bucket creation.

    ``bucket`` owns its own HTTP client unless one was passed in; close it
    with ``aclose()`` when done.
    """

    bucket: Bucket
    response_code: int
    response_text: str

    @property
    def success(self) -> bool:
        return 200 <= self.response_code < 300


def _range_header(start: int, end: int | None) -> str:
    if start < 0:
        raise ConfigError(f"Range start must be non-negative: {start}")
    if end is None:
        return f"bytes={start}-"
    if end < start:
        raise ConfigError(f"Range end {end} precedes start {start}")
    return f"bytes={start}-{end}"


class Bucket:
    """Handle for one bucket on one provider.

    Args:
        name: Bucket name (``""`` addresses the service endpoint).
        region: Resolved region, or a name for ``Region.from_name()``.
        credentials: Access credentials; anonymous requests go unsigned.
        addressing_style: Overrides the region's default style.
        extra_headers: Headers added to (and signed on) every request.
        extra_query: Query parameters added to every request.
        request_timeout: Default per-request timeout in seconds.
        listobjects_v2: Use ListObjectsV2 (False selects v1).
        signing_algorithm: SigV4 or SigV4A.
        unsigned_payload: Send UNSIGNED-PAYLOAD for buffered bodies
            instead of their SHA-256.
        clock: Returns the current time; used for every signature.
        client: HTTP client to send requests with.
        verify: TLS verification flag for a client created internally.
        executor: Request executor shared with other buckets.
    """

    def __init__(
        self,
        name: str,
        region: Region | str,
        credentials: Credentials,
        *,
        addressing_style: AddressingStyle | None = None,
        extra_headers: Mapping[str, str] | None = None,
        extra_query: Mapping[str, str] | None = None,
        request_timeout: float = DEFAULT_TIMEOUT,
        listobjects_v2: bool = True,
        signing_algorithm: SigningAlgorithm = SigningAlgorithm.SIGV4,
        unsigned_payload: bool = False,
        clock: Callable[[], datetime] | None = None,
        client: httpx.AsyncClient | None = None,
        verify: bool = True,
        executor: RequestExecutor | None = None,
    ) -> None:
        if isinstance(region, str):
            region = Region.from_name(region)
        self.name = name
        self.region = region
        self.credentials = credentials
        self.addressing_style = addressing_style or region.default_style
        self.extra_headers = dict(extra_headers or {})
        self.extra_query = dict(extra_query or {})
        self.request_timeout = request_timeout
        self.listobjects_v2 = listobjects_v2
        self.unsigned_payload = unsigned_payload
        self.clock = clock or _utcnow
        self.executor = executor or RequestExecutor(
            client, timeout=request_timeout, verify=verify
        )

        self._secrets_registered = False
        self._register_secrets()

        self.signer: Signer | None = None
        if not credentials.is_anonymous:
            self.signer = Signer(credentials, region.name, signing_algorithm)

    @classmethod
    def new_public(
        cls, name: str, region: Region | str, **options: Any
    ) -> Bucket:
        """Bucket that sends unsigned requests (public-read buckets)."""
        return cls(name, region, Credentials.anonymous(), **options)

    def __repr__(self) -> str:
        return (
            f"Bucket(name={self.name!r}, region={self.region.name!r}, "
            f"style={self.addressing_style.value})"
        )

    async def __aenter__(self) -> Bucket:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this bucket's executor created it.

        Also releases this handle's registration of its credentials with
        ``SecretFilter``; they stay redacted while any other open bucket
        uses them.
        """
        await self.executor.aclose()
        if self._secrets_registered:
            SecretFilter.unregister_secret(self.credentials.secret_key)
            SecretFilter.unregister_secret(self.credentials.session_token)
            self._secrets_registered = False

    def _register_secrets(self) -> None:
        SecretFilter.register_secret(self.credentials.secret_key)
        SecretFilter.register_secret(self.credentials.session_token)
        self._secrets_registered = True

    # -----------------------------------------------------------------------
    # Configuration copies
    # -----------------------------------------------------------------------

    def _copy(self) -> Bucket:
        clone = copy.copy(self)
        clone.extra_headers = dict(self.extra_headers)
        clone.extra_query = dict(self.extra_query)
        clone._register_secrets()
        return clone

    def with_path_style(self) -> Bucket:
        """Copy of this bucket using path-style addressing."""
        clone = self._copy()
        clone.addressing_style = AddressingStyle.PATH
        return clone

    def with_extra_headers(self, headers: Mapping[str, str]) -> Bucket:
        """Copy of this bucket sending ``headers`` on every request."""
        clone = self._copy()
        clone.extra_headers = dict(headers)
        return clone

    def with_extra_query(self, query: Mapping[str, str]) -> Bucket:
        """Copy of this bucket adding ``query`` to every request."""
        clone = self._copy()
        clone.extra_query = dict(query)
        return clone

    def with_request_timeout(self, timeout: float) -> Bucket:
        """Copy of this bucket with a different default timeout."""
        clone = self._copy()
        clone.request_timeout = timeout
        return clone

    def with_listobjects_v1(self) -> Bucket:
        """Copy of this bucket listing with ListObjects v1."""
        clone = self._copy()
        clone.listobjects_v2 = False
        return clone

    def endpoint(self) -> Endpoint:
        """Where requests for this bucket are addressed."""
        return resolve_endpoint(self.region, self.name, self.addressing_style)

    @property
    def url(self) -> str:
        """Base URL of the bucket."""
        return self.endpoint().url()

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    async def _dispatch(
        self, request: S3Request
    ) -> tuple[SignedRequest, ResponseData]:
        now = self.clock()
        signed = request.prepare(self, now)
        response = await self.executor.execute(signed)
        self._check_skew(response, now)
        return signed, response

    async def _send(self, request: S3Request) -> ResponseData:
        """Dispatch ``request`` and raise on a non-2xx response."""
        _, response = await self._dispatch(request)
        raise_for_status(response.status_code, response.body)
        return response

    async def _stream(
        self, request: S3Request
    ) -> tuple[ResponseData, ObjectStream]:
        now = self.clock()
        signed = request.prepare(self, now)
        head, stream = await self.executor.stream(signed)
        self._check_skew(head, now)
        return head, stream

    def _check_skew(self, response: ResponseData, now: datetime) -> None:
        server_date = response.headers.get("date")
        if not server_date:
            return
        is_skewed, drift_minutes = check_clock_skew(server_date, now)
        if is_skewed:
            logger.warning(
                "Local clock differs from %s by %d minutes; "
                "signatures may be rejected",
                self.region.host,
                drift_minutes,
            )

    async def _head_exists(self, request: S3Request) -> bool:
        """HEAD-style existence check: 404 means absent."""
        _, response = await self._dispatch(request)
        if response.status_code == 404:
            return False
        raise_for_status(response.status_code, response.body)
        return True

    # -----------------------------------------------------------------------
    # Bucket operations
    # -----------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        name: str,
        region: Region | str,
        credentials: Credentials,
        config: BucketConfiguration | None = None,
        **options: Any,
    ) -> CreateBucketResponse:
        """Create a bucket.

        Args:
            name: Bucket name.
            region: Target region.
            credentials: Access credentials.
            config: ACL, location and object lock options.
            **options: Further ``Bucket`` constructor options.

        Returns:
            The new bucket handle and the provider's response.
        """
        bucket = cls(name, region, credentials, **options)
        config = config or BucketConfiguration()

        location = config.location_constraint
        if (
            location is None
            and bucket.region.provider == "aws"
            and bucket.region.name != "us-east-1"
        ):
            location = bucket.region.name
        body = build_create_bucket_xml(location) if location else None

        try:
            response = await bucket._send(
                S3Request("PUT", headers=config.headers(), body=body)
            )
        except BaseException:
            await bucket.aclose()
            raise
        logger.info("Created bucket %s in %s", name, bucket.region.name)
        return CreateBucketResponse(
            bucket=bucket,
            response_code=response.status_code,
            response_text=response.text,
        )

    @classmethod
    async def create_with_path_style(
        cls,
        name: str,
        region: Region | str,
        credentials: Credentials,
        config: BucketConfiguration | None = None,
        **options: Any,
    ) -> CreateBucketResponse:
        """Create a bucket using path-style addressing."""
        options["addressing_style"] = AddressingStyle.PATH
        return await cls.create(name, region, credentials, config, **options)

    @classmethod
    async def list_buckets(
        cls,
        region: Region | str,
        credentials: Credentials,
        **options: Any,
    ) -> ListBucketsResult:
        """List all buckets owned by ``credentials``."""
        options["addressing_style"] = AddressingStyle.PATH
        service = cls("", region, credentials, **options)
        try:
            response = await service._send(S3Request("GET"))
        finally:
            await service.aclose()
        return parse_list_buckets(response.body)

    async def delete(self) -> int:
        """Delete this (empty) bucket; returns the HTTP status."""
        response = await self._send(S3Request("DELETE"))
        logger.info("Deleted bucket %s", self.name)
        return response.status_code

    async def put_bucket_cors(self, rules: Iterable[CorsRule]) -> ResponseData:
        """Replace the bucket's CORS configuration."""
        body = build_cors_xml(rules)
        md5 = base64.b64encode(hashlib.md5(body).digest()).decode()
        return await self._send(
            S3Request(
                "PUT",
                query=[("cors", "")],
                headers={"content-md5": md5},
                body=body,
            )
        )

    async def exists(self) -> bool:
        """True if the bucket exists (HeadBucket; 404 means absent)."""
        return await self._head_exists(S3Request("HEAD"))

    async def location(self) -> str:
        """Region the bucket lives in."""
        response = await self._send(S3Request("GET", query=[("location", "")]))
        return parse_location(response.body)

    async def list_page(
        self,
        prefix: str = "",
        delimiter: str | None = None,
        continuation_token: str | None = None,
        start_after: str | None = None,
        max_keys: int | None = None,
    ) -> ListBucketResult:
        """Fetch one page of a listing.

        With ListObjects v1 the single ``marker`` parameter serves as both
        start position and continuation token; the later of
        ``continuation_token`` and ``start_after`` is sent.
        """
        query: list[tuple[str, str]]
        if self.listobjects_v2:
            query = [("list-type", "2"), ("prefix", prefix)]
            if delimiter is not None:
                query.append(("delimiter", delimiter))
            if continuation_token is not None:
                query.append(("continuation-token", continuation_token))
            if start_after is not None:
                query.append(("start-after", start_after))
        else:
            query = [("prefix", prefix)]
            if delimiter is not None:
                query.append(("delimiter", delimiter))
            markers = [m for m in (continuation_token, start_after) if m]
            if markers:
                query.append(("marker", max(markers)))
        if max_keys is not None:
            query.append(("max-keys", str(max_keys)))

        response = await self._send(S3Request("GET", query=query))
        return parse_list_bucket_result(response.body)

    async def list(
        self, prefix: str = "", delimiter: str | None = None
    ) -> list[ListBucketResult]:
        """List every page under ``prefix``."""
        results: list[ListBucketResult] = []
        token: str | None = None
        while True:
            page = await self.list_page(prefix, delimiter, token)
            results.append(page)
            if not page.is_truncated:
                break
            if self.listobjects_v2:
                token = page.next_continuation_token
            else:
                token = page.next_marker
                if token is None and page.contents:
                    token = page.contents[-1].key
            if not token:
                break
        return results

    # -----------------------------------------------------------------------
    # Object operations
    # -----------------------------------------------------------------------

    async def head_object(self, key: str) -> HeadObjectResult:
        """Fetch object metadata."""
        response = await self._send(S3Request("HEAD", key))
        return HeadObjectResult.from_headers(response.headers)

    async def object_exists(self, key: str) -> bool:
        """True if ``key`` exists (404 means absent)."""
        return await self._head_exists(S3Request("HEAD", key))

    async def get_object(
        self, key: str, *, timeout: float | None = None
    ) -> ResponseData:
        """Download an object into memory."""
        return await self._send(S3Request("GET", key, timeout=timeout))

    async def get_object_range(
        self, key: str, start: int, end: int | None = None
    ) -> ResponseData:
        """Download bytes ``start..end`` (inclusive) of an object.

        ``end=None`` reads to the end of the object.
        """
        headers = {"range": _range_header(start, end)}
        return await self._send(S3Request("GET", key, headers=headers))

    async def get_object_stream(
        self, key: str, *, timeout: float | None = None
    ) -> ObjectStream:
        """Stream an object's body.

        The caller must exhaust the stream or close it (``aclose()`` or
        ``async with``) to release the connection.
        """
        _, stream = await self._stream(S3Request("GET", key, timeout=timeout))
        return stream

    async def get_object_torrent(self, key: str) -> ResponseData:
        """Download the BitTorrent file for an object (AWS only)."""
        return await self._send(S3Request("GET", key, query=[("torrent", "")]))

    async def get_object_to_writer(
        self, key: str, writer: ChunkWriter
    ) -> int:
        """Stream an object into ``writer``; returns the HTTP status."""
        return await self._drain(S3Request("GET", key), writer)

    async def get_object_range_to_writer(
        self,
        key: str,
        writer: ChunkWriter,
        start: int,
        end: int | None = None,
    ) -> int:
        """Stream a byte range of an object into ``writer``."""
        headers = {"range": _range_header(start, end)}
        return await self._drain(S3Request("GET", key, headers=headers), writer)

    async def _drain(self, request: S3Request, writer: ChunkWriter) -> int:
        head, stream = await self._stream(request)
        async with stream:
            async for chunk in stream:
                result = writer.write(chunk)
                if inspect.isawaitable(result):
                    await result
        return head.status_code

    async def get_object_tagging(self, key: str) -> list[Tag]:
        """Fetch an object's tags."""
        response = await self._send(
            S3Request("GET", key, query=[("tagging", "")])
        )
        return parse_tagging(response.body)

    async def put_object(self, key: str, content: bytes) -> ResponseData:
        """Upload a buffered object."""
        return await self.put_object_with_content_type(
            key, content, DEFAULT_CONTENT_TYPE
        )

    async def put_object_with_content_type(
        self, key: str, content: bytes, content_type: str
    ) -> ResponseData:
        """Upload a buffered object with an explicit content type."""
        return await self._send(
            S3Request(
                "PUT", key, body=bytes(content), content_type=content_type
            )
        )

    async def put_object_stream(
        self,
        key: str,
        source: UploadSource,
        *,
        content_length: int | None = None,
        timeout: float | None = None,
    ) -> PutStreamResponse:
        """Upload an object from a chunk source without buffering it."""
        return await self.put_object_stream_with_content_type(
            key,
            source,
            DEFAULT_CONTENT_TYPE,
            content_length=content_length,
            timeout=timeout,
        )

    async def put_object_stream_with_content_type(
        self,
        key: str,
        source: UploadSource,
        content_type: str,
        *,
        content_length: int | None = None,
        timeout: float | None = None,
    ) -> PutStreamResponse:
        """Upload an object from a chunk source with a content type.

        The body is sent with UNSIGNED-PAYLOAD as it is produced. When
        ``content_length`` is given it is sent as Content-Length and the
        bytes actually produced must match it.

        Args:
            key: Object key.
            source: Bytes, a sync/async iterable of chunks, or an object
                with a sync/async ``read(n)``.
            content_type: Content type of the object.
            content_length: Declared body length. Required by providers
                that reject chunked uploads.
            timeout: Per-call timeout.

        Returns:
            Status code and number of bytes uploaded.

        Raises:
            ConfigError: The provider needs a length and none was given.
            TransferError: The source produced a different byte count or
                failed.
        """
        if content_length is None and isinstance(
            source, (bytes, bytearray, memoryview)
        ):
            content_length = memoryview(source).nbytes
        if content_length is None and self.region.requires_content_length:
            raise ConfigError(
                f"{self.region.provider} requires content_length "
                f"for streaming uploads"
            )
        if content_length is not None and content_length < 0:
            raise ConfigError(f"Invalid content_length: {content_length}")

        signed, response = await self._dispatch(
            S3Request(
                "PUT",
                key,
                body=source,
                content_length=content_length,
                content_type=content_type,
                timeout=timeout,
            )
        )
        raise_for_status(response.status_code, response.body)
        if isinstance(signed.body, ObjectStream):
            uploaded = signed.body.bytes_transferred
        else:
            uploaded = len(signed.body or b"")
        return PutStreamResponse(
            status_code=response.status_code, uploaded_bytes=uploaded
        )

    async def put_object_tagging(
        self, key: str, tags: Iterable[Tag] | Mapping[str, str]
    ) -> ResponseData:
        """Replace an object's tags."""
        body = build_tagging_xml(tags)
        md5 = base64.b64encode(hashlib.md5(body).digest()).decode()
        return await self._send(
            S3Request(
                "PUT",
                key,
                query=[("tagging", "")],
                headers={"content-md5": md5},
                body=body,
            )
        )

    async def delete_object_tagging(self, key: str) -> ResponseData:
        """Remove all tags from an object."""
        return await self._send(
            S3Request("DELETE", key, query=[("tagging", "")])
        )

    async def delete_object(self, key: str) -> ResponseData:
        """Delete an object."""
        return await self._send(S3Request("DELETE", key))

    async def copy_object_internal(self, from_key: str, to_key: str) -> int:
        """Server-side copy within this bucket; returns the HTTP status.

        CopyObject may report failure in a 200 response body; such errors
        are raised like any other provider error.
        """
        source = from_key[1:] if from_key.startswith("/") else from_key
        copy_source = uri_encode(f"{self.name}/{source}", encode_slash=False)
        response = await self._send(
            S3Request("PUT", to_key, headers={"x-amz-copy-source": copy_source})
        )
        error = parse_error(response.body)
        if error is not None:
            code, message, request_id = error
            raise ServiceError(code, message, request_id, response.status_code)
        return response.status_code

    # -----------------------------------------------------------------------
    # Presigning
    # -----------------------------------------------------------------------

    def _require_signer(self) -> Signer:
        if self.signer is None:
            raise ConfigError("Presigning requires non-anonymous credentials")
        return self.signer

    def _presign(
        self,
        method: str,
        key: str,
        expiry_secs: int,
        *,
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        validate_expiry(expiry_secs, self.region.max_presign_expiry)
        signer = self._require_signer()
        endpoint = self.endpoint()
        path = S3Request(method, key).path(endpoint.base_path)
        params = signer.presign_url(
            method,
            path,
            endpoint.host,
            expiry_secs,
            self.clock(),
            query=[*self.extra_query.items(), *(query or {}).items()],
            headers=headers,
        )
        query_string = encode_query(params)
        return f"{endpoint.scheme}://{endpoint.host}{path}?{query_string}"

    def presign_get(
        self,
        key: str,
        expiry_secs: int,
        custom_queries: Mapping[str, str] | None = None,
    ) -> str:
        """Presigned GET URL for ``key``.

        Args:
            key: Object key.
            expiry_secs: URL lifetime in seconds.
            custom_queries: Extra signed query parameters (for example
                ``response-content-disposition``).

        Raises:
            ConfigError: If the lifetime exceeds the provider maximum.
        """
        return self._presign("GET", key, expiry_secs, query=custom_queries)

    def presign_put(
        self,
        key: str,
        expiry_secs: int,
        custom_headers: Mapping[str, str] | None = None,
    ) -> str:
        """Presigned PUT URL for ``key``.

        ``custom_headers`` are signed; the uploader must send them with
        exactly these values.
        """
        return self._presign("PUT", key, expiry_secs, headers=custom_headers)

    def presign_delete(self, key: str, expiry_secs: int) -> str:
        """Presigned DELETE URL for ``key``."""
        return self._presign("DELETE", key, expiry_secs)

    def presign_post(self, policy: PostPolicy) -> PresignedPost:
        """Sign a POST policy for browser form uploads."""
        signer = self._require_signer()
        return policy.sign(
            self.name,
            self.endpoint().url("/"),
            signer,
            self.clock(),
            self.region.max_presign_expiry,
        )

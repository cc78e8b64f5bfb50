# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Response interpretation and typed result values.

Maps HTTP status plus XML error bodies onto the error taxonomy in
``s3lite.errors`` and parses the XML documents returned by metadata
operations. Parsing is namespace-agnostic: elements are matched by local
name so providers that omit or vary the S3 namespace parse the same way.
"""

from __future__ import annotations

import urllib.parse
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from xml.sax.saxutils import escape as xml_escape

from s3lite.errors import ConfigError, DecodeError, HttpError, ServiceError


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResponseData:
    """A fully buffered response."""

    status_code: int
    headers: dict[str, str]
    body: bytes

    @property
    def text(self) -> str:
        """Body decoded as UTF-8 (invalid bytes replaced)."""
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Tag:
    """One object tag."""

    key: str
    value: str


@dataclass(frozen=True)
class CorsRule:
    """One rule of a bucket CORS configuration."""

    allowed_methods: list[str]
    allowed_origins: list[str]
    allowed_headers: list[str] = field(default_factory=list)
    expose_headers: list[str] = field(default_factory=list)
    id: str | None = None
    max_age_seconds: int | None = None


@dataclass(frozen=True)
class BucketInfo:
    """Entry of a ListBuckets response."""

    name: str
    creation_date: str | None = None


@dataclass(frozen=True)
class ListBucketsResult:
    """Parsed ListAllMyBucketsResult document."""

    buckets: list[BucketInfo]
    owner_id: str | None = None
    owner_display_name: str | None = None

    @property
    def names(self) -> list[str]:
        """Bucket names in response order."""
        return [bucket.name for bucket in self.buckets]


@dataclass(frozen=True)
class ObjectInfo:
    """Entry of a ListObjects ``Contents`` element."""

    key: str
    size: int
    last_modified: str | None = None
    e_tag: str | None = None
    storage_class: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True)
class ListBucketResult:
    """One page of a ListObjects (v1) or ListObjectsV2 response."""

    name: str
    is_truncated: bool
    contents: list[ObjectInfo] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    prefix: str | None = None
    delimiter: str | None = None
    max_keys: int | None = None
    key_count: int | None = None
    continuation_token: str | None = None
    next_continuation_token: str | None = None
    start_after: str | None = None
    marker: str | None = None
    next_marker: str | None = None


@dataclass(frozen=True)
class PutStreamResponse:
    """Outcome of a streaming upload."""

    status_code: int
    uploaded_bytes: int


@dataclass(frozen=True)
class HeadObjectResult:
    """Object metadata returned by HeadObject."""

    content_length: int | None = None
    content_type: str | None = None
    e_tag: str | None = None
    last_modified: str | None = None
    accept_ranges: str | None = None
    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    expires: str | None = None
    storage_class: str | None = None
    version_id: str | None = None
    server_side_encryption: str | None = None
    delete_marker: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> HeadObjectResult:
        """Build from response headers (any key casing)."""
        lower = {name.lower(): value for name, value in headers.items()}
        content_length = None
        if "content-length" in lower:
            try:
                content_length = int(lower["content-length"])
            except ValueError as exc:
                raise DecodeError(
                    f"Invalid Content-Length: {lower['content-length']!r}"
                ) from exc
        metadata = {
            name[len("x-amz-meta-") :]: value
            for name, value in lower.items()
            if name.startswith("x-amz-meta-")
        }
        return cls(
            content_length=content_length,
            content_type=lower.get("content-type"),
            e_tag=lower.get("etag"),
            last_modified=lower.get("last-modified"),
            accept_ranges=lower.get("accept-ranges"),
            cache_control=lower.get("cache-control"),
            content_disposition=lower.get("content-disposition"),
            content_encoding=lower.get("content-encoding"),
            content_language=lower.get("content-language"),
            expires=lower.get("expires"),
            storage_class=lower.get("x-amz-storage-class"),
            version_id=lower.get("x-amz-version-id"),
            server_side_encryption=lower.get("x-amz-server-side-encryption"),
            delete_marker=lower.get("x-amz-delete-marker") == "true",
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# XML helpers
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    """Strip a ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _children(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem if _local(child.tag) == name]


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for child in elem:
        if _local(child.tag) == name:
            return child
    return None


def _text(elem: ET.Element, name: str) -> str | None:
    child = _child(elem, name)
    if child is None:
        return None
    return child.text or ""


def _required(elem: ET.Element, name: str) -> str:
    value = _text(elem, name)
    if value is None:
        raise DecodeError(
            f"Missing required element <{name}> in <{_local(elem.tag)}>"
        )
    return value


def _int(value: str | None, name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise DecodeError(f"Invalid integer in <{name}>: {value!r}") from exc


def _parse_document(body: bytes, root_name: str) -> ET.Element:
    """Parse ``body`` and check its root element name."""
    if not body.strip():
        raise DecodeError(f"Empty body where <{root_name}> was expected")
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise DecodeError(f"Malformed XML: {exc}") from exc
    if _local(root.tag) != root_name:
        raise DecodeError(
            f"Expected <{root_name}> document, got <{_local(root.tag)}>"
        )
    return root


# ---------------------------------------------------------------------------
# Status classification
# ---------------------------------------------------------------------------


def parse_error(body: bytes) -> tuple[str, str, str | None] | None:
    """Extract (code, message, request_id) from a provider error body.

    Returns:
        The error fields, or None if the body is not an ``<Error>``
        document with a ``<Code>``.
    """
    if not body or not body.strip():
        return None
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return None
    if _local(root.tag) != "Error":
        return None
    code = _text(root, "Code")
    if not code:
        return None
    return code, _text(root, "Message") or "", _text(root, "RequestId")


def raise_for_status(status: int, body: bytes = b"") -> None:
    """Raise the error corresponding to a non-2xx response.

    Args:
        status: HTTP status code.
        body: Response body.

    Raises:
        ServiceError: Non-2xx with a provider ``<Error>`` document.
        HttpError: Non-2xx with an absent or unparseable body.
    """
    if 200 <= status < 300:
        return
    error = parse_error(body)
    if error is None:
        raise HttpError(status, body)
    code, message, request_id = error
    raise ServiceError(code, message, request_id, status)


# ---------------------------------------------------------------------------
# Document parsers
# ---------------------------------------------------------------------------


def parse_list_buckets(body: bytes) -> ListBucketsResult:
    """Parse a ListAllMyBucketsResult document."""
    root = _parse_document(body, "ListAllMyBucketsResult")
    buckets: list[BucketInfo] = []
    container = _child(root, "Buckets")
    if container is not None:
        for entry in _children(container, "Bucket"):
            buckets.append(
                BucketInfo(
                    name=_required(entry, "Name"),
                    creation_date=_text(entry, "CreationDate"),
                )
            )
    owner = _child(root, "Owner")
    return ListBucketsResult(
        buckets=buckets,
        owner_id=_text(owner, "ID") if owner is not None else None,
        owner_display_name=(
            _text(owner, "DisplayName") if owner is not None else None
        ),
    )


def parse_list_bucket_result(body: bytes) -> ListBucketResult:
    """Parse a ListBucketResult document (ListObjects v1 or v2).

    Keys and prefixes are URL-decoded when the response declares
    ``EncodingType=url``.
    """
    root = _parse_document(body, "ListBucketResult")
    url_encoded = _text(root, "EncodingType") == "url"

    def decode(value: str | None) -> str | None:
        if value is None or not url_encoded:
            return value
        return urllib.parse.unquote(value)

    contents: list[ObjectInfo] = []
    for entry in _children(root, "Contents"):
        owner = _child(entry, "Owner")
        contents.append(
            ObjectInfo(
                key=decode(_required(entry, "Key")) or "",
                size=_int(_required(entry, "Size"), "Size") or 0,
                last_modified=_text(entry, "LastModified"),
                e_tag=_text(entry, "ETag"),
                storage_class=_text(entry, "StorageClass"),
                owner_id=_text(owner, "ID") if owner is not None else None,
            )
        )

    common_prefixes = [
        decode(_required(entry, "Prefix")) or ""
        for entry in _children(root, "CommonPrefixes")
    ]

    return ListBucketResult(
        name=_required(root, "Name"),
        is_truncated=_text(root, "IsTruncated") == "true",
        contents=contents,
        common_prefixes=common_prefixes,
        prefix=decode(_text(root, "Prefix")),
        delimiter=decode(_text(root, "Delimiter")),
        max_keys=_int(_text(root, "MaxKeys"), "MaxKeys"),
        key_count=_int(_text(root, "KeyCount"), "KeyCount"),
        continuation_token=_text(root, "ContinuationToken"),
        next_continuation_token=_text(root, "NextContinuationToken"),
        start_after=decode(_text(root, "StartAfter")),
        marker=decode(_text(root, "Marker")),
        next_marker=decode(_text(root, "NextMarker")),
    )


def parse_tagging(body: bytes) -> list[Tag]:
    """Parse a Tagging document into tags in document order."""
    root = _parse_document(body, "Tagging")
    tag_set = _child(root, "TagSet")
    if tag_set is None:
        raise DecodeError("Missing required element <TagSet> in <Tagging>")
    return [
        Tag(key=_required(entry, "Key"), value=_text(entry, "Value") or "")
        for entry in _children(tag_set, "Tag")
    ]


def parse_location(body: bytes) -> str:
    """Parse a LocationConstraint document into a region name.

    An empty constraint means ``us-east-1``; the legacy ``EU`` value
    means ``eu-west-1``.
    """
    root = _parse_document(body, "LocationConstraint")
    location = (root.text or "").strip()
    if not location:
        return "us-east-1"
    if location == "EU":
        return "eu-west-1"
    return location


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------


def build_tagging_xml(tags: Iterable[Tag] | Mapping[str, str]) -> bytes:
    """Build a Tagging request document."""
    if isinstance(tags, Mapping):
        tags = [Tag(key, value) for key, value in tags.items()]
    entries = "".join(
        f"<Tag><Key>{xml_escape(tag.key)}</Key>"
        f"<Value>{xml_escape(tag.value)}</Value></Tag>"
        for tag in tags
    )
    return f"<Tagging><TagSet>{entries}</TagSet></Tagging>".encode()


def build_create_bucket_xml(location: str) -> bytes:
    """Build a CreateBucketConfiguration request document."""
    return (
        "<CreateBucketConfiguration>"
        f"<LocationConstraint>{xml_escape(location)}</LocationConstraint>"
        "</CreateBucketConfiguration>"
    ).encode()


def _elements(name: str, values: Iterable[str]) -> str:
    return "".join(f"<{name}>{xml_escape(value)}</{name}>" for value in values)


def build_cors_xml(rules: Iterable[CorsRule]) -> bytes:
    """Build a CORSConfiguration request document."""
    rule_list = list(rules)
    if not rule_list:
        raise ConfigError("A CORS configuration needs at least one rule")
    parts = []
    for rule in rule_list:
        if not rule.allowed_methods or not rule.allowed_origins:
            raise ConfigError(
                "CORS rules need at least one allowed method and origin"
            )
        inner = ""
        if rule.id is not None:
            inner += f"<ID>{xml_escape(rule.id)}</ID>"
        inner += _elements("AllowedHeader", rule.allowed_headers)
        inner += _elements("AllowedMethod", rule.allowed_methods)
        inner += _elements("AllowedOrigin", rule.allowed_origins)
        inner += _elements("ExposeHeader", rule.expose_headers)
        if rule.max_age_seconds is not None:
            inner += f"<MaxAgeSeconds>{rule.max_age_seconds}</MaxAgeSeconds>"
        parts.append(f"<CORSRule>{inner}</CORSRule>")
    return f"<CORSConfiguration>{''.join(parts)}</CORSConfiguration>".encode()

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Region and endpoint resolution.

A ``Region`` is a closed configuration value describing one provider
location: the signing region name, the endpoint host, the scheme, the
default addressing style and the provider limits. Resolving a region is a
pure table lookup; provider differences are data, not subclasses.

Addressing styles::

    subdomain   https://{bucket}.{host}/{key}
    path        https://{host}/{bucket}/{key}

Custom endpoints may embed a bucket name, either as a path component
(``http://minio:9000/photos``) or as the leading host label
(``https://photos.s3.example.com``). Endpoint resolution never applies the
bucket name a second time in those cases.
"""

from __future__ import annotations

import enum
import re
import urllib.parse
from dataclasses import dataclass

from s3lite.errors import ConfigError


#: Maximum presigned URL lifetime accepted by SigV4 (7 days).
MAX_PRESIGN_EXPIRY = 604800

_AWS_REGIONS = frozenset(
    {
        "us-east-1",
        "us-east-2",
        "us-west-1",
        "us-west-2",
        "us-gov-east-1",
        "us-gov-west-1",
        "ca-central-1",
        "ca-west-1",
        "af-south-1",
        "ap-east-1",
        "ap-south-1",
        "ap-south-2",
        "ap-northeast-1",
        "ap-northeast-2",
        "ap-northeast-3",
        "ap-southeast-1",
        "ap-southeast-2",
        "ap-southeast-3",
        "ap-southeast-4",
        "cn-north-1",
        "cn-northwest-1",
        "eu-central-1",
        "eu-central-2",
        "eu-north-1",
        "eu-south-1",
        "eu-south-2",
        "eu-west-1",
        "eu-west-2",
        "eu-west-3",
        "il-central-1",
        "me-central-1",
        "me-south-1",
        "sa-east-1",
    }
)

_YANDEX_NAMES = frozenset({"yandex", "ru-central1"})
_GCS_NAMES = frozenset({"gcs", "google"})

# RFC 1123 label rules as applied by S3 to virtual-hosted bucket names.
_DNS_BUCKET_RE = re.compile(r"^[a-z0-9]([a-z0-9.-]{0,61}[a-z0-9])?$")


class AddressingStyle(enum.Enum):
    """Where the bucket name goes in the request URL."""

    SUBDOMAIN = "subdomain"
    PATH = "path"


@dataclass(frozen=True)
class Region:
    """A provider location resolved to an endpoint.

    Attributes:
        name: Region name used in the signing scope.
        host: Endpoint host, with ``:port`` when non-default.
        scheme: ``https`` or ``http``.
        provider: Provider identifier (``aws``, ``wasabi``, ``r2``, ...).
        default_style: Addressing style buckets use unless overridden.
        endpoint_bucket: Bucket name embedded in a custom endpoint path.
        max_presign_expiry: Longest accepted presign lifetime (seconds).
        requires_content_length: Whether streaming uploads must declare
            their length up front.
    """

    name: str
    host: str
    scheme: str = "https"
    provider: str = "aws"
    default_style: AddressingStyle = AddressingStyle.SUBDOMAIN
    endpoint_bucket: str | None = None
    max_presign_expiry: int = MAX_PRESIGN_EXPIRY
    requires_content_length: bool = True

    @classmethod
    def from_name(cls, name: str) -> Region:
        """Resolve a region or provider identifier.

        Recognized forms:

        - AWS region names (``eu-central-1``)
        - ``wa-<region>`` for Wasabi
        - ``do-<location>`` for DigitalOcean Spaces
        - ``b2-<region>`` for Backblaze B2
        - ``yandex`` / ``ru-central1`` for Yandex Object Storage
        - ``gcs`` for Google Cloud Storage interoperability
        - ``http://...`` / ``https://...`` for a custom endpoint

        Args:
            name: Identifier to resolve.

        Returns:
            The resolved region.

        Raises:
            ConfigError: If the identifier is not recognized.
        """
        name = name.strip()
        if "://" in name:
            return cls.custom("us-east-1", name)
        if name in _AWS_REGIONS:
            if name == "us-east-1":
                return cls(name=name, host="s3.amazonaws.com")
            suffix = "amazonaws.com"
            if name.startswith("cn-"):
                suffix = "amazonaws.com.cn"
            return cls(name=name, host=f"s3.{name}.{suffix}")
        if name.startswith("wa-"):
            location = name[3:]
            return cls(
                name=location,
                host=f"s3.{location}.wasabisys.com",
                provider="wasabi",
            )
        if name.startswith("do-"):
            location = name[3:]
            return cls(
                name=location,
                host=f"{location}.digitaloceanspaces.com",
                provider="digitalocean",
            )
        if name.startswith("b2-"):
            location = name[3:]
            return cls(
                name=location,
                host=f"s3.{location}.backblazeb2.com",
                provider="backblaze",
            )
        if name in _YANDEX_NAMES:
            return cls(
                name="ru-central1",
                host="storage.yandexcloud.net",
                provider="yandex",
            )
        if name in _GCS_NAMES:
            return cls(
                name="auto",
                host="storage.googleapis.com",
                provider="gcs",
                default_style=AddressingStyle.PATH,
            )
        raise ConfigError(
            f"Unknown region {name!r}; supply an explicit endpoint "
            f"with Region.custom()"
        )

    @classmethod
    def custom(cls, name: str, endpoint: str) -> Region:
        """Build a region for an explicit endpoint URL.

        The scheme defaults to https when the endpoint has none. A path
        component is kept as an embedded bucket name and switches the
        default addressing style to path. Custom endpoints (MinIO and
        friends) do not require a declared content length for streaming
        uploads.

        Args:
            name: Region name used in the signing scope.
            endpoint: Endpoint URL or bare host.

        Returns:
            The resolved region.

        Raises:
            ConfigError: If the endpoint has no usable host.
        """
        raw = endpoint.strip()
        if "://" not in raw:
            raw = "https://" + raw
        parts = urllib.parse.urlsplit(raw)
        scheme = parts.scheme.lower()
        if scheme not in ("http", "https"):
            raise ConfigError(f"Unsupported endpoint scheme: {endpoint!r}")
        host = parts.netloc
        if not host or any(c.isspace() for c in host) or "@" in host:
            raise ConfigError(f"Invalid endpoint host: {endpoint!r}")
        host = _strip_default_port(host.lower(), scheme)
        path = parts.path.strip("/")
        if "/" in path:
            raise ConfigError(
                f"Endpoint path may only name a single bucket: {endpoint!r}"
            )
        return cls(
            name=name,
            host=host,
            scheme=scheme,
            provider="custom",
            default_style=(
                AddressingStyle.PATH if path else AddressingStyle.SUBDOMAIN
            ),
            endpoint_bucket=path or None,
            requires_content_length=False,
        )

    @classmethod
    def r2(cls, account_id: str, *, jurisdiction: str | None = None) -> Region:
        """Cloudflare R2 endpoint for an account.

        Args:
            account_id: Cloudflare account ID.
            jurisdiction: Optional jurisdiction label (``eu``, ``fedramp``).
        """
        if not account_id:
            raise ConfigError("R2 requires an account ID")
        host = f"{account_id}.r2.cloudflarestorage.com"
        if jurisdiction:
            host = f"{account_id}.{jurisdiction}.r2.cloudflarestorage.com"
        return cls(name="auto", host=host, provider="r2")

    @property
    def endpoint(self) -> str:
        """Endpoint URL as configured (including an embedded bucket)."""
        url = f"{self.scheme}://{self.host}"
        if self.endpoint_bucket:
            url += f"/{self.endpoint_bucket}"
        return url


@dataclass(frozen=True)
class Endpoint:
    """Host and path prefix for requests against one bucket.

    Attributes:
        scheme: URL scheme.
        host: Value for the ``Host`` header.
        base_path: Path prefix (``""`` or ``/bucket``) preceding the key.
    """

    scheme: str
    host: str
    base_path: str

    def url(self, path: str = "") -> str:
        """Join the endpoint with an already-encoded path."""
        return f"{self.scheme}://{self.host}{self.base_path}{path}"


def resolve_endpoint(
    region: Region, bucket: str, style: AddressingStyle
) -> Endpoint:
    """Resolve where requests for ``bucket`` are addressed.

    An empty bucket name (service-level calls such as ListBuckets) always
    addresses the bare endpoint.

    Args:
        region: Resolved region.
        bucket: Bucket name.
        style: Addressing style to apply.

    Returns:
        The endpoint for the bucket.

    Raises:
        ConfigError: If the combination cannot produce a well-formed host.
    """
    if not bucket:
        return Endpoint(region.scheme, region.host, "")

    if style is AddressingStyle.PATH:
        base = ""
        if region.endpoint_bucket:
            base = f"/{region.endpoint_bucket}"
        if region.endpoint_bucket != bucket:
            base += f"/{bucket}"
        return Endpoint(region.scheme, region.host, base)

    if region.endpoint_bucket:
        raise ConfigError(
            f"Endpoint {region.endpoint!r} embeds a bucket path; "
            f"use path-style addressing"
        )
    if region.host.startswith(f"{bucket}."):
        return Endpoint(region.scheme, region.host, "")
    if not _DNS_BUCKET_RE.match(bucket) or ".." in bucket:
        raise ConfigError(
            f"Bucket name {bucket!r} is not a valid DNS label; "
            f"use path-style addressing"
        )
    return Endpoint(region.scheme, f"{bucket}.{region.host}", "")


def _strip_default_port(host: str, scheme: str) -> str:
    """Drop ``:443`` / ``:80`` so the Host header matches the wire."""
    default = ":443" if scheme == "https" else ":80"
    if host.endswith(default):
        return host[: -len(default)]
    return host

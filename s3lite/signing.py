# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS SigV4/SigV4A request signing for S3.

Provides the canonical request builder and the signer used by every
bucket operation. Supports:

- SigV4 (HMAC-SHA256) header signing
- SigV4 presigned URLs (query-string signing)
- SigV4A (ECDSA P-256) for multi-region access points
- Presigned URL expiry evaluation

Signing is pure: given credentials, region, timestamp and request shape,
the output is fully determined (SigV4A signatures are randomized by
ECDSA, but verify deterministically).
"""

from __future__ import annotations

import email.utils
import enum
import hashlib
import hmac
import re
import urllib.parse
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cryptography.hazmat.primitives.asymmetric.ec import (
    ECDSA,
    SECP256R1,
    EllipticCurvePrivateKey,
    derive_private_key,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
)
from cryptography.hazmat.primitives.hashes import SHA256

from s3lite.credentials import Credentials
from s3lite.errors import ConfigError


# P-256 curve order for SigV4A key derivation
_P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

SERVICE = "s3"
TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Authorization header regex
_AUTH_HEADER_RE = re.compile(
    r"(?P<algorithm>AWS4-HMAC-SHA256|AWS4-ECDSA-P256-SHA256)\s+"
    r"Credential=(?P<key_id>[^/]+)/(?P<scope>[^,]+),\s*"
    r"SignedHeaders=(?P<signed_headers>[^,]+),\s*"
    r"Signature=(?P<signature>[0-9a-f]+)"
)

#: Query value accepted by canonical_query_string.
Query = str | Mapping[str, str] | Iterable[tuple[str, str]]


class SigningAlgorithm(enum.Enum):
    """Signature algorithm identifiers."""

    SIGV4 = "AWS4-HMAC-SHA256"
    SIGV4A = "AWS4-ECDSA-P256-SHA256"


# ---------------------------------------------------------------------------
# Parsed authorization header
# ---------------------------------------------------------------------------


class ParsedAuth:
    """Parsed AWS Authorization header."""

    __slots__ = (
        "algorithm",
        "key_id",
        "scope",
        "signed_headers",
        "signature",
    )

    def __init__(
        self,
        algorithm: str,
        key_id: str,
        scope: str,
        signed_headers: str,
        signature: str,
    ) -> None:
        self.algorithm = algorithm
        self.key_id = key_id
        self.scope = scope
        self.signed_headers = signed_headers
        self.signature = signature

    @property
    def scope_parts(self) -> list[str]:
        """Split scope into parts.

        Returns date/region/service/aws4_request for SigV4 or
        date/service/aws4_request for SigV4A.
        """
        return self.scope.split("/")

    @property
    def date(self) -> str:
        """Date from credential scope (YYYYMMDD)."""
        return self.scope_parts[0]

    @property
    def region(self) -> str:
        """Region from credential scope (empty for SigV4A)."""
        parts = self.scope_parts
        return parts[1] if len(parts) >= 4 else ""

    @property
    def is_sigv4a(self) -> bool:
        """True if this is a SigV4A (ECDSA) signature."""
        return self.algorithm == SigningAlgorithm.SIGV4A.value


def parse_auth_header(auth_value: str) -> ParsedAuth | None:
    """Parse an AWS Authorization header.

    Args:
        auth_value: Full Authorization header value.

    Returns:
        ParsedAuth if valid AWS auth, None otherwise.
    """
    m = _AUTH_HEADER_RE.match(auth_value)
    if not m:
        return None
    return ParsedAuth(
        algorithm=m.group("algorithm"),
        key_id=m.group("key_id"),
        scope=m.group("scope"),
        signed_headers=m.group("signed_headers"),
        signature=m.group("signature"),
    )


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's specific rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - Every other UTF-8 byte is percent-encoded as %XX (uppercase hex)
    - Space becomes %20, never +
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        ch = chr(byte)
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        elif ch == "/" and not encode_slash:
            result.append("/")
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build canonical URI from a request path.

    S3 single-encodes: any existing percent-encoding is decoded first and
    the result is encoded once. Double slashes and ``.``/``..`` segments
    are preserved.

    Args:
        path: Request path, possibly already percent-encoded.

    Returns:
        URI-encoded canonical path.
    """
    if not path:
        return "/"

    # Strip query string if present
    path = path.split("?")[0]
    if not path.startswith("/"):
        path = "/" + path

    return uri_encode(urllib.parse.unquote(path), encode_slash=False)


def _query_pairs(query: Query) -> list[tuple[str, str]]:
    if isinstance(query, str):
        return urllib.parse.parse_qsl(query, keep_blank_values=True)
    if isinstance(query, Mapping):
        return [(str(k), str(v)) for k, v in query.items()]
    return [(str(k), str(v)) for k, v in query]


def canonical_query_string(
    query: Query, *, exclude_signature: bool = False
) -> str:
    """Build canonical query string.

    Args:
        query: Raw query string (without leading ?), a mapping, or a
            sequence of (name, value) pairs.
        exclude_signature: If True, exclude X-Amz-Signature parameter
            (for presigned URL verification).

    Returns:
        Canonical query string (sorted, encoded).
    """
    params = _query_pairs(query)
    if not params:
        return ""

    if exclude_signature:
        params = [(k, v) for k, v in params if k != "X-Amz-Signature"]

    # URI-encode names and values, sort by encoded name then value
    encoded = [(uri_encode(k), uri_encode(v)) for k, v in params]
    encoded.sort()

    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers_string(
    headers: Mapping[str, str], signed_headers_list: list[str]
) -> str:
    """Build canonical headers string.

    Args:
        headers: Request headers (name -> value).
        signed_headers_list: List of signed header names (lowercase).

    Returns:
        Canonical headers string (each line: "name:value" + newline).
    """
    lines: list[str] = []
    # Build case-insensitive lookup
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_headers[name.lower()] = value

    for name in sorted(signed_headers_list):
        value = lower_headers.get(name, "")
        # Trim leading/trailing whitespace, collapse sequential spaces
        trimmed = " ".join(value.split())
        lines.append(f"{name}:{trimmed}\n")

    return "".join(lines)


def signed_headers_for(headers: Mapping[str, str]) -> str:
    """Semicolon-joined, sorted, lower-cased names of all headers."""
    return ";".join(sorted({name.lower() for name in headers}))


@dataclass(frozen=True)
class CanonicalRequest:
    """The canonical form of a request, as both sides compute it."""

    method: str
    canonical_uri: str
    canonical_query_string: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    def render(self) -> str:
        """Canonical request string."""
        return "\n".join(
            [
                self.method,
                self.canonical_uri,
                self.canonical_query_string,
                self.canonical_headers,
                self.signed_headers,
                self.payload_hash,
            ]
        )

    def digest(self) -> str:
        """Hex SHA-256 of the canonical request string."""
        return hashlib.sha256(self.render().encode("utf-8")).hexdigest()


def build_canonical_request(
    method: str,
    path: str,
    query: Query,
    headers: Mapping[str, str],
    payload_hash: str,
    *,
    signed_headers: str | None = None,
    exclude_signature: bool = False,
) -> CanonicalRequest:
    """Build the canonical request.

    Args:
        method: HTTP method.
        path: Request path.
        query: Query string or (name, value) pairs.
        headers: Request headers.
        payload_hash: Payload hash (hex SHA-256 or UNSIGNED-PAYLOAD).
        signed_headers: Semicolon-separated signed header names. Defaults
            to every header in ``headers``.
        exclude_signature: If True, exclude X-Amz-Signature from query.

    Returns:
        The canonical request.
    """
    if signed_headers is None:
        signed_headers = signed_headers_for(headers)
    signed_list = signed_headers.split(";")

    return CanonicalRequest(
        method=method.upper(),
        canonical_uri=canonical_uri(path),
        canonical_query_string=canonical_query_string(
            query, exclude_signature=exclude_signature
        ),
        canonical_headers=canonical_headers_string(headers, signed_list),
        signed_headers=signed_headers,
        payload_hash=payload_hash,
    )


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def derive_sigv4_signing_key(
    secret_key: str, date: str, region: str, service: str = SERVICE
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: Secret access key.
        date: Date string (YYYYMMDD).
        region: Signing region.
        service: Service name.

    Returns:
        Derived signing key bytes.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    k_signing = _hmac_sha256(k_service, TERMINATOR)
    return k_signing


def sigv4_sign(signing_key: bytes, string_to_sign: str) -> str:
    """Compute SigV4 signature.

    Args:
        signing_key: Derived signing key.
        string_to_sign: The string to sign.

    Returns:
        Hex-encoded signature.
    """
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def credential_scope(
    date: str, region: str, algorithm: SigningAlgorithm
) -> str:
    """Credential scope: date/region/s3/aws4_request (no region for 4A)."""
    if algorithm is SigningAlgorithm.SIGV4A:
        return f"{date}/{SERVICE}/{TERMINATOR}"
    return f"{date}/{region}/{SERVICE}/{TERMINATOR}"


def build_string_to_sign(
    algorithm: SigningAlgorithm,
    timestamp: str,
    scope: str,
    canonical_request: CanonicalRequest,
) -> str:
    """Build the string to sign.

    Args:
        algorithm: Signing algorithm.
        timestamp: ISO8601 basic timestamp (x-amz-date).
        scope: Credential scope.
        canonical_request: The canonical request.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            algorithm.value,
            timestamp,
            scope,
            canonical_request.digest(),
        ]
    )


# ---------------------------------------------------------------------------
# SigV4A signing (ECDSA P-256)
# ---------------------------------------------------------------------------


def derive_sigv4a_key(
    secret_key: str, access_key_id: str
) -> EllipticCurvePrivateKey:
    """Derive the ECDSA P-256 private key for SigV4A.

    Uses the AWS key derivation algorithm:
    1. input_key = "AWS4A" + secret_access_key
    2. Counter starts at 0x01
    3. HMAC-SHA256(input_key, label || 0x00 || access_key_id || counter)
    4. Interpret as integer c; if c <= n-2, private_key = c + 1

    Args:
        secret_key: Secret access key.
        access_key_id: Access key ID.

    Returns:
        cryptography EllipticCurvePrivateKey object.

    Raises:
        RuntimeError: If key derivation fails after 254 iterations.
    """
    input_key = ("AWS4A" + secret_key).encode("utf-8")
    label = b"AWS4-ECDSA-P256-SHA256"

    for counter in range(1, 255):
        msg = label + b"\x00" + access_key_id.encode("utf-8") + bytes([counter])
        kdf_output = _hmac_sha256(input_key, msg)
        c = int.from_bytes(kdf_output, "big")
        if c <= _P256_ORDER - 2:
            return derive_private_key(c + 1, SECP256R1())

    raise RuntimeError("SigV4A key derivation failed after 254 iterations")


def sigv4a_sign(
    private_key: EllipticCurvePrivateKey, string_to_sign: str
) -> str:
    """Compute SigV4A ECDSA signature.

    Args:
        private_key: ECDSA P-256 private key.
        string_to_sign: The string to sign.

    Returns:
        Hex-encoded signature (r || s, 32 bytes each).
    """
    sig_der = private_key.sign(string_to_sign.encode("utf-8"), ECDSA(SHA256()))
    r, s = decode_dss_signature(sig_der)
    return (r.to_bytes(32, "big") + s.to_bytes(32, "big")).hex()


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


def format_amz_date(now: datetime) -> str:
    """Format a timestamp as ISO8601 basic (``20240101T000000Z``)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(UTC).strftime(AMZ_DATE_FORMAT)


def validate_expiry(expiry_secs: int, maximum: int) -> None:
    """Reject presign lifetimes outside ``1..maximum`` seconds.

    Raises:
        ConfigError: If the lifetime is out of range.
    """
    if expiry_secs < 1:
        raise ConfigError(f"Presign expiry must be positive: {expiry_secs}")
    if expiry_secs > maximum:
        raise ConfigError(
            f"Presign expiry {expiry_secs}s exceeds maximum of {maximum}s"
        )


class Signer:
    """Signs requests for one credential set and region.

    Holds no mutable state; a single instance may sign any number of
    concurrent requests. The signing key is derived per call since its
    date component changes daily.
    """

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        algorithm: SigningAlgorithm = SigningAlgorithm.SIGV4,
    ) -> None:
        if credentials.is_anonymous:
            raise ConfigError("Cannot sign with anonymous credentials")
        self.credentials = credentials
        self.region = region
        self.algorithm = algorithm

    @property
    def _access_key(self) -> str:
        assert self.credentials.access_key is not None
        return self.credentials.access_key

    @property
    def _secret_key(self) -> str:
        assert self.credentials.secret_key is not None
        return self.credentials.secret_key

    def scope(self, timestamp: str) -> str:
        """Credential scope for a timestamp."""
        return credential_scope(timestamp[:8], self.region, self.algorithm)

    def signature(
        self, timestamp: str, canonical_request: CanonicalRequest
    ) -> str:
        """Sign a canonical request at ``timestamp``."""
        string_to_sign = build_string_to_sign(
            self.algorithm,
            timestamp,
            self.scope(timestamp),
            canonical_request,
        )
        return self.sign_string(string_to_sign, timestamp[:8])

    def sign_string(self, string_to_sign: str, date: str) -> str:
        """Sign an arbitrary string with the key for ``date``."""
        if self.algorithm is SigningAlgorithm.SIGV4A:
            private_key = derive_sigv4a_key(self._secret_key, self._access_key)
            return sigv4a_sign(private_key, string_to_sign)
        signing_key = derive_sigv4_signing_key(
            self._secret_key, date, self.region
        )
        return sigv4_sign(signing_key, string_to_sign)

    def sign_request(
        self,
        method: str,
        path: str,
        query: Query,
        headers: Mapping[str, str],
        payload_hash: str,
        now: datetime,
    ) -> dict[str, str]:
        """Header-based signing.

        Every header passed in is signed. The returned mapping is the
        complete header set to send: the input headers lower-cased plus
        ``x-amz-date``, ``x-amz-content-sha256``, the session token when
        present, and ``authorization``.

        Args:
            method: HTTP method.
            path: Encoded request path.
            query: Query parameters.
            headers: Headers to sign; must include ``host``.
            payload_hash: Body hash or UNSIGNED-PAYLOAD.
            now: Signing time.

        Returns:
            Headers including the Authorization header.
        """
        signed = {name.lower(): value for name, value in headers.items()}
        if "host" not in signed:
            raise ConfigError("Host header is required for signing")

        timestamp = format_amz_date(now)
        signed["x-amz-date"] = timestamp
        signed["x-amz-content-sha256"] = payload_hash
        if self.credentials.session_token:
            signed["x-amz-security-token"] = self.credentials.session_token
        if self.algorithm is SigningAlgorithm.SIGV4A:
            signed["x-amz-region-set"] = self.region

        signed_headers = signed_headers_for(signed)
        creq = build_canonical_request(
            method,
            path,
            query,
            signed,
            payload_hash,
            signed_headers=signed_headers,
        )
        signature = self.signature(timestamp, creq)
        signed["authorization"] = (
            f"{self.algorithm.value} "
            f"Credential={self._access_key}/{self.scope(timestamp)}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )
        return signed

    def presign_url(
        self,
        method: str,
        path: str,
        host: str,
        expiry_secs: int,
        now: datetime,
        *,
        query: Query = (),
        headers: Mapping[str, str] | None = None,
    ) -> list[tuple[str, str]]:
        """Query-string signing for presigned URLs.

        The payload is always UNSIGNED-PAYLOAD since the body is unknown
        at signing time. Custom headers become signed headers that the
        bearer of the URL must send verbatim.

        Args:
            method: HTTP method the URL authorizes.
            path: Encoded request path.
            host: Host header value.
            expiry_secs: Lifetime in seconds (validated by the caller).
            now: Signing time.
            query: Extra query parameters to sign.
            headers: Extra headers to sign.

        Returns:
            Complete query parameters, ending with X-Amz-Signature.
        """
        timestamp = format_amz_date(now)
        signed: dict[str, str] = {"host": host}
        for name, value in (headers or {}).items():
            signed[name.lower()] = value
        signed_headers = signed_headers_for(signed)

        params = _query_pairs(query)
        params += [
            ("X-Amz-Algorithm", self.algorithm.value),
            ("X-Amz-Credential", f"{self._access_key}/{self.scope(timestamp)}"),
            ("X-Amz-Date", timestamp),
            ("X-Amz-Expires", str(expiry_secs)),
            ("X-Amz-SignedHeaders", signed_headers),
        ]
        if self.credentials.session_token:
            params.append(
                ("X-Amz-Security-Token", self.credentials.session_token)
            )
        if self.algorithm is SigningAlgorithm.SIGV4A:
            params.append(("X-Amz-Region-Set", self.region))

        creq = build_canonical_request(
            method,
            path,
            params,
            signed,
            UNSIGNED_PAYLOAD,
            signed_headers=signed_headers,
        )
        params.append(("X-Amz-Signature", self.signature(timestamp, creq)))
        return params


# ---------------------------------------------------------------------------
# Presigned URL helpers
# ---------------------------------------------------------------------------


def parse_presigned_url_params(
    query: str,
) -> dict[str, str] | None:
    """Parse presigned URL query parameters.

    Args:
        query: Query string (without leading ?).

    Returns:
        Dict of query parameters if this is a presigned URL, None
        otherwise.
    """
    params = dict(urllib.parse.parse_qsl(query, keep_blank_values=True))
    if "X-Amz-Credential" not in params:
        return None
    return params


def presigned_url_is_valid(query: str, now: datetime) -> bool:
    """Evaluate the validity window of a presigned URL.

    A URL signed at ``T`` with ``X-Amz-Expires=E`` is valid for
    ``T <= now <= T + E``; the end of the window is inclusive.

    Args:
        query: Query string of the presigned URL (without leading ?).
        now: Time of use.

    Returns:
        True if ``now`` falls inside the window.
    """
    params = parse_presigned_url_params(query)
    if params is None:
        return False
    try:
        signed_at = datetime.strptime(
            params["X-Amz-Date"], AMZ_DATE_FORMAT
        ).replace(tzinfo=UTC)
        expires = int(params["X-Amz-Expires"])
    except (KeyError, ValueError):
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return signed_at <= now <= signed_at + timedelta(seconds=expires)


def check_clock_skew(server_date: str, now: datetime) -> tuple[bool, int]:
    """Check if a response ``Date`` header differs significantly from now.

    Args:
        server_date: RFC 7231 date from the response ``Date`` header.
        now: Local time the request was signed at.

    Returns:
        Tuple of (is_skewed, drift_minutes). is_skewed is True if
        drift exceeds 5 minutes.
    """
    try:
        remote_time = email.utils.parsedate_to_datetime(server_date)
    except (ValueError, TypeError):
        return False, 0
    if remote_time.tzinfo is None:
        remote_time = remote_time.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    drift = abs((now - remote_time).total_seconds())
    drift_minutes = int(drift / 60)
    return drift_minutes > 5, drift_minutes

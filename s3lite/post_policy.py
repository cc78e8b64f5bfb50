# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Presigned POST policies for browser form uploads."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from s3lite.errors import ConfigError
from s3lite.signing import (
    Signer,
    SigningAlgorithm,
    format_amz_date,
    validate_expiry,
)


_RESERVED_ELEMENTS = frozenset(
    {
        "bucket",
        "x-amz-algorithm",
        "x-amz-credential",
        "x-amz-date",
        "x-amz-security-token",
        "policy",
        "x-amz-signature",
    }
)
_EQ = "eq"
_STARTS_WITH = "starts-with"


def _trim_dollar(value: str) -> str:
    return value[1:] if value.startswith("$") else value


@dataclass(frozen=True)
class PresignedPost:
    """Form target and fields for a browser upload.

    Attributes:
        url: Form action URL.
        fields: Form fields to submit verbatim, including the policy and
            its signature.
        dynamic_fields: Fields constrained only by a ``starts-with``
            condition; the value is the required prefix.
    """

    url: str
    fields: dict[str, str]
    dynamic_fields: dict[str, str] = field(default_factory=dict)


class PostPolicy:
    """Conditions a browser form upload must satisfy.

    Element names may be given with or without the leading ``$``.
    Condition methods return the policy so calls can be chained::

        policy = (
            PostPolicy(3600)
            .add_equals_condition("key", "uploads/avatar.png")
            .add_content_length_range_condition(1, 1024 * 1024)
        )
    """

    def __init__(self, expiration_secs: int) -> None:
        self.expiration_secs = expiration_secs
        self._equals: dict[str, str] = {}
        self._starts_with: dict[str, str] = {}
        self._length_range: tuple[int, int] | None = None

    def add_equals_condition(self, element: str, value: str) -> PostPolicy:
        """Require ``element`` to equal ``value`` exactly."""
        element = self._check_element(element)
        if element in ("success_action_redirect", "redirect"):
            raise ConfigError(f"{element} is unsupported for eq condition")
        self._equals[element] = value
        return self

    def add_starts_with_condition(self, element: str, value: str) -> PostPolicy:
        """Require ``element`` to start with ``value`` (empty matches any)."""
        element = self._check_element(element)
        is_amz = element.startswith("x-amz-")
        if element == "success_action_status" or (
            is_amz and not element.startswith("x-amz-meta-")
        ):
            raise ConfigError(
                f"{element} is unsupported for starts-with condition"
            )
        self._starts_with[element] = value
        return self

    def add_content_length_range_condition(
        self, lower_limit: int, upper_limit: int
    ) -> PostPolicy:
        """Bound the uploaded body size (inclusive, in bytes)."""
        if lower_limit < 0 or upper_limit < 0:
            raise ConfigError("Content length limits cannot be negative")
        if lower_limit > upper_limit:
            raise ConfigError("Lower limit cannot exceed upper limit")
        self._length_range = (lower_limit, upper_limit)
        return self

    def _check_element(self, element: str) -> str:
        element = _trim_dollar(element)
        if not element:
            raise ConfigError("Condition element cannot be empty")
        if element == "content-length-range":
            raise ConfigError(
                "Use add_content_length_range_condition() for "
                "content-length-range"
            )
        if element in _RESERVED_ELEMENTS:
            raise ConfigError(f"{element} cannot be set")
        return element

    def sign(
        self,
        bucket_name: str,
        url: str,
        signer: Signer,
        now: datetime,
        max_expiry: int,
    ) -> PresignedPost:
        """Encode the policy document and sign it.

        Args:
            bucket_name: Bucket the upload targets.
            url: Form action URL.
            signer: SigV4 signer for the bucket's credentials and region.
            now: Signing time.
            max_expiry: Longest accepted policy lifetime in seconds.

        Returns:
            The form target and fields.

        Raises:
            ConfigError: If the policy is incomplete or its lifetime is
                out of range.
        """
        validate_expiry(self.expiration_secs, max_expiry)
        if signer.algorithm is not SigningAlgorithm.SIGV4:
            raise ConfigError("POST policies require SigV4 signing")
        if "key" not in self._equals and "key" not in self._starts_with:
            raise ConfigError("POST policy requires a key condition")

        amz_date = format_amz_date(now)
        credential = f"{signer.credentials.access_key}/{signer.scope(amz_date)}"
        expiration = now.astimezone(UTC) + timedelta(
            seconds=self.expiration_secs
        )

        conditions: list[list[str | int]] = [[_EQ, "$bucket", bucket_name]]
        for element, value in self._equals.items():
            conditions.append([_EQ, f"${element}", value])
        for element, value in self._starts_with.items():
            conditions.append([_STARTS_WITH, f"${element}", value])
        if self._length_range is not None:
            conditions.append(["content-length-range", *self._length_range])
        conditions.append([_EQ, "$x-amz-algorithm", signer.algorithm.value])
        conditions.append([_EQ, "$x-amz-credential", credential])
        token = signer.credentials.session_token
        if token:
            conditions.append([_EQ, "$x-amz-security-token", token])
        conditions.append([_EQ, "$x-amz-date", amz_date])

        document = {
            "expiration": expiration.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
            "conditions": conditions,
        }
        policy = base64.b64encode(json.dumps(document).encode()).decode()

        fields = dict(self._equals)
        fields.update(
            {
                "x-amz-algorithm": signer.algorithm.value,
                "x-amz-credential": credential,
                "x-amz-date": amz_date,
                "policy": policy,
                "x-amz-signature": signer.sign_string(policy, amz_date[:8]),
            }
        )
        if token:
            fields["x-amz-security-token"] = token
        return PresignedPost(
            url=url, fields=fields, dynamic_fields=dict(self._starts_with)
        )

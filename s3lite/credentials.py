# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Access credentials for request signing."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Credentials:
    """Access key pair with an optional STS session token.

    Immutable once constructed so a single value can be shared by every
    in-flight request of a bucket. The secret and the session token are
    excluded from ``repr``.

    Attributes:
        access_key: Access key ID, or None for anonymous access.
        secret_key: Secret access key, or None for anonymous access.
        session_token: Temporary session token (sent as
            ``x-amz-security-token``).
    """

    access_key: str | None
    secret_key: str | None = field(default=None, repr=False)
    session_token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Keys pasted from files often carry a trailing newline.
        if self.access_key is not None:
            object.__setattr__(
                self, "access_key", self.access_key.replace("\n", "")
            )
        if self.secret_key is not None:
            object.__setattr__(
                self, "secret_key", self.secret_key.replace("\n", "")
            )

    @classmethod
    def anonymous(cls) -> Credentials:
        """Credentials for public buckets; requests are sent unsigned."""
        return cls(access_key=None)

    @property
    def is_anonymous(self) -> bool:
        """True when no key pair is present."""
        return not self.access_key or not self.secret_key

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bucket configuration loaded from YAML.

The default location follows the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/s3lite/s3lite.yaml``
    (typically ``~/.config/s3lite/s3lite.yaml``)

``!env`` tags resolve values from environment variables, after ``.env``
files have been loaded. Example::

    buckets:
      photos:
        region: eu-central-1
        access_key: !env AWS_ACCESS_KEY_ID
        secret_key: !env AWS_SECRET_ACCESS_KEY
      scratch:
        name: scratch
        region: us-east-1
        endpoint: http://localhost:9000
        path_style: true
        access_key: minioadmin
        secret_key: !env MINIO_SECRET

This is the only module that reads files or environment variables; the
rest of the library receives ``Credentials`` and ``Region`` values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from dotenv import load_dotenv
from platformdirs import user_config_path

from s3lite.bucket import Bucket
from s3lite.credentials import Credentials
from s3lite.errors import ConfigError
from s3lite.region import AddressingStyle, Region
from s3lite.request import DEFAULT_TIMEOUT


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "s3lite"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

_dotenv_loaded = False


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/s3lite/s3lite.yaml``.
    """
    return user_config_path(_APP_NAME) / "s3lite.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


def load_dotenv_once() -> None:
    """Load .env files once, if not already loaded.

    Loads from ``~/.config/s3lite/.env`` (XDG) first, then from the
    current working directory's ``.env``. Variables defined earlier take
    precedence because ``python-dotenv`` does not overwrite existing
    environment variables by default.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    xdg_env = get_dotenv_path()
    if xdg_env.exists():
        load_dotenv(xdg_env)
        logger.debug("Loaded .env from %s", xdg_env)

    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
        logger.debug("Loaded .env from %s", cwd_env)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False


# ---------------------------------------------------------------------------
# YAML loading and value resolution
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(
    value: object,
    coerce: type[_T],
    *,
    required: str,
) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``).
        default: Default when value is absent.
        required: Human-readable field name. When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        field_name = required or "value"
        raise ConfigError(
            f"Invalid {coerce.__name__} for '{field_name}': {resolved!r}"
        ) from e


# ---------------------------------------------------------------------------
# Config values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BucketConfig:
    """Settings for one configured bucket.

    Attributes:
        name: Bucket name on the provider.
        region: Region or provider identifier (``eu-central-1``,
            ``wa-us-east-1``, ``gcs``, ...). With ``endpoint`` it is only
            the signing region.
        endpoint: Explicit endpoint URL for S3-compatible servers.
        path_style: Force path-style addressing.
        access_key: Access key ID (None with secret_key for anonymous).
        secret_key: Secret access key.
        session_token: STS session token.
        timeout: Per-request timeout in seconds.
        listobjects_v1: List with ListObjects v1.
        verify_tls: Verify TLS certificates.
        extra_headers: Headers sent with every request.
    """

    name: str
    region: str
    endpoint: str | None = None
    path_style: bool = False
    access_key: str | None = None
    secret_key: str | None = field(default=None, repr=False)
    session_token: str | None = field(default=None, repr=False)
    timeout: float = DEFAULT_TIMEOUT
    listobjects_v1: bool = False
    verify_tls: bool = True
    extra_headers: dict[str, str] = field(default_factory=dict)

    def resolve_region(self) -> Region:
        """Region for this bucket (custom when an endpoint is set)."""
        if self.endpoint:
            return Region.custom(self.region, self.endpoint)
        return Region.from_name(self.region)

    def credentials(self) -> Credentials:
        """Credentials for this bucket."""
        if self.access_key is None and self.secret_key is None:
            return Credentials.anonymous()
        if not self.access_key or not self.secret_key:
            raise ConfigError(
                f"Bucket '{self.name}': access_key and secret_key must be "
                f"set together"
            )
        return Credentials(
            access_key=self.access_key,
            secret_key=self.secret_key,
            session_token=self.session_token,
        )

    def to_bucket(self, **options: Any) -> Bucket:
        """Build a ``Bucket`` handle.

        Args:
            **options: Extra ``Bucket`` constructor options (``client``,
                ``clock``, ...).
        """
        style = AddressingStyle.PATH if self.path_style else None
        return Bucket(
            self.name,
            self.resolve_region(),
            self.credentials(),
            addressing_style=style,
            extra_headers=self.extra_headers,
            request_timeout=self.timeout,
            listobjects_v2=not self.listobjects_v1,
            verify=self.verify_tls,
            **options,
        )

    @classmethod
    def _from_raw(cls, key: str, raw: dict) -> BucketConfig:
        """Build from a parsed (but unresolved) YAML mapping."""
        prefix = f"buckets.{key}"
        raw_headers = raw.get("extra_headers") or {}
        if not isinstance(raw_headers, dict):
            raise ConfigError(f"'{prefix}.extra_headers' must be a mapping")
        extra_headers: dict[str, str] = {}
        for header, value in raw_headers.items():
            resolved = _raw_resolve(value)
            if resolved is not None:
                extra_headers[str(header)] = resolved

        endpoint = _resolve(raw.get("endpoint"), str)
        if endpoint:
            region = _resolve(raw.get("region"), str, default="us-east-1")
        else:
            region = _resolve(
                raw.get("region"), str, required=f"{prefix}.region"
            )

        return cls(
            name=_resolve(raw.get("name"), str, default=key),
            region=region,
            endpoint=endpoint,
            path_style=_resolve(raw.get("path_style"), bool, default=False),
            access_key=_resolve(raw.get("access_key"), str),
            secret_key=_resolve(raw.get("secret_key"), str),
            session_token=_resolve(raw.get("session_token"), str),
            timeout=_resolve(
                raw.get("timeout"), float, default=DEFAULT_TIMEOUT
            ),
            listobjects_v1=_resolve(
                raw.get("listobjects_v1"), bool, default=False
            ),
            verify_tls=_resolve(raw.get("verify_tls"), bool, default=True),
            extra_headers=extra_headers,
        )


@dataclass(frozen=True)
class ClientConfig:
    """All configured buckets, keyed by their config name."""

    buckets: dict[str, BucketConfig] = field(default_factory=dict)

    def bucket(self, key: str, **options: Any) -> Bucket:
        """Build the ``Bucket`` configured under ``key``.

        Raises:
            ConfigError: If no bucket is configured under ``key``.
        """
        try:
            config = self.buckets[key]
        except KeyError:
            raise ConfigError(f"No bucket configured as '{key}'") from None
        return config.to_bucket(**options)

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> ClientConfig:
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time. ``.env`` files are loaded first.

        Args:
            config_path: Path to YAML config file. Defaults to
                ``~/.config/s3lite/s3lite.yaml`` (XDG).

        Raises:
            ConfigError: If the file is missing or required values are
                absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )
        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> ClientConfig:
        raw_buckets = raw.get("buckets") or {}
        if not isinstance(raw_buckets, dict):
            raise ConfigError("'buckets' must be a mapping")

        buckets: dict[str, BucketConfig] = {}
        for key, entry in raw_buckets.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"'buckets.{key}' must be a mapping")
            buckets[str(key)] = BucketConfig._from_raw(str(key), entry)
        logger.debug("Loaded %d bucket configuration(s)", len(buckets))
        return cls(buckets=buckets)


def load_config(path: Path | str | None = None) -> ClientConfig:
    """Load the client configuration.

    Args:
        path: YAML file to read; defaults to the XDG location.
    """
    return ClientConfig.from_yaml(Path(path) if path is not None else None)

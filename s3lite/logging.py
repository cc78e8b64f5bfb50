# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging configuration with credential redaction.

Buckets register their secret keys and session tokens with
``SecretFilter`` on construction. Independently of registration, the
filter masks request signatures and security tokens that appear in
presigned URLs and Authorization headers.

Usage:
    # In applications
    from s3lite.logging import configure_logging
    configure_logging(level=logging.DEBUG)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.debug("GET %s", url)
"""

import logging
import re
from collections import Counter
from typing import ClassVar


REDACTED = "[REDACTED]"

# Signature material that is never safe to log, registered or not.
_SIGNATURE_RE = re.compile(
    r"(?P<name>X-Amz-Signature=|X-Amz-Security-Token=|Signature=)"
    r"(?P<value>[^&\s,\"']+)"
)


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Secrets can be registered at runtime using register_secret().
    Any registered secret appearing in a log message will be replaced
    with '[REDACTED]', as will signature and token query parameters.

    Example:
        filter = SecretFilter()
        filter.register_secret("wJalrXUtnFEMI/K7MDENG")
        logger.addFilter(filter)
        logger.info("Using key: wJalrXUtnFEMI/K7MDENG")
        # Output: "Using key: [REDACTED]"
    """

    # Registration count per secret
    _secrets: ClassVar[Counter[str]] = Counter()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    @classmethod
    def redact(cls, text: str) -> str:
        """Return ``text`` with secrets and signatures replaced."""
        if cls._pattern is not None:
            text = cls._pattern.sub(REDACTED, text)
        return _SIGNATURE_RE.sub(rf"\g<name>{REDACTED}", text)

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record by redacting any registered secrets.

        Args:
            record: The log record to filter.

        Returns:
            Always True (record is never suppressed, only modified).
        """
        record.msg = self.redact(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: self.redact(arg) if isinstance(arg, str) else arg
                    for key, arg in record.args.items()
                }
            else:
                record.args = tuple(
                    self.redact(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty values are ignored.
        """
        if secret:
            cls._secrets[secret] += 1
            if cls._secrets[secret] == 1:
                cls._rebuild_pattern()

    @classmethod
    def unregister_secret(cls, secret: str | None) -> None:
        """Release one registration of a secret.

        The secret stops being redacted once every registration of it has
        been released.
        """
        if not secret or secret not in cls._secrets:
            return
        cls._secrets[secret] -= 1
        if cls._secrets[secret] <= 0:
            del cls._secrets[secret]
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        """Rebuild the compiled regex pattern from registered secrets."""
        if cls._secrets:
            # Longest first so overlapping secrets redact completely
            escaped = [
                re.escape(s)
                for s in sorted(cls._secrets, key=len, reverse=True)
            ]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure logging for an application using s3lite.

    Sets up the root logger with a standard format and optional
    secret redaction filter.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        add_secret_filter: Whether to add the SecretFilter to redact secrets.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)

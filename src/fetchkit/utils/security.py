"""Redaction helpers and secure logging setup.

This module keeps credentials out of log output:
- Pattern matching for tokens embedded in strings
- Header and URL sanitization for request logging
- A logging formatter that sanitizes every record
"""

import logging
import re
import sys
from typing import Any, Iterable, Mapping, Optional

# Patterns for sensitive data detection
SENSITIVE_PATTERNS = {
    "jwt_token": re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
    "bearer_token": re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    "basic_auth": re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE),
}

# Headers that should never be logged
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "x-auth-token",
    "cookie",
    "set-cookie",
    "x-csrf-token",
    "x-access-token",
    "x-refresh-token",
}

SENSITIVE_QUERY_PARAMS = (
    "access_token",
    "api_key",
    "client_secret",
    "password",
    "secret",
    "token",
    "key",
)


def sanitize_string(value: str) -> str:
    """Redact tokens embedded in a string.

    :param value: String to sanitize
    :type value: str
    :return: Sanitized string with sensitive data redacted
    :rtype: str
    """
    if not value:
        return value
    for pattern_name, pattern in SENSITIVE_PATTERNS.items():
        value = pattern.sub(f"<{pattern_name}:REDACTED>", value)
    return value


def sanitize_headers(
    headers: Optional[Mapping[str, Any]],
    redacted: Optional[Iterable[str]] = None,
) -> dict:
    """Sanitize HTTP headers for logging.

    Header names are compared case-insensitively against
    ``SENSITIVE_HEADERS`` plus any names given in ``redacted``.

    :param headers: HTTP headers
    :type headers: Optional[Mapping[str, Any]]
    :param redacted: Additional header names to redact
    :type redacted: Optional[Iterable[str]]
    :return: Sanitized copy of the headers
    :rtype: dict
    """
    if not headers:
        return {}
    names = SENSITIVE_HEADERS | {name.lower() for name in (redacted or ())}
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in names:
            sanitized[key] = "<redacted>"
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_url(url: str) -> str:
    """Redact credential-like query parameters and userinfo from a URL.

    :param url: URL to sanitize
    :type url: str
    :return: Sanitized URL
    :rtype: str
    """
    if not url:
        return url
    url = re.sub(r"(://)[^/@\s]+@", r"\1<REDACTED>@", url)
    for param in SENSITIVE_QUERY_PARAMS:
        url = re.sub(
            rf"([?&]{param}=)[^&#\s]+", r"\1<REDACTED>", url, flags=re.IGNORECASE
        )
    return url


class SanitizingFormatter(logging.Formatter):
    """Formatter that sanitizes the fully rendered log message."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with automatic sanitization.

        :param record: Log record to format
        :type record: logging.LogRecord
        :return: Sanitized log message
        :rtype: str
        """
        try:
            record.msg = sanitize_string(record.getMessage())
            record.args = None
        except (TypeError, ValueError):
            # Mismatched format args; leave the record for the base formatter
            pass
        return super().format(record)


_LOGGING_CONFIGURED = False


def setup_logging(level: str = "INFO") -> None:
    """Set up root logging with automatic sanitization.

    Repeated calls are ignored so handlers are never duplicated.

    :param level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    :type level: str
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping duplicate setup"
        )
        return

    formatter = SanitizingFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    _LOGGING_CONFIGURED = True

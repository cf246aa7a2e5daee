"""Structured exception classes for fetchkit.

Every failure surfaced by :class:`~fetchkit.client.FetchClient` or the JSON
decode helpers is a :class:`FetchError` subclass, so callers can match on the
concrete type to decide how to react.
"""

import json
from typing import Any, Dict, Optional, Sequence


class FetchError(Exception):
    """Base exception for all fetchkit errors.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict())


class InvalidURLError(FetchError):
    """Raised when a request URL cannot be resolved into an absolute URL.

    :param message: Description of the problem
    :param url: Optional offending URL or path
    """

    def __init__(self, message: str = "Invalid URL", url: Optional[str] = None):
        """Initialize invalid URL error with message and optional URL."""
        details = {}
        if url is not None:
            details["url"] = url
        super().__init__(message=message, code="INVALID_URL", details=details)
        self.url = url


class InvalidResponseError(FetchError):
    """Raised when the transport returns something that is not an HTTP response."""

    def __init__(self, message: str = "Response is not a valid HTTP response"):
        """Initialize invalid response error with message."""
        super().__init__(message=message, code="INVALID_RESPONSE")


class StatusCodeError(FetchError):
    """Raised for responses whose status code is outside 200-299.

    The response body is kept verbatim, even when empty, for diagnostics.

    :param status_code: HTTP status code of the response
    :param body: Raw response body
    :param headers: Optional response headers
    """

    def __init__(
        self,
        status_code: int,
        body: Optional[bytes] = None,
        headers: Optional[Any] = None,
    ):
        """Initialize status code error with status and body."""
        details: Dict[str, Any] = {"status_code": status_code}
        if body:
            details["response_body"] = body.decode("utf-8", errors="replace")
        super().__init__(
            message=f"Unexpected status code {status_code}",
            code="STATUS_CODE",
            details=details,
        )
        self.status_code = status_code
        self.body = body
        self.headers = headers


class RequestFailedError(FetchError):
    """Raised when the transport fails before producing a response.

    :param underlying: The original transport exception
    :param error_code: Transport error category used for retry classification
    """

    def __init__(self, underlying: BaseException, error_code: Any = None):
        """Initialize request failure with the underlying transport error."""
        details: Dict[str, Any] = {
            "original_error": str(underlying),
            "error_type": type(underlying).__name__,
        }
        if error_code is not None:
            details["transport_error"] = getattr(error_code, "value", error_code)
        super().__init__(
            message=f"Request failed: {underlying}",
            code="REQUEST_FAILED",
            details=details,
        )
        self.underlying = underlying
        self.error_code = error_code


class EncodingFailedError(FetchError):
    """Raised when a request body cannot be encoded.

    :param underlying: The original encoder exception
    """

    def __init__(self, underlying: BaseException):
        """Initialize encoding failure with the underlying error."""
        super().__init__(
            message=f"Encoding failed: {underlying}",
            code="ENCODING_FAILED",
            details={"error_type": type(underlying).__name__},
        )
        self.underlying = underlying


class DecodingFailedError(FetchError):
    """Raised when a response body cannot be decoded into the requested shape.

    :param underlying: The original decoder or transform exception
    """

    def __init__(self, underlying: BaseException):
        """Initialize decoding failure with the underlying error."""
        super().__init__(
            message=f"Decoding failed: {underlying}",
            code="DECODING_FAILED",
            details={"error_type": type(underlying).__name__},
        )
        self.underlying = underlying


class MissingKeyPathError(FetchError):
    """Raised when a JSON key path cannot be followed.

    :param path: The full key path that was requested
    """

    def __init__(self, path: Sequence[str]):
        """Initialize missing key path error with the requested path."""
        self.path = list(path)
        super().__init__(
            message=f"Key path not found: {'.'.join(self.path)}",
            code="MISSING_KEY_PATH",
            details={"path": self.path},
        )


class ConfigurationError(FetchError):
    """Raised for invalid client configuration.

    :param message: Description of the configuration error
    :param setting: Optional name of the problematic setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        """Initialize configuration error with message and optional setting."""
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)

"""fetchkit - a small async HTTP client facade.

This package composes requests against a configured base URL, executes
them through an injected transport with optional retry and interceptors,
and decodes JSON responses into typed values.

:var __version__: Current package version
:type __version__: str
"""

from .client import Configuration, FetchClient
from .exceptions import (
    ConfigurationError,
    DecodingFailedError,
    EncodingFailedError,
    FetchError,
    InvalidResponseError,
    InvalidURLError,
    MissingKeyPathError,
    RequestFailedError,
    StatusCodeError,
)
from .models import CachePolicy, HTTPMethod, Request, Response
from .service import FetchService
from .utils.http import (
    HttpxTransport,
    Interceptor,
    LoggingInterceptor,
    MultipartFormData,
    RetryPolicy,
    Transport,
    TransportErrorCode,
)

__version__ = "0.1.0"

__all__ = [
    "CachePolicy",
    "Configuration",
    "ConfigurationError",
    "DecodingFailedError",
    "EncodingFailedError",
    "FetchClient",
    "FetchError",
    "FetchService",
    "HTTPMethod",
    "HttpxTransport",
    "Interceptor",
    "InvalidResponseError",
    "InvalidURLError",
    "LoggingInterceptor",
    "MissingKeyPathError",
    "MultipartFormData",
    "Request",
    "RequestFailedError",
    "Response",
    "RetryPolicy",
    "StatusCodeError",
    "Transport",
    "TransportErrorCode",
]

"""HTTP utilities public API (barrel module).

This package provides:
- URL resolution and query merging
- multipart/form-data encoding, buffered or streaming
- Interceptor chain and a logging interceptor
- Retry policy and backoff control
- Transport abstraction with an httpx-backed default
- JSON encode/decode helpers

Recommended import pattern for consumers:
    from fetchkit.utils.http import RetryPolicy, MultipartFormData, HttpxTransport

This keeps call sites stable even if internal modules are reorganized.
"""

from .codec import (
    decode_json,
    decode_json_at,
    decode_json_transformed,
    encode_json,
    extract_key_path,
)
from .interceptors import (
    BodyRedaction,
    Interceptor,
    InterceptorChain,
    LoggingInterceptor,
)
from .multipart import EncodedForm, MultipartFormData, MultipartStream, Part
from .retry import DEFAULT_RETRYABLE_STATUS_CODES, RetryController, RetryPolicy
from .transport import (
    DEFAULT_RETRYABLE_ERROR_CODES,
    HttpxTransport,
    Transport,
    TransportErrorCode,
    classify_transport_error,
    create_limits,
    create_timeout,
    execute_once,
)
from .url import merge_query, resolve_url

__all__ = [
    "BodyRedaction",
    "DEFAULT_RETRYABLE_ERROR_CODES",
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "EncodedForm",
    "HttpxTransport",
    "Interceptor",
    "InterceptorChain",
    "LoggingInterceptor",
    "MultipartFormData",
    "MultipartStream",
    "Part",
    "RetryController",
    "RetryPolicy",
    "Transport",
    "TransportErrorCode",
    "classify_transport_error",
    "create_limits",
    "create_timeout",
    "decode_json",
    "decode_json_at",
    "decode_json_transformed",
    "encode_json",
    "execute_once",
    "extract_key_path",
    "merge_query",
    "resolve_url",
]

"""Request and response value objects.

This module defines the immutable request description handed to
:class:`~fetchkit.client.FetchClient` and the immutable response it
returns. A ``Request`` may be relative; it is resolved against the
configured base URL on every attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, Callable, Dict, Iterable, Optional, Union

import httpx

BodyStream = Union[
    Iterable[bytes],
    AsyncIterable[bytes],
    Callable[[], Union[Iterable[bytes], AsyncIterable[bytes]]],
]


class HTTPMethod(str, Enum):
    """HTTP methods supported by the client."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class CachePolicy(str, Enum):
    """Per-request cache policy.

    Each policy maps to the ``Cache-Control`` request directive sent to
    the server; ``USE_PROTOCOL_CACHE_POLICY`` sends nothing.
    """

    USE_PROTOCOL_CACHE_POLICY = "use_protocol_cache_policy"
    RELOAD_IGNORING_CACHE = "reload_ignoring_cache"
    RETURN_CACHE_DATA_ELSE_LOAD = "return_cache_data_else_load"
    RETURN_CACHE_DATA_DONT_LOAD = "return_cache_data_dont_load"

    @property
    def cache_control(self) -> Optional[str]:
        return _CACHE_CONTROL.get(self)


_CACHE_CONTROL = {
    CachePolicy.RELOAD_IGNORING_CACHE: "no-cache",
    CachePolicy.RETURN_CACHE_DATA_ELSE_LOAD: "max-stale",
    CachePolicy.RETURN_CACHE_DATA_DONT_LOAD: "only-if-cached",
}


@dataclass(frozen=True)
class Request:
    """Description of an HTTP request consumed by ``FetchClient``.

    :param url: Absolute URL, or a path relative to the configured base URL
    :type url: Union[str, httpx.URL]
    :param method: HTTP method
    :type method: HTTPMethod
    :param headers: Request headers; they override default headers per key
    :type headers: Dict[str, str]
    :param body: Eager request body. Wins over ``body_stream`` when both are set
    :type body: Optional[bytes]
    :param body_stream: Lazy body: an iterable or async iterable of byte
                        chunks, or a zero-argument callable returning one.
                        A plain iterable is consumed by the first attempt;
                        pass a callable to make retries resend the body
    :type body_stream: Optional[BodyStream]
    :param content_length: Explicit ``Content-Length`` for streamed bodies
    :type content_length: Optional[int]
    :param timeout: Per-request timeout in seconds
    :type timeout: Optional[float]
    :param cache_policy: Per-request cache policy
    :type cache_policy: Optional[CachePolicy]
    """

    url: Union[str, httpx.URL]
    method: HTTPMethod = HTTPMethod.GET
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    body_stream: Optional[BodyStream] = None
    content_length: Optional[int] = None
    timeout: Optional[float] = None
    cache_policy: Optional[CachePolicy] = None


@dataclass(frozen=True)
class Response:
    """Raw response payload and metadata returned by ``FetchClient``.

    :param data: Raw response body
    :type data: bytes
    :param status_code: HTTP status code
    :type status_code: int
    :param headers: Response headers (case-insensitive). They are copied on
                    construction, so the response never shares a header
                    object with the exchange that produced it. Treat them
                    as read-only; ``httpx.Headers`` itself is mutable
    :type headers: httpx.Headers
    :param url: Final URL of the exchange
    :type url: str
    """

    data: bytes
    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    url: str = ""

    def __post_init__(self):
        object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @property
    def text(self) -> str:
        """Get the response body decoded as UTF-8 text.

        :return: Response body text
        :rtype: str
        """
        return self.data.decode("utf-8", errors="replace")

    def is_success(self) -> bool:
        """Check if the response indicates success (2xx status code).

        :return: True if status code is in 200-299 range
        :rtype: bool
        """
        return 200 <= self.status_code < 300

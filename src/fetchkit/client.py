"""Request orchestration for fetchkit.

:class:`FetchClient` turns a :class:`~fetchkit.models.Request` into a
:class:`~fetchkit.models.Response`. Each attempt moves through a small
state machine:

    BUILDING -> ADAPTING -> SENDING -> OBSERVING
        OBSERVING -> SUCCEEDED
        OBSERVING -> BACKOFF -> BUILDING      (retryable failure)
        OBSERVING -> FAILED                   (terminal failure)

Building resolves the URL, merges headers and query parameters and
attaches the body. Adapting runs the interceptor chain. Sending hands the
request to the transport. Observing notifies interceptors and the metrics
hook about the attempt and classifies the outcome. Attempts are strictly
sequential; there is no overall deadline beyond ``max_retries`` and the
per-request timeout.

Examples:
    >>> config = Configuration(base_url="https://api.example.com")
    >>> async with FetchClient(config) as client:
    ...     response = await client.perform(Request("/users"), query={"page": "1"})
    ...     users = client.decode_json(list[User], response)
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    AsyncIterator,
    Callable,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)
from urllib.parse import urlsplit

import httpx
from pydantic import TypeAdapter

from .exceptions import ConfigurationError, FetchError
from .models import BodyStream, HTTPMethod, Request, Response
from .utils.http.codec import decode_json, decode_json_at, decode_json_transformed
from .utils.http.interceptors import Interceptor, InterceptorChain
from .utils.http.retry import RetryController, RetryPolicy, SleepFunc
from .utils.http.transport import HttpxTransport, Transport, execute_once
from .utils.http.url import merge_query, resolve_url
from .utils.security import sanitize_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

MetricsHandler = Callable[
    [httpx.Request, Optional[Response], Optional[FetchError], float], None
]


@dataclass(frozen=True)
class Configuration:
    """Immutable configuration for a :class:`FetchClient`.

    :param base_url: Base URL used when requests specify a relative path
    :type base_url: Optional[str]
    :param default_headers: Headers merged into every request
    :type default_headers: Mapping[str, str]
    :param default_query: Query parameters merged into every request
    :type default_query: Mapping[str, str]
    :param transport: Transport performing the exchanges; an
                      :class:`HttpxTransport` is created when omitted
    :type transport: Optional[Transport]
    :param retry_policy: Retry policy; disabled by default
    :type retry_policy: RetryPolicy
    :param interceptors: Interceptors in execution order
    :type interceptors: Tuple[Interceptor, ...]
    :param metrics_handler: Called after every attempt with
                            ``(request, response, error, elapsed_seconds)``
    :type metrics_handler: Optional[MetricsHandler]
    """

    base_url: Optional[str] = None
    default_headers: Mapping[str, str] = field(default_factory=dict)
    default_query: Mapping[str, str] = field(default_factory=dict)
    transport: Optional[Transport] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    interceptors: Tuple[Interceptor, ...] = ()
    metrics_handler: Optional[MetricsHandler] = None

    def __post_init__(self):
        if self.base_url is not None:
            base_url = str(self.base_url)
            try:
                parts = urlsplit(base_url)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid base URL: {e}", setting="base_url"
                ) from e
            if not parts.scheme or not parts.netloc:
                raise ConfigurationError(
                    f"Base URL must be absolute: {base_url}", setting="base_url"
                )
            object.__setattr__(self, "base_url", base_url)
        object.__setattr__(
            self, "default_headers", MappingProxyType(dict(self.default_headers))
        )
        object.__setattr__(
            self, "default_query", MappingProxyType(dict(self.default_query))
        )
        object.__setattr__(self, "interceptors", tuple(self.interceptors))


class AttemptState(str, Enum):
    """States of one ``perform`` call."""

    BUILDING = "building"
    ADAPTING = "adapting"
    SENDING = "sending"
    OBSERVING = "observing"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


async def _aiter_body(source: BodyStream) -> AsyncIterator[bytes]:
    if callable(source):
        source = source()
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            yield chunk
    else:
        for chunk in source:
            yield chunk


class FetchClient:
    """Async HTTP client with base URL resolution, retries and interceptors.

    A client holds one :class:`Configuration` for its whole lifetime;
    reconfiguring means building a new client. Concurrent ``perform``
    calls on the same client are independent.

    :param configuration: Client configuration
    :type configuration: Optional[Configuration]
    :param sleep: Non-blocking sleep used between retries
    :type sleep: SleepFunc
    :param rng: Random source for backoff jitter
    :type rng: Optional[random.Random]
    """

    def __init__(
        self,
        configuration: Optional[Configuration] = None,
        *,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ):
        self.configuration = configuration or Configuration()
        self._owns_transport = self.configuration.transport is None
        self._transport: Transport = self.configuration.transport or HttpxTransport()
        self._interceptors = InterceptorChain(self.configuration.interceptors)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng

    @property
    def transport(self) -> Transport:
        return self._transport

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def build_request(
        self,
        request: Request,
        query: Optional[Mapping[str, str]] = None,
    ) -> httpx.Request:
        """Build the outbound request for one attempt.

        Default headers are overridden per key (case-insensitively) by the
        request's own headers. An eager body wins over a body stream.

        :param request: Request description
        :type request: Request
        :param query: Per-call query parameters; they win over defaults
        :type query: Optional[Mapping[str, str]]
        :return: Resolved request ready for the interceptor chain
        :rtype: httpx.Request
        :raises InvalidURLError: If the URL cannot be resolved
        """
        config = self.configuration
        url = resolve_url(
            request.url, config.base_url, merge_query(config.default_query, query)
        )

        headers = httpx.Headers(dict(config.default_headers))
        for key, value in request.headers.items():
            headers[key] = value

        cache_control = request.cache_policy.cache_control if request.cache_policy else None
        if cache_control and "cache-control" not in headers:
            headers["Cache-Control"] = cache_control

        content = None
        if request.body is not None:
            content = request.body
        elif request.body_stream is not None:
            content = _aiter_body(request.body_stream)

        if request.content_length is not None:
            headers["Content-Length"] = str(request.content_length)

        extensions = {}
        if request.timeout is not None:
            extensions["timeout"] = httpx.Timeout(request.timeout).as_dict()
        if request.cache_policy is not None:
            extensions["cache_policy"] = request.cache_policy.value

        return httpx.Request(
            HTTPMethod(request.method).value,
            url,
            headers=headers,
            content=content,
            extensions=extensions,
        )

    async def perform(
        self,
        request: Request,
        query: Optional[Mapping[str, str]] = None,
    ) -> Response:
        """Perform the request, retrying according to the retry policy.

        :param request: Request description
        :type request: Request
        :param query: Per-call query parameters appended to the URL
        :type query: Optional[Mapping[str, str]]
        :return: Response of the first successful attempt
        :rtype: Response
        :raises FetchError: The failure of the last attempt, unwrapped
        """
        retry = RetryController(self.configuration.retry_policy, self._sleep, self._rng)
        state = AttemptState.BUILDING
        outbound: Optional[httpx.Request] = None
        response: Optional[Response] = None
        error: Optional[FetchError] = None
        started = 0.0

        while True:
            if state is AttemptState.BUILDING:
                outbound = self.build_request(request, query)
                response, error = None, None
                started = time.perf_counter()
                logger.debug(
                    "Attempt %d: %s %s",
                    retry.retries,
                    outbound.method,
                    sanitize_url(str(outbound.url)),
                )
                state = AttemptState.ADAPTING

            elif state is AttemptState.ADAPTING:
                try:
                    outbound = await self._interceptors.adapt(outbound)
                    state = AttemptState.SENDING
                except FetchError as e:
                    error = e
                    state = AttemptState.OBSERVING

            elif state is AttemptState.SENDING:
                try:
                    response = await execute_once(self._transport, outbound)
                except FetchError as e:
                    error = e
                state = AttemptState.OBSERVING

            elif state is AttemptState.OBSERVING:
                elapsed = time.perf_counter() - started
                await self._interceptors.observe(
                    response if error is None else error, outbound
                )
                self._report_metrics(outbound, response, error, elapsed)
                if error is None:
                    state = AttemptState.SUCCEEDED
                elif retry.should_retry(error):
                    state = AttemptState.BACKOFF
                else:
                    state = AttemptState.FAILED

            elif state is AttemptState.BACKOFF:
                logger.info(
                    "Retrying %s %s after %s (retry %d of %d)",
                    outbound.method,
                    sanitize_url(str(outbound.url)),
                    error.code,
                    retry.retries + 1,
                    retry.policy.max_retries,
                )
                await retry.backoff()
                state = AttemptState.BUILDING

            elif state is AttemptState.SUCCEEDED:
                if retry.retries:
                    logger.info(
                        "Succeeded after %d attempt(s): %s",
                        retry.retries + 1,
                        sanitize_url(str(outbound.url)),
                    )
                return response

            else:
                logger.debug(
                    "Request failed after %d attempt(s): %s",
                    retry.retries + 1,
                    error.code,
                )
                raise error

    def _report_metrics(
        self,
        request: httpx.Request,
        response: Optional[Response],
        error: Optional[FetchError],
        elapsed: float,
    ) -> None:
        handler = self.configuration.metrics_handler
        if handler is None:
            return
        try:
            handler(request, response, error, elapsed)
        except Exception:
            logger.warning("Metrics handler raised; ignoring", exc_info=True)

    def decode_json(
        self,
        shape: Type[T],
        response: Response,
        *,
        transform: Optional[Callable[[bytes], bytes]] = None,
        key_path: Optional[Union[str, Sequence[str]]] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> T:
        """Decode a response body into ``shape``.

        With ``transform`` the body is passed through it first; with
        ``key_path`` the value at that path is decoded instead of the whole
        document. The two options are mutually exclusive.

        :param shape: Target type
        :type shape: Type[T]
        :param response: Response to decode
        :type response: Response
        :param transform: Optional byte-to-byte transform
        :type transform: Optional[Callable[[bytes], bytes]]
        :param key_path: Optional key (or keys, outermost first) to descend into
        :type key_path: Optional[Union[str, Sequence[str]]]
        :param decoder: Optional ``TypeAdapter`` with custom settings
        :type decoder: Optional[TypeAdapter]
        :return: Decoded value
        :rtype: T
        :raises DecodingFailedError: If the body does not match ``shape``
        :raises MissingKeyPathError: If ``key_path`` cannot be followed
        """
        if transform is not None and key_path is not None:
            raise ValueError("transform and key_path are mutually exclusive")
        if transform is not None:
            return decode_json_transformed(shape, response.data, transform, decoder)
        if key_path is not None:
            if isinstance(key_path, str):
                key_path = [key_path]
            return decode_json_at(shape, response.data, key_path, decoder)
        return decode_json(shape, response.data, decoder)

"""Transport abstraction and single-exchange execution.

The client never talks to sockets itself. It hands a fully resolved
``httpx.Request`` to a :class:`Transport` and normalizes whatever comes
back: a 2xx response becomes a :class:`~fetchkit.models.Response`,
anything else becomes a typed :class:`~fetchkit.exceptions.FetchError`.

:class:`HttpxTransport` is the default transport, backed by a pooled
``httpx.AsyncClient``.
"""

import asyncio
import errno
import logging
import socket
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import httpx

from ...exceptions import (
    FetchError,
    InvalidResponseError,
    RequestFailedError,
    StatusCodeError,
)
from ...models import Response
from ..security import sanitize_url

logger = logging.getLogger(__name__)


class TransportErrorCode(str, Enum):
    """Categories of low-level transport failures.

    Retry policies select retryable failures by category rather than by
    exception class, so custom transports only need to raise ordinary
    network exceptions.
    """

    TIMED_OUT = "timed_out"
    CANNOT_FIND_HOST = "cannot_find_host"
    CANNOT_CONNECT_TO_HOST = "cannot_connect_to_host"
    NETWORK_CONNECTION_LOST = "network_connection_lost"
    NOT_CONNECTED_TO_INTERNET = "not_connected_to_internet"
    DNS_LOOKUP_FAILED = "dns_lookup_failed"
    UNSUPPORTED_URL = "unsupported_url"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    UNKNOWN = "unknown"


DEFAULT_RETRYABLE_ERROR_CODES = frozenset(
    {
        TransportErrorCode.TIMED_OUT,
        TransportErrorCode.CANNOT_FIND_HOST,
        TransportErrorCode.CANNOT_CONNECT_TO_HOST,
        TransportErrorCode.NETWORK_CONNECTION_LOST,
        TransportErrorCode.NOT_CONNECTED_TO_INTERNET,
        TransportErrorCode.DNS_LOOKUP_FAILED,
    }
)

# Substrings of resolver/OS messages, checked in order
_MESSAGE_MARKERS = (
    ("temporary failure in name resolution", TransportErrorCode.DNS_LOOKUP_FAILED),
    ("name or service not known", TransportErrorCode.CANNOT_FIND_HOST),
    ("nodename nor servname", TransportErrorCode.CANNOT_FIND_HOST),
    ("no address associated", TransportErrorCode.CANNOT_FIND_HOST),
    ("getaddrinfo failed", TransportErrorCode.DNS_LOOKUP_FAILED),
    ("network is unreachable", TransportErrorCode.NOT_CONNECTED_TO_INTERNET),
)


def _underlying_causes(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_transport_error(error: BaseException) -> TransportErrorCode:
    """Map a transport exception to a :class:`TransportErrorCode`.

    The exception and its chained causes are inspected, so an
    ``httpx.ConnectError`` raised from a ``socket.gaierror`` is reported
    as a host lookup failure.

    :param error: Exception raised by the transport
    :type error: BaseException
    :return: Transport error category
    :rtype: TransportErrorCode
    """
    for cause in _underlying_causes(error):
        if isinstance(cause, socket.gaierror):
            if cause.errno == socket.EAI_AGAIN:
                return TransportErrorCode.DNS_LOOKUP_FAILED
            return TransportErrorCode.CANNOT_FIND_HOST
        if isinstance(cause, OSError) and cause.errno == errno.ENETUNREACH:
            return TransportErrorCode.NOT_CONNECTED_TO_INTERNET

    message = str(error).lower()
    for marker, code in _MESSAGE_MARKERS:
        if marker in message:
            return code

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return TransportErrorCode.TIMED_OUT
    if isinstance(error, (httpx.ConnectError, httpx.ProxyError, ConnectionRefusedError)):
        return TransportErrorCode.CANNOT_CONNECT_TO_HOST
    if isinstance(
        error,
        (
            httpx.ReadError,
            httpx.WriteError,
            httpx.CloseError,
            ConnectionResetError,
            ConnectionAbortedError,
            BrokenPipeError,
        ),
    ):
        return TransportErrorCode.NETWORK_CONNECTION_LOST
    if isinstance(error, httpx.UnsupportedProtocol):
        return TransportErrorCode.UNSUPPORTED_URL
    if isinstance(error, httpx.TooManyRedirects):
        return TransportErrorCode.TOO_MANY_REDIRECTS
    return TransportErrorCode.UNKNOWN


@runtime_checkable
class Transport(Protocol):
    """Anything that can perform one HTTP exchange."""

    async def send(self, request: httpx.Request) -> httpx.Response:
        ...


def create_timeout(
    connect: float = 5.0,
    read: float = 30.0,
    write: float = 10.0,
    pool: float = 5.0,
) -> httpx.Timeout:
    """Create a timeout configuration object.

    :param connect: Connection timeout in seconds
    :type connect: float
    :param read: Read timeout in seconds
    :type read: float
    :param write: Write timeout in seconds
    :type write: float
    :param pool: Pool timeout in seconds
    :type pool: float
    :return: Configured timeout object
    :rtype: httpx.Timeout
    """
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)


def create_limits(
    max_keepalive_connections: int = 10,
    max_connections: int = 20,
    keepalive_expiry: float = 30.0,
) -> httpx.Limits:
    """Create a connection limits configuration object.

    :param max_keepalive_connections: Maximum number of keepalive connections
    :type max_keepalive_connections: int
    :param max_connections: Maximum total number of connections
    :type max_connections: int
    :param keepalive_expiry: Keepalive connection expiry time in seconds
    :type keepalive_expiry: float
    :return: Configured limits object
    :rtype: httpx.Limits
    """
    return httpx.Limits(
        max_keepalive_connections=max_keepalive_connections,
        max_connections=max_connections,
        keepalive_expiry=keepalive_expiry,
    )


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``.

    When no client is passed, one is created with pooled connections and
    the given timeout and limits, and this transport owns it: closing the
    transport closes the client. A caller-supplied client is left open.

    :param client: Optional existing client to send through
    :type client: Optional[httpx.AsyncClient]
    :param timeout: Default timeout for the created client
    :type timeout: Optional[httpx.Timeout]
    :param limits: Connection limits for the created client
    :type limits: Optional[httpx.Limits]
    :param follow_redirects: Whether the created client follows redirects
    :type follow_redirects: bool
    :param http2: Enable HTTP/2 when the ``h2`` package is installed
    :type http2: bool
    :param transport: Optional low-level httpx transport, e.g.
                      ``httpx.MockTransport`` in tests
    :type transport: Optional[httpx.AsyncBaseTransport]
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: Optional[httpx.Timeout] = None,
        limits: Optional[httpx.Limits] = None,
        follow_redirects: bool = True,
        http2: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._owns_client = client is None
        if client is None:
            if http2:
                try:
                    import h2  # type: ignore  # noqa: F401
                except ImportError:
                    logger.warning(
                        "HTTP/2 requested but 'h2' package not installed; falling back to HTTP/1.1"
                    )
                    http2 = False
            client = httpx.AsyncClient(
                timeout=timeout or create_timeout(),
                limits=limits or create_limits(),
                follow_redirects=follow_redirects,
                http2=http2,
                transport=transport,
            )
            logger.debug("Created httpx client (http2=%s)", http2)
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def send(self, request: httpx.Request) -> httpx.Response:
        """Send one request through the underlying client.

        Requests without a ``timeout`` extension get the client default,
        as ``httpx.AsyncClient.build_request`` would have set it.
        """
        if "timeout" not in request.extensions:
            request.extensions["timeout"] = self._client.timeout.as_dict()
        return await self._client.send(request)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed owned httpx client")

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def execute_once(transport: Transport, request: httpx.Request) -> Response:
    """Perform a single exchange and normalize its outcome.

    :param transport: Transport to send through
    :type transport: Transport
    :param request: Fully resolved request
    :type request: httpx.Request
    :return: Immutable response for 2xx statuses
    :rtype: Response
    :raises StatusCodeError: For statuses outside 200-299, body included
    :raises InvalidResponseError: When the reply is not a valid HTTP response
    :raises RequestFailedError: For any other transport failure
    """
    try:
        response = await transport.send(request)
        if not isinstance(response, httpx.Response):
            raise InvalidResponseError(
                f"Transport returned {type(response).__name__}, not an HTTP response"
            )
        try:
            body = await response.aread()
        finally:
            await response.aclose()
    except (FetchError, asyncio.CancelledError):
        raise
    except httpx.RemoteProtocolError as e:
        raise InvalidResponseError(f"Malformed HTTP response: {e}") from e
    except Exception as e:
        code = classify_transport_error(e)
        logger.debug(
            "Transport error for %s %s: %s (%s)",
            request.method,
            sanitize_url(str(request.url)),
            type(e).__name__,
            code.value,
        )
        raise RequestFailedError(e, code) from e

    if not 200 <= response.status_code <= 299:
        raise StatusCodeError(response.status_code, body, response.headers)

    try:
        final_url = str(response.url)
    except RuntimeError:
        final_url = str(request.url)

    return Response(
        data=body,
        status_code=response.status_code,
        headers=response.headers,
        url=final_url,
    )

"""High-level JSON and upload helpers on top of :class:`FetchClient`.

:class:`FetchService` wraps one client and offers the calls most API
wrappers need: typed JSON reads and writes, deletes and multipart
uploads. It is an ordinary object; build one per API and pass it where
it is needed.

Examples:
    >>> async with FetchService.create(base_url="https://api.example.com") as api:
    ...     users = await api.get_json("/users", list[User], query={"page": "1"})
    ...     created = await api.post_json("/users", NewUser(name="alice"), User)
"""

import functools
import logging
from typing import Any, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import TypeAdapter

from .client import Configuration, FetchClient, MetricsHandler
from .models import HTTPMethod, Request, Response
from .utils.http.codec import Encoder, encode_json
from .utils.http.interceptors import Interceptor
from .utils.http.multipart import MultipartFormData, MultipartStream
from .utils.http.retry import RetryPolicy
from .utils.http.transport import Transport
from .utils.security import sanitize_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

JSON_CONTENT_TYPE = "application/json"


def _with_content_type(
    headers: Optional[Mapping[str, str]], content_type: str
) -> dict:
    merged = dict(headers or {})
    if not any(key.lower() == "content-type" for key in merged):
        merged["Content-Type"] = content_type
    return merged


class FetchService:
    """Typed convenience calls over a :class:`FetchClient`.

    A service built with :meth:`create` owns its client and closes it on
    :meth:`aclose`; a client passed in is left for the caller to close.

    :param client: Client to send requests through
    :type client: FetchClient
    """

    def __init__(self, client: FetchClient):
        self._client = client
        self._owns_client = False

    @classmethod
    def create(
        cls,
        base_url: Optional[str] = None,
        *,
        default_headers: Optional[Mapping[str, str]] = None,
        default_query: Optional[Mapping[str, str]] = None,
        transport: Optional[Transport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        interceptors: Sequence[Interceptor] = (),
        metrics_handler: Optional[MetricsHandler] = None,
    ) -> "FetchService":
        """Create a service with its own client.

        :param base_url: Base URL for relative paths
        :type base_url: Optional[str]
        :param default_headers: Headers sent with every request
        :type default_headers: Optional[Mapping[str, str]]
        :param default_query: Query parameters sent with every request
        :type default_query: Optional[Mapping[str, str]]
        :param transport: Transport to use; an httpx transport by default
        :type transport: Optional[Transport]
        :param retry_policy: Retry policy; retries are off by default
        :type retry_policy: Optional[RetryPolicy]
        :param interceptors: Interceptors in execution order
        :type interceptors: Sequence[Interceptor]
        :param metrics_handler: Optional per-attempt metrics hook
        :type metrics_handler: Optional[MetricsHandler]
        :return: Service owning a new client
        :rtype: FetchService
        :raises ConfigurationError: If ``base_url`` is not absolute
        """
        configuration = Configuration(
            base_url=base_url,
            default_headers=default_headers or {},
            default_query=default_query or {},
            transport=transport,
            retry_policy=retry_policy or RetryPolicy(),
            interceptors=tuple(interceptors),
            metrics_handler=metrics_handler,
        )
        service = cls(FetchClient(configuration))
        service._owns_client = True
        return service

    @property
    def client(self) -> FetchClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FetchService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get_json(
        self,
        path: str,
        shape: Type[T],
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> T:
        """GET ``path`` and decode the JSON response into ``shape``.

        :param path: Path relative to the base URL, or an absolute URL
        :type path: str
        :param shape: Target type
        :type shape: Type[T]
        :param query: Query parameters for this call
        :type query: Optional[Mapping[str, str]]
        :param headers: Headers for this call
        :type headers: Optional[Mapping[str, str]]
        :param decoder: Optional ``TypeAdapter`` with custom settings
        :type decoder: Optional[TypeAdapter]
        :return: Decoded value
        :rtype: T
        """
        request = Request(path, HTTPMethod.GET, headers=dict(headers or {}))
        response = await self._client.perform(request, query)
        return self._client.decode_json(shape, response, decoder=decoder)

    async def post_json(
        self,
        path: str,
        body: Any,
        shape: Optional[Type[T]] = None,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        encoder: Optional[Encoder] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> Any:
        """POST ``body`` as JSON.

        :return: The decoded response when ``shape`` is given, otherwise
                 the raw :class:`Response`
        :raises EncodingFailedError: If ``body`` cannot be serialized;
                                     nothing is sent
        """
        return await self._send_json(
            HTTPMethod.POST, path, body, shape, query, headers, encoder, decoder
        )

    async def put_json(
        self,
        path: str,
        body: Any,
        shape: Optional[Type[T]] = None,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        encoder: Optional[Encoder] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> Any:
        """PUT ``body`` as JSON. See :meth:`post_json`."""
        return await self._send_json(
            HTTPMethod.PUT, path, body, shape, query, headers, encoder, decoder
        )

    async def patch_json(
        self,
        path: str,
        body: Any,
        shape: Optional[Type[T]] = None,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        encoder: Optional[Encoder] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> Any:
        """PATCH ``body`` as JSON. See :meth:`post_json`."""
        return await self._send_json(
            HTTPMethod.PATCH, path, body, shape, query, headers, encoder, decoder
        )

    async def delete(
        self,
        path: str,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Response:
        """DELETE ``path`` and return the raw response.

        :param path: Path relative to the base URL, or an absolute URL
        :type path: str
        :param query: Query parameters for this call
        :type query: Optional[Mapping[str, str]]
        :param headers: Headers for this call
        :type headers: Optional[Mapping[str, str]]
        :return: Response
        :rtype: Response
        """
        request = Request(path, HTTPMethod.DELETE, headers=dict(headers or {}))
        return await self._client.perform(request, query)

    async def upload(
        self,
        path: str,
        form: MultipartFormData,
        shape: Optional[Type[T]] = None,
        stream: bool = False,
        method: HTTPMethod = HTTPMethod.POST,
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        decoder: Optional[TypeAdapter] = None,
    ) -> Any:
        """Send a multipart form.

        With ``stream`` the body is produced lazily and sent with an exact
        ``Content-Length``; each attempt reads a fresh stream over the
        parts present when this method was called.

        :param path: Path relative to the base URL, or an absolute URL
        :type path: str
        :param form: Form to send
        :type form: MultipartFormData
        :param shape: Optional type to decode the response into
        :type shape: Optional[Type[T]]
        :param stream: Stream the body instead of buffering it
        :type stream: bool
        :param method: HTTP method
        :type method: HTTPMethod
        :return: The decoded response when ``shape`` is given, otherwise
                 the raw :class:`Response`
        :rtype: Any
        """
        request_headers = dict(headers or {})
        request_headers["Content-Type"] = form.content_type

        if stream:
            body_stream = functools.partial(MultipartStream, form.parts, form.boundary)
            request = Request(
                path,
                method,
                headers=request_headers,
                body_stream=body_stream,
                content_length=body_stream().content_length,
            )
        else:
            encoded = form.build()
            request = Request(path, method, headers=request_headers, body=encoded.data)

        response = await self._client.perform(request, query)
        if shape is None:
            return response
        return self._client.decode_json(shape, response, decoder=decoder)

    async def _send_json(
        self,
        method: HTTPMethod,
        path: str,
        body: Any,
        shape: Optional[Type[T]],
        query: Optional[Mapping[str, str]],
        headers: Optional[Mapping[str, str]],
        encoder: Optional[Encoder],
        decoder: Optional[TypeAdapter],
    ) -> Any:
        data = encode_json(body, encoder)
        request = Request(
            path,
            method,
            headers=_with_content_type(headers, JSON_CONTENT_TYPE),
            body=data,
        )
        logger.debug(
            "Sending %d byte JSON body with %s %s",
            len(data),
            method.value,
            sanitize_url(path),
        )
        response = await self._client.perform(request, query)
        if shape is None:
            return response
        return self._client.decode_json(shape, response, decoder=decoder)

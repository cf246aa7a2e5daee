"""Request interceptors.

Interceptors are run by ``FetchClient`` in the order they appear in the
configuration. Each one may rewrite the outbound request (``adapt``) and
is told about the outcome of every attempt (``observe``), including
attempts that are about to be retried.

``adapt`` runs as a pipeline: each interceptor receives the previous
one's output. An exception from ``adapt`` aborts the attempt before the
transport is called. Exceptions from ``observe`` are logged and
otherwise ignored; they never change the outcome of a request.
"""

import inspect
import logging
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Union

import httpx

from ...exceptions import FetchError, RequestFailedError
from ...models import Response
from ..security import sanitize_headers, sanitize_url
from .transport import TransportErrorCode

logger = logging.getLogger(__name__)

Result = Union[Response, FetchError]


class Interceptor:
    """Base interceptor with no-op hooks.

    Subclasses override either hook, or both. Hooks may be coroutines or
    plain functions.
    """

    async def adapt(self, request: httpx.Request) -> httpx.Request:
        """Return the request to send, possibly modified or replaced."""
        return request

    async def observe(self, result: Result, request: httpx.Request) -> None:
        """Observe the outcome of one attempt."""
        return None


async def _call(hook: Callable, *args):
    value = hook(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


class InterceptorChain:
    """Ordered collection of interceptors.

    Objects that only define one of ``adapt`` or ``observe`` are accepted;
    the missing hook is skipped.

    :param interceptors: Interceptors in execution order
    :type interceptors: Sequence[Interceptor]
    """

    def __init__(self, interceptors: Sequence[Interceptor] = ()):
        self.interceptors = tuple(interceptors)

    def __len__(self) -> int:
        return len(self.interceptors)

    async def adapt(self, request: httpx.Request) -> httpx.Request:
        """Run every ``adapt`` hook in order.

        :param request: Outbound request built for this attempt
        :type request: httpx.Request
        :return: Request to hand to the transport
        :rtype: httpx.Request
        :raises FetchError: Raised by an interceptor, or wrapping any other
                            exception as :class:`RequestFailedError`
        """
        for interceptor in self.interceptors:
            hook = getattr(interceptor, "adapt", None)
            if hook is None:
                continue
            try:
                request = await _call(hook, request)
            except FetchError:
                raise
            except Exception as e:
                logger.debug(
                    "Interceptor %s failed to adapt request: %s",
                    type(interceptor).__name__,
                    e,
                )
                raise RequestFailedError(e, TransportErrorCode.UNKNOWN) from e
            if not isinstance(request, httpx.Request):
                raise RequestFailedError(
                    TypeError(
                        f"{type(interceptor).__name__}.adapt returned "
                        f"{type(request).__name__}, expected httpx.Request"
                    ),
                    TransportErrorCode.UNKNOWN,
                )
        return request

    async def observe(self, result: Result, request: httpx.Request) -> None:
        """Run every ``observe`` hook in order, isolating failures.

        :param result: Response or error of the attempt
        :type result: Union[Response, FetchError]
        :param request: The adapted request that was attempted
        :type request: httpx.Request
        """
        for interceptor in self.interceptors:
            hook = getattr(interceptor, "observe", None)
            if hook is None:
                continue
            try:
                await _call(hook, result, request)
            except Exception:
                logger.warning(
                    "Interceptor %s raised in observe; ignoring",
                    type(interceptor).__name__,
                    exc_info=True,
                )


class BodyRedaction(str, Enum):
    """How ``LoggingInterceptor`` treats response bodies."""

    NONE = "none"
    REDACT_BODIES = "redact_bodies"


class LoggingInterceptor(Interceptor):
    """Minimal logging interceptor for debugging or lightweight telemetry.

    Logs one line per outbound request and one per outcome. Header values
    are passed through :func:`~fetchkit.utils.security.sanitize_headers`,
    so credentials, cookies and API keys are always replaced with
    ``<redacted>``, as are headers named in ``redacted_headers``
    (case-insensitive); response bodies are only logged when
    ``body_redaction`` is ``BodyRedaction.NONE``.

    :param redacted_headers: Additional header names whose values are never logged
    :type redacted_headers: Iterable[str]
    :param body_redaction: Response body logging strategy
    :type body_redaction: BodyRedaction
    :param log: Logger or callable receiving each line; defaults to this
                module's logger at INFO
    :type log: Optional[Union[logging.Logger, Callable[[str], None]]]
    """

    PREFIX = "[fetchkit]"

    def __init__(
        self,
        redacted_headers: Iterable[str] = ("Authorization",),
        body_redaction: BodyRedaction = BodyRedaction.REDACT_BODIES,
        log: Optional[Union[logging.Logger, Callable[[str], None]]] = None,
    ):
        self.redacted_headers = {name.lower() for name in redacted_headers}
        self.body_redaction = BodyRedaction(body_redaction)
        if log is None:
            log = logger
        self._log = log.info if isinstance(log, logging.Logger) else log

    def _render_headers(self, headers: httpx.Headers) -> str:
        sanitized = sanitize_headers(headers, redacted=self.redacted_headers)
        return ", ".join(f"{key}: {value}" for key, value in sanitized.items())

    async def adapt(self, request: httpx.Request) -> httpx.Request:
        summary = f"{self.PREFIX} → {request.method} {sanitize_url(str(request.url))}"
        if request.headers:
            summary += f" [headers: {self._render_headers(request.headers)}]"
        self._log(summary)
        return request

    async def observe(self, result: Result, request: httpx.Request) -> None:
        url = sanitize_url(str(request.url))
        if isinstance(result, Response):
            line = f"{self.PREFIX} ← {result.status_code} {url}"
            if result.data and self.body_redaction == BodyRedaction.NONE:
                line += f" body={result.text}"
        else:
            line = f"{self.PREFIX} ← error {result.code}: {result.message} {url}"
        self._log(line)

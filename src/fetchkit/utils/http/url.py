"""URL resolution and query merging.

Request URLs may be absolute or relative. Relative URLs are joined onto
the configured base URL; absolute URLs are used as-is. Query parameters
from configuration defaults and per-call overrides are appended to the
query string the URL already carries, without replacing existing items.
"""

import logging
from typing import Mapping, Optional, Union
from urllib.parse import SplitResult, quote, urlencode, urlsplit, urlunsplit

import httpx

from ...exceptions import InvalidURLError
from ..security import sanitize_url

logger = logging.getLogger(__name__)

QueryMap = Mapping[str, object]


def merge_query(
    defaults: Optional[QueryMap] = None,
    overrides: Optional[QueryMap] = None,
) -> dict:
    """Merge default query parameters with per-call overrides.

    Overrides win on key collisions. Key order is defaults first, then
    any keys only present in the overrides.

    :param defaults: Query parameters configured on the client
    :type defaults: Optional[Mapping[str, object]]
    :param overrides: Query parameters supplied for one call
    :type overrides: Optional[Mapping[str, object]]
    :return: Effective query parameters
    :rtype: dict
    """
    merged = dict(defaults or {})
    merged.update(overrides or {})
    return merged


def _split(url: str) -> SplitResult:
    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL: {e}", url=url) from e
    return parts


def _join_path(base_path: str, relative_path: str) -> str:
    if relative_path.startswith("/"):
        relative_path = relative_path[1:]
    if not relative_path:
        return base_path
    if base_path.endswith("/"):
        return base_path + relative_path
    return f"{base_path}/{relative_path}"


def _append_query(existing: str, query: Mapping[str, object]) -> str:
    if not query:
        return existing
    encoded = urlencode(
        [(str(k), "" if v is None else str(v)) for k, v in query.items()],
        quote_via=quote,
    )
    if not existing:
        return encoded
    return f"{existing}&{encoded}"


def resolve_url(
    url: Union[str, httpx.URL],
    base_url: Optional[Union[str, httpx.URL]] = None,
    query: Optional[QueryMap] = None,
) -> str:
    """Build the final absolute URL for a request.

    A URL without a scheme is treated as relative and appended to
    ``base_url`` after stripping a single leading ``/``. A URL with a
    scheme is used as-is and ``base_url`` is ignored. ``query`` items
    are appended after any query string already present; existing items
    are preserved, so duplicates are possible.

    :param url: Request URL or path
    :type url: Union[str, httpx.URL]
    :param base_url: Optional base URL for relative requests
    :type base_url: Optional[Union[str, httpx.URL]]
    :param query: Already merged query parameters to append
    :type query: Optional[Mapping[str, object]]
    :return: Absolute URL string
    :rtype: str
    :raises InvalidURLError: If the URL is relative without a base URL,
                             or any component fails to parse
    """
    raw = str(url)
    parts = _split(raw)

    if not parts.scheme:
        if base_url is None:
            raise InvalidURLError("Relative URL requires a base URL", url=raw)
        base = _split(str(base_url))
        if not base.scheme or not base.netloc:
            raise InvalidURLError("Base URL must be absolute", url=str(base_url))
        query_string = base.query
        if parts.query:
            query_string = (
                f"{query_string}&{parts.query}" if query_string else parts.query
            )
        parts = SplitResult(
            scheme=base.scheme,
            netloc=base.netloc,
            path=_join_path(base.path, parts.path),
            query=query_string,
            fragment=parts.fragment,
        )

    resolved = urlunsplit(parts._replace(query=_append_query(parts.query, query or {})))

    try:
        httpx.URL(resolved)
    except (httpx.InvalidURL, ValueError, TypeError) as e:
        raise InvalidURLError(f"Malformed URL: {e}", url=resolved) from e

    logger.debug("Resolved %s -> %s", sanitize_url(raw), sanitize_url(resolved))
    return resolved

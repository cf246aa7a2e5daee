"""Value objects shared across fetchkit."""

from .request import BodyStream, CachePolicy, HTTPMethod, Request, Response

__all__ = [
    "BodyStream",
    "CachePolicy",
    "HTTPMethod",
    "Request",
    "Response",
]

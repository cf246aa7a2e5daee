"""JSON encoding and decoding for request and response bodies.

Response bodies are decoded into a target *shape*: anything pydantic can
validate, such as a ``BaseModel`` subclass, a dataclass, a ``TypedDict``
or a plain annotation like ``dict[str, int]``. Three decode modes are
offered: direct, after a byte-to-byte transform, and after walking a key
path into the document. Every failure surfaces as a
:class:`~fetchkit.exceptions.FetchError`.

Decoding is strict by default: JSON types must match the shape, so
``"1"`` is not accepted for an ``int`` field. Pass a ``decoder`` to use
an adapter with other settings; it is called in its own default mode.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Callable, Optional, Sequence, Type, TypeVar, Union

from pydantic import TypeAdapter

from ...exceptions import (
    DecodingFailedError,
    EncodingFailedError,
    FetchError,
    MissingKeyPathError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Transform = Callable[[bytes], bytes]
Encoder = Union[TypeAdapter, Callable[[Any], bytes]]


@lru_cache(maxsize=256)
def _cached_adapter(shape: Any) -> TypeAdapter:
    return TypeAdapter(shape)


def get_adapter(shape: Any) -> TypeAdapter:
    """Return a (cached when possible) ``TypeAdapter`` for ``shape``."""
    try:
        return _cached_adapter(shape)
    except TypeError:
        # Unhashable annotations cannot be cached
        return TypeAdapter(shape)


def decode_json(
    shape: Type[T],
    data: bytes,
    decoder: Optional[TypeAdapter] = None,
) -> T:
    """Decode JSON bytes into ``shape``.

    :param shape: Target type
    :type shape: Type[T]
    :param data: JSON document
    :type data: bytes
    :param decoder: Optional adapter to use instead of one built for ``shape``
    :type decoder: Optional[TypeAdapter]
    :return: Decoded value
    :rtype: T
    :raises DecodingFailedError: If the document does not match ``shape``
    """
    try:
        if decoder is not None:
            return decoder.validate_json(data)
        return get_adapter(shape).validate_json(data, strict=True)
    except FetchError:
        raise
    except Exception as e:
        logger.debug("Failed to decode %d bytes into %r: %s", len(data), shape, e)
        raise DecodingFailedError(e) from e


def decode_json_transformed(
    shape: Type[T],
    data: bytes,
    transform: Transform,
    decoder: Optional[TypeAdapter] = None,
) -> T:
    """Apply ``transform`` to the body, then decode the result.

    A :class:`FetchError` raised by the transform passes through
    unchanged; any other exception becomes :class:`DecodingFailedError`.

    :param shape: Target type
    :type shape: Type[T]
    :param data: Raw response body
    :type data: bytes
    :param transform: Byte-to-byte transform, e.g. envelope unwrapping
    :type transform: Callable[[bytes], bytes]
    :param decoder: Optional adapter to use instead of one built for ``shape``
    :type decoder: Optional[TypeAdapter]
    :return: Decoded value
    :rtype: T
    """
    try:
        transformed = transform(data)
    except FetchError:
        raise
    except Exception as e:
        raise DecodingFailedError(e) from e
    return decode_json(shape, transformed, decoder)


def extract_key_path(data: bytes, key_path: Sequence[str]) -> bytes:
    """Locate the value at ``key_path`` and re-serialize it as JSON.

    The value is rendered canonically (no insignificant whitespace,
    UTF-8), so primitives come back as their literal JSON token.

    :param data: JSON document
    :type data: bytes
    :param key_path: Object keys to follow, outermost first
    :type key_path: Sequence[str]
    :return: JSON bytes of the located value
    :rtype: bytes
    :raises DecodingFailedError: If the document is not valid JSON
    :raises MissingKeyPathError: If a key is missing or a non-object is
                                 met before the path ends
    """
    try:
        current = json.loads(data)
    except ValueError as e:
        raise DecodingFailedError(e) from e
    for key in key_path:
        if not isinstance(current, dict) or key not in current:
            raise MissingKeyPathError(key_path)
        current = current[key]
    return json.dumps(current, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def decode_json_at(
    shape: Type[T],
    data: bytes,
    key_path: Sequence[str],
    decoder: Optional[TypeAdapter] = None,
) -> T:
    """Decode the value found at ``key_path`` into ``shape``.

    :param shape: Target type
    :type shape: Type[T]
    :param data: JSON document
    :type data: bytes
    :param key_path: Object keys to follow, outermost first
    :type key_path: Sequence[str]
    :param decoder: Optional adapter to use instead of one built for ``shape``
    :type decoder: Optional[TypeAdapter]
    :return: Decoded value
    :rtype: T
    """
    return decode_json(shape, extract_key_path(data, key_path), decoder)


def encode_json(value: Any, encoder: Optional[Encoder] = None) -> bytes:
    """Encode a request body value as JSON bytes.

    :param value: Value to encode (model, dataclass, mapping, list, ...)
    :type value: Any
    :param encoder: Optional adapter or callable returning bytes
    :type encoder: Optional[Union[TypeAdapter, Callable[[Any], bytes]]]
    :return: JSON document
    :rtype: bytes
    :raises EncodingFailedError: If the value cannot be serialized
    """
    try:
        if encoder is None:
            return get_adapter(type(value)).dump_json(value)
        if isinstance(encoder, TypeAdapter):
            return encoder.dump_json(value)
        return encoder(value)
    except FetchError:
        raise
    except Exception as e:
        raise EncodingFailedError(e) from e

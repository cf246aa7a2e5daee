"""multipart/form-data body builder.

This module builds RFC 2046 style multipart bodies from named text
fields and binary parts. Bodies can be produced fully buffered, or as a
single-use stream whose total length is known before the first byte is
read so it can be sent with an exact ``Content-Length``.

Parts are emitted in the order they were added. Duplicate names are
allowed, as with HTML forms. The boundary must not occur inside any
payload; this is not checked.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

CRLF = b"\r\n"


@dataclass(frozen=True)
class Part:
    """A single form part.

    :param name: Form field name
    :type name: str
    :param data: Raw payload
    :type data: bytes
    :param filename: Optional filename for file uploads
    :type filename: Optional[str]
    :param mime_type: Optional MIME type of the payload
    :type mime_type: Optional[str]
    """

    name: str
    data: bytes
    filename: Optional[str] = None
    mime_type: Optional[str] = None

    def header_bytes(self, boundary: str) -> bytes:
        """Render the boundary line and part headers, up to the blank line."""
        disposition = f'Content-Disposition: form-data; name="{self.name}"'
        if self.filename is not None:
            disposition += f'; filename="{self.filename}"'
        lines = [f"--{boundary}", disposition]
        if self.mime_type is not None:
            lines.append(f"Content-Type: {self.mime_type}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


class EncodedForm(NamedTuple):
    """A fully buffered multipart body and its ``Content-Type`` value."""

    data: bytes
    content_type: str


class MultipartStream:
    """Lazy, forward-only producer of a multipart body.

    The stream yields one segment at a time: each part's headers, its
    payload, the trailing CRLF, then the closing boundary. It supports
    both ``for`` and ``async for`` and can be read exactly once; once
    exhausted it stays exhausted.

    :param parts: Snapshot of the form parts
    :type parts: Tuple[Part, ...]
    :param boundary: Boundary token
    :type boundary: str
    """

    def __init__(self, parts: Tuple[Part, ...], boundary: str):
        self.boundary = boundary
        self.content_type = _content_type(boundary)
        self._parts = parts
        self.content_length = sum(
            len(part.header_bytes(boundary)) + len(part.data) + len(CRLF)
            for part in parts
        ) + len(_closing(boundary))
        self._segments = self._generate()

    def _generate(self) -> Iterator[bytes]:
        for part in self._parts:
            yield part.header_bytes(self.boundary)
            yield part.data
            yield CRLF
        yield _closing(self.boundary)

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        return next(self._segments)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        try:
            return next(self._segments)
        except StopIteration:
            raise StopAsyncIteration from None


def _content_type(boundary: str) -> str:
    return f"multipart/form-data; boundary={boundary}"


def _closing(boundary: str) -> bytes:
    return f"--{boundary}--\r\n".encode("utf-8")


class MultipartFormData:
    """Builder for multipart/form-data bodies.

    :param boundary: Boundary token; a random one is generated when omitted
    :type boundary: Optional[str]

    .. example::
       >>> form = MultipartFormData(boundary="B")
       >>> form.add_field("name", "alice")
       >>> form.add_data("file", "hello.txt", "text/plain", b"hi")
       >>> body, content_type = form.build()
    """

    def __init__(self, boundary: Optional[str] = None):
        self.boundary = boundary or f"Boundary-{str(uuid.uuid4()).upper()}"
        self._parts: List[Part] = []

    @property
    def parts(self) -> Tuple[Part, ...]:
        return tuple(self._parts)

    @property
    def content_type(self) -> str:
        """Value for the request ``Content-Type`` header."""
        return _content_type(self.boundary)

    def add_field(self, name: str, value: str) -> None:
        """Append a textual field, encoded as UTF-8."""
        self._parts.append(Part(name=name, data=value.encode("utf-8")))

    def add_data(self, name: str, filename: str, mime_type: str, data: bytes) -> None:
        """Append a binary payload with a filename and MIME type."""
        self._parts.append(
            Part(name=name, data=bytes(data), filename=filename, mime_type=mime_type)
        )

    def add_part(
        self,
        name: str,
        data: bytes,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> None:
        """Append a part with any combination of filename and MIME type."""
        self._parts.append(
            Part(name=name, data=bytes(data), filename=filename, mime_type=mime_type)
        )

    def build(self) -> EncodedForm:
        """Build the complete body and its ``Content-Type`` header value.

        Calling this repeatedly without adding parts yields identical bytes.

        :return: Encoded body and content type
        :rtype: EncodedForm
        """
        body = bytearray()
        for part in self._parts:
            body += part.header_bytes(self.boundary)
            body += part.data
            body += CRLF
        body += _closing(self.boundary)
        logger.debug(
            "Built multipart body: %d part(s), %d bytes", len(self._parts), len(body)
        )
        return EncodedForm(bytes(body), self.content_type)

    def build_stream(self) -> MultipartStream:
        """Build a single-use stream over the body.

        The stream takes a snapshot of the current parts, so adding parts
        afterwards does not affect it.

        :return: Stream exposing ``content_type`` and ``content_length``
        :rtype: MultipartStream
        """
        stream = MultipartStream(self.parts, self.boundary)
        logger.debug(
            "Built multipart stream: %d part(s), %d bytes",
            len(self._parts),
            stream.content_length,
        )
        return stream

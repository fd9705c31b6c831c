from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterable, Iterator, Optional, Union

from .errors import BadRequest

CHUNK_SIZE = 64 * 1024
MAX_CHUNK_LINE = 65536


class RequestBody:
    """
    Inbound request body of known length, read lazily from the socket.

    Exposes both ``read`` and iteration so the outbound client can stream it
    without buffering, and ``len`` so the same Content-Length is forwarded.
    """

    def __init__(self, stream: BinaryIO, length: int,
                 chunk_size: int = CHUNK_SIZE):
        self._stream = stream
        self._length = length
        self._remaining = length
        self._chunk_size = chunk_size

    def __len__(self) -> int:
        return self._length

    @property
    def remaining(self) -> int:
        """Bytes not yet read from the inbound stream."""
        return self._remaining

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._stream.read(size)
        if not data:
            raise BadRequest(
                f"request body ended after {self._length - self._remaining} "
                f"of {self._length} bytes"
            )
        self._remaining -= len(data)
        return data

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self._chunk_size)
            if not chunk:
                return
            yield chunk


class ChunkedRequestBody:
    """Decodes an inbound ``Transfer-Encoding: chunked`` body as it is read."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._done = False

    def _read_line(self) -> bytes:
        line = self._stream.readline(MAX_CHUNK_LINE + 1)
        if len(line) > MAX_CHUNK_LINE:
            raise BadRequest("chunk header line too long")
        if not line.endswith(b"\n"):
            raise BadRequest("request body ended inside a chunk header")
        return line.strip()

    def _read_exact(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            chunk = self._stream.read(size - len(data))
            if not chunk:
                raise BadRequest("request body ended inside a chunk")
            data.extend(chunk)
        return bytes(data)

    def __iter__(self) -> Iterator[bytes]:
        while not self._done:
            header = self._read_line()
            size_field = header.split(b";", 1)[0]
            try:
                size = int(size_field, 16)
            except ValueError:
                raise BadRequest(f"invalid chunk size {size_field!r}") from None
            if size < 0:
                raise BadRequest(f"invalid chunk size {size_field!r}")

            if size == 0:
                # Discard trailers up to the terminating blank line
                while self._read_line():
                    pass
                self._done = True
                return

            data = self._read_exact(size)
            if self._read_line():
                raise BadRequest("missing CRLF after chunk data")
            yield data


@dataclass
class ProxyRequest:
    """An inbound request, reduced to what is forwarded upstream."""
    method: str
    target: str
    body: Optional[Union[bytes, Iterable[bytes]]] = None
    user_agent: Optional[str] = None

    @property
    def headers(self) -> Dict[str, Optional[str]]:
        """Outbound headers. A None value removes the session default."""
        return {'User-Agent': self.user_agent or None}


@dataclass
class PlainTextResponse:
    """A text/plain response produced by the relay itself."""
    status_code: int
    body: str

    content_type = 'text/plain'

    def encode(self) -> bytes:
        return self.body.encode('utf-8')

    @classmethod
    def create_error(cls, status_code: int, message: str) -> 'PlainTextResponse':
        """Create an error response."""
        return cls(status_code=status_code, body=message)

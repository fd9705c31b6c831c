import logging
import re
from typing import Optional
from urllib.parse import urlsplit

import requests

from .errors import BadRequest
from .log import TRACE
from .models import CHUNK_SIZE, ProxyRequest

# The query parameter carrying the target URL
QUERY_KEY = "q"

USAGE_HINT = f"usage: /proxy?{QUERY_KEY}=<target-url>"

_INVALID_URL_CHARS = re.compile(r"[\x00-\x20\x7f]")


class ProxyHandler:
    """
    Forwards a single inbound request to a caller-specified target.

    One instance is shared by every request thread. Its ``requests.Session``
    is the only shared mutable state and is safe for concurrent use.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None,
                 chunk_size: int = CHUNK_SIZE):
        """
        Initialize the proxy handler.

        Args:
            session: Outbound HTTP session, created when not given
            logger: Logger for forwarding events
            chunk_size: Block size used when relaying response bodies
        """
        self._session = session or self._create_session()
        self._logger = logger or logging.getLogger(__name__)
        self._chunk_size = chunk_size

    @staticmethod
    def _create_session() -> requests.Session:
        session = requests.Session()
        # Relayed bytes must be exactly what the upstream sent
        session.headers['Accept-Encoding'] = 'identity'
        return session

    @property
    def session(self) -> requests.Session:
        """Get the outbound session."""
        return self._session

    def close(self) -> None:
        """Release pooled upstream connections."""
        self._session.close()

    def parse_target(self, raw: str) -> str:
        """
        Validate the target URL supplied by the caller.

        Args:
            raw: Value of the ``q`` query parameter

        Returns:
            The target URL, unchanged

        Raises:
            BadRequest: The value is not an absolute URL
        """
        if _INVALID_URL_CHARS.search(raw):
            raise BadRequest(f"invalid target URL {raw!r}: contains whitespace "
                             "or control characters")
        try:
            parts = urlsplit(raw)
            # Accessing the port validates it
            parts.port
        except ValueError as e:
            raise BadRequest(f"invalid target URL {raw!r}: {e}", e) from e

        if not parts.scheme or not parts.netloc or not parts.hostname:
            raise BadRequest(f"invalid target URL {raw!r}: not an absolute URL")
        return raw

    def build_request(self, request: ProxyRequest) -> requests.PreparedRequest:
        """Prepare the outbound request through the shared session."""
        outbound = requests.Request(
            method=request.method,
            url=request.target,
            headers=request.headers,
            data=request.body,
        )
        try:
            return self._session.prepare_request(outbound)
        except (requests.RequestException, ValueError) as e:
            raise BadRequest(
                f"cannot build {request.method} request to {request.target}: {e}",
                e,
            ) from e

    def send(self, prepared: requests.PreparedRequest) -> requests.Response:
        """
        Execute the outbound request and return the unread response.

        Upstream error statuses are returned, not raised. Redirects are only
        followed when the body can be sent again, otherwise the redirect
        response itself is returned. No timeout is applied beyond what the
        session and the operating system impose.
        """
        settings = self._session.merge_environment_settings(
            prepared.url, {}, True, None, None
        )
        # A streamed body is consumed by the first hop and cannot be resent
        replayable = prepared.body is None or isinstance(prepared.body, (bytes, str))
        try:
            return self._session.send(prepared, allow_redirects=replayable,
                                      **settings)
        except (requests.RequestException, OSError) as e:
            raise BadRequest(
                f"{prepared.method} {prepared.url} failed: {e}", e
            ) from e

    def forward(self, request: ProxyRequest) -> requests.Response:
        """Validate, build and send one outbound request."""
        self.parse_target(request.target)
        prepared = self.build_request(request)
        self._logger.log(TRACE, f"forward {prepared.method} {prepared.url}")
        response = self.send(prepared)
        self._logger.debug(f"upstream {prepared.method} {prepared.url} -> {response.status_code}")
        return response

    def relay(self, response: requests.Response, writer) -> int:
        """
        Copy the upstream status code and raw body to the inbound response.

        ``writer`` is the BaseHTTPRequestHandler serving the inbound request.

        Headers other than the status line are not propagated.

        Returns:
            Number of body bytes written
        """
        written = 0
        try:
            writer.send_response(response.status_code)
            writer.end_headers()
            for chunk in response.raw.stream(self._chunk_size,
                                             decode_content=False):
                writer.wfile.write(chunk)
                written += len(chunk)
            writer.wfile.flush()
            # Body exhausted, the connection can go back to the pool
            response.raw.release_conn()
        finally:
            response.close()
        self._logger.log(TRACE, f"relayed {written} bytes from {response.url}")
        return written

import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Iterable, Optional, Union
from urllib.parse import parse_qs, urlsplit

from .errors import BadRequest
from .models import ChunkedRequestBody, PlainTextResponse, ProxyRequest, RequestBody
from .proxy import QUERY_KEY, USAGE_HINT

PROXY_PATH = "/proxy"
GREETING = "Hello, heroku-proxy"

# Unread request bodies up to this size are consumed before answering an error
DISCARD_LIMIT = 1024 * 1024


class RequestHandler(BaseHTTPRequestHandler):
    """
    Routes every inbound request, whatever its method.

    ``/proxy`` is forwarded through the server's ProxyHandler, any other
    path gets the greeting. The owning server provides ``proxy`` and
    ``logger`` attributes.
    """

    server_version = "heroku-proxy"

    @property
    def logger(self) -> logging.Logger:
        return self.server.logger

    def handle_one_request(self):
        """Handle a single HTTP request, dispatching on path instead of method."""
        try:
            self.raw_requestline = self.rfile.readline(65537)
            if len(self.raw_requestline) > 65536:
                self.requestline = ''
                self.request_version = ''
                self.command = ''
                self.send_error(HTTPStatus.REQUEST_URI_TOO_LONG)
                return
            if not self.raw_requestline:
                self.close_connection = True
                return
            if not self.parse_request():
                return
            self.route()
            self.wfile.flush()
        except TimeoutError as e:
            self.log_error("Request timed out: %r", e)
            self.close_connection = True

    def route(self) -> None:
        url = urlsplit(self.path)
        if url.path == PROXY_PATH:
            self.handle_proxy(url.query)
        else:
            self.send_text(PlainTextResponse(HTTPStatus.OK, GREETING))

    def handle_proxy(self, query: str) -> None:
        """Forward the request to the URL named by the ``q`` parameter."""
        target = parse_qs(query).get(QUERY_KEY, [""])[0]
        if not target:
            self.send_text(PlainTextResponse(HTTPStatus.OK, USAGE_HINT))
            return

        # The inbound body may be left unread on failure
        self.close_connection = True
        proxy = self.server.proxy
        body = None
        try:
            body = self._request_body()
            request = ProxyRequest(
                method=self.command,
                target=target,
                body=body,
                user_agent=self.headers.get('User-Agent'),
            )
            upstream = proxy.forward(request)
        except BadRequest as e:
            self._reject(e, body)
            return
        except Exception as e:
            self.logger.warning(f"Unexpected error proxying to {target}", exc_info=True)
            self._reject(BadRequest(f"proxy to {target} failed: {e}", e), body)
            return

        try:
            proxy.relay(upstream, self)
        except Exception as e:
            # The status line is already out, only the connection can be dropped
            self.logger.warning(f"Relay from {target} aborted: {e}")

    def _request_body(self) -> Optional[Union[bytes, Iterable[bytes]]]:
        transfer_encoding = self.headers.get('Transfer-Encoding', '')
        if 'chunked' in transfer_encoding.lower():
            return ChunkedRequestBody(self.rfile)

        content_length = self.headers.get('Content-Length')
        if content_length is None:
            return None
        try:
            length = int(content_length)
        except ValueError:
            length = -1
        if length < 0:
            raise BadRequest(f"invalid Content-Length {content_length!r}")
        return RequestBody(self.rfile, length) if length else b""

    def _reject(self, error: BadRequest, body=None) -> None:
        self.logger.warning(f"{self.command} {self.path}: {error.message}")
        if isinstance(body, RequestBody) and 0 < body.remaining <= DISCARD_LIMIT:
            try:
                for _ in body:
                    pass
            except (BadRequest, OSError) as e:
                self.logger.debug(f"Cannot discard request body: {e}")
        self.send_text(PlainTextResponse.create_error(error.status_code, error.message))

    def send_text(self, response: PlainTextResponse) -> None:
        body = response.encode()
        self.send_response(response.status_code)
        self.send_header('Content-Type', response.content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        if self.command != 'HEAD':
            self.wfile.write(body)

    def log_message(self, format, *args):
        """Override to use our logger."""
        self.logger.debug(f"{self.address_string()} - {format % args}")

    def log_error(self, format, *args):
        self.logger.warning(f"{self.address_string()} - {format % args}")

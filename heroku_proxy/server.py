import logging
import threading
import time
from http.server import ThreadingHTTPServer
from typing import Optional, Set, Tuple

from .config import ServerConfig
from .errors import ServeFatal, ShutdownTimeout
from .handler import RequestHandler
from .proxy import ProxyHandler


class _TrackingHTTPServer(ThreadingHTTPServer):
    """Thread-per-connection HTTP server that can drain its request threads."""

    daemon_threads = True
    block_on_close = False

    def __init__(self, server_address: Tuple[str, int], proxy: ProxyHandler,
                 logger: logging.Logger):
        self.proxy = proxy
        self.logger = logger
        self._inflight: Set[threading.Thread] = set()
        self._inflight_lock = threading.Lock()
        super().__init__(server_address, RequestHandler)

    def process_request(self, request, client_address):
        thread = threading.Thread(
            target=self._process_tracked,
            args=(request, client_address),
            daemon=self.daemon_threads,
        )
        with self._inflight_lock:
            self._inflight.add(thread)
        thread.start()

    def _process_tracked(self, request, client_address):
        try:
            self.process_request_thread(request, client_address)
        finally:
            with self._inflight_lock:
                self._inflight.discard(threading.current_thread())

    def inflight(self) -> int:
        """Number of connections still being served."""
        with self._inflight_lock:
            return len(self._inflight)

    def drain(self, timeout: float) -> bool:
        """
        Wait for in-flight request threads to finish.

        Returns:
            True when every thread finished within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        with self._inflight_lock:
            threads = list(self._inflight)
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        return self.inflight() == 0

    def handle_error(self, request, client_address):
        self.logger.warning(f"Error serving {client_address}", exc_info=True)


class ProxyServer:
    """Owns the listening socket and the lifecycle of the relay."""

    def __init__(self, config: Optional[ServerConfig] = None,
                 logger: Optional[logging.Logger] = None,
                 proxy: Optional[ProxyHandler] = None):
        """
        Initialize the proxy server.

        Args:
            config: Bind address, port and shutdown window
            logger: Logger for lifecycle and request events
            proxy: Forwarding handler, created when not given
        """
        self._config = config or ServerConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._proxy = proxy or ProxyHandler(logger=self._logger)

        self._httpd: Optional[_TrackingHTTPServer] = None
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._closed = threading.Event()
        self._shutting_down = False

    @property
    def host(self) -> str:
        """Get the host address."""
        return self._config.host

    @property
    def port(self) -> int:
        """Get the configured port number."""
        return self._config.port

    @property
    def server_address(self) -> Optional[Tuple[str, int]]:
        """Get the bound address, None until the socket is bound."""
        if self._httpd is None:
            return None
        return self._httpd.server_address[:2]

    @property
    def proxy(self) -> ProxyHandler:
        """Get the forwarding handler."""
        return self._proxy

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is bound; False if binding failed or timed out."""
        return self._ready.wait(timeout) and self._httpd is not None

    def start(self) -> None:
        """
        Bind and serve until shutdown.

        Blocks the calling thread until the graceful shutdown handshake has
        finished. A bind or serve failure is logged as critical and returns
        immediately.
        """
        try:
            httpd = _TrackingHTTPServer(
                (self._config.host, self._config.port), self._proxy, self._logger
            )
        except OSError as e:
            error = ServeFatal(f"cannot bind :{self._config.port}: {e}")
            self._logger.critical(f"HTTP server: {error}")
            self._ready.set()
            self._closed.set()
            return

        with self._lock:
            if self._shutting_down:
                httpd.server_close()
                self._ready.set()
                return
            self._httpd = httpd
        self._ready.set()
        host, port = self.server_address
        self._logger.info(f"HTTP server start and bind on {host or '*'}:{port}")

        try:
            httpd.serve_forever()
        except Exception as e:
            self._logger.critical(f"HTTP server: {ServeFatal(str(e))}", exc_info=True)
            httpd.server_close()
            self._proxy.close()
            return

        self._closed.wait()
        self._logger.info("HTTP server closed")

    def shutdown(self) -> None:
        """
        Stop accepting connections and drain in-flight requests.

        Safe to call from any thread and more than once. Requests still
        running when the drain window expires are abandoned.
        """
        with self._lock:
            if self._shutting_down:
                return
            self._shutting_down = True
            httpd = self._httpd

        if httpd is None:
            self._closed.set()
            return

        try:
            httpd.shutdown()
            # New clients are refused while in-flight requests drain
            httpd.socket.close()
            timeout = self._config.shutdown_timeout
            if httpd.drain(timeout):
                self._logger.info("HTTP server success gracefully shutdown")
            else:
                error = ShutdownTimeout(timeout, httpd.inflight())
                self._logger.warning(f"HTTP server gracefully shutdown: {error}")
            httpd.server_close()
            self._proxy.close()
        finally:
            self._closed.set()

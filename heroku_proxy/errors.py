"""Error types raised by the relay."""


class ProxyError(Exception):
    """Base class for all relay errors."""


class ConfigurationWarning(ProxyError):
    """A configuration source held an unusable value and was ignored."""


class BadRequest(ProxyError):
    """The inbound request could not be forwarded."""

    status_code = 400

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ShutdownTimeout(ProxyError):
    """In-flight requests did not finish within the drain window."""

    def __init__(self, timeout: float, pending: int):
        super().__init__(
            f"{pending} request(s) still in flight after {timeout}s"
        )
        self.timeout = timeout
        self.pending = pending


class ServeFatal(ProxyError):
    """The listener failed to start or stopped unexpectedly."""

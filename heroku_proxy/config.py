import argparse
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, TextIO

from .errors import ConfigurationWarning
from .log import LOG_LEVELS

# The environment variable holding the bind port
ENV_PORT = "PORT"

DEFAULT_PORT = 8000
DEFAULT_LOG_LEVEL = "info"
DEFAULT_SHUTDOWN_TIMEOUT = 5.0  # seconds


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the relay, built once at startup."""
    host: str = ""
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    @classmethod
    def from_args(cls, argv: Optional[Sequence[str]] = None,
                  environ: Optional[Mapping[str, str]] = None,
                  stderr: Optional[TextIO] = None) -> 'ServerConfig':
        """
        Resolve the configuration from the environment and command line.

        The command-line port wins over ``PORT``, which wins over the
        built-in default. An invalid ``PORT`` is reported on stderr and
        otherwise ignored.

        Args:
            argv: Command-line arguments, without the program name
            environ: Environment mapping, defaults to ``os.environ``
            stderr: Stream for configuration notices

        Returns:
            The resolved ServerConfig
        """
        environ = os.environ if environ is None else environ
        stderr = sys.stderr if stderr is None else stderr

        default_port = DEFAULT_PORT
        try:
            default_port = resolve_env_port(environ, DEFAULT_PORT)
        except ConfigurationWarning as e:
            stderr.write(f"{e}\n")

        args = build_parser(default_port).parse_args(argv)
        return cls(
            host=args.host,
            port=args.port,
            log_level=args.log_level,
            shutdown_timeout=args.shutdown_timeout,
        )


def resolve_env_port(environ: Mapping[str, str], default: int) -> int:
    """
    Read the bind port from the environment.

    Returns ``default`` when the variable is unset, raises
    ConfigurationWarning when it is set but not a positive integer.
    """
    value = environ.get(ENV_PORT, "")
    if not value:
        return default

    try:
        port = int(value)
    except ValueError:
        port = 0
    if port <= 0:
        raise ConfigurationWarning(
            f"invalid port {value!r}, override as {default}"
        )
    return port


def _non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def build_parser(default_port: int = DEFAULT_PORT) -> argparse.ArgumentParser:
    """Build the command-line parser, seeded with the resolved default port."""
    parser = argparse.ArgumentParser(
        prog="heroku-proxy",
        description="Minimal HTTP relay: /proxy?q=<url> forwards to <url>",
    )
    parser.add_argument("-p", "--port", type=int, default=default_port,
                        help=f"The bind port (default: {default_port})")
    parser.add_argument("--host", default="",
                        help="The bind address (default: all interfaces)")
    parser.add_argument("-l", "--log", dest="log_level",
                        choices=list(LOG_LEVELS), default=DEFAULT_LOG_LEVEL,
                        help="set the log level")
    parser.add_argument("--shutdown-timeout", type=_non_negative_float,
                        default=DEFAULT_SHUTDOWN_TIMEOUT,
                        help="Seconds to wait for in-flight requests on shutdown")
    return parser

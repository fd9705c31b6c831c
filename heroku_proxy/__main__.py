import signal
import threading
from typing import Optional, Sequence

from .config import ServerConfig
from .log import configure_logging
from .server import ProxyServer


def install_signal_handlers(server: ProxyServer) -> None:
    """
    Shut the server down gracefully on SIGINT or SIGTERM.

    Must be called from the main thread. The shutdown runs in a helper
    thread because it waits for the serving loop, which runs in the main
    thread, to stop.
    """
    def _on_signal(signum, frame):
        threading.Thread(target=server.shutdown, name="shutdown",
                         daemon=True).start()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)


def main(argv: Optional[Sequence[str]] = None) -> None:
    config = ServerConfig.from_args(argv)
    logger = configure_logging(config.log_level)

    server = ProxyServer(config, logger=logger)
    install_signal_handlers(server)
    server.start()


if __name__ == "__main__":
    main()

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

LOGGER_NAME = "heroku_proxy"


def configure_logging(level: str = "info") -> logging.Logger:
    """
    Configure the root handler and return the application logger.

    Args:
        level: One of ``warn``, ``info``, ``debug`` or ``trace``

    Returns:
        The ``heroku_proxy`` logger, ready to be injected
    """
    if level not in LOG_LEVELS:
        raise ValueError(f"unknown log level {level!r}")

    logging.basicConfig(
        level=LOG_LEVELS[level],
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(LOG_LEVELS[level])
    return logger

"""Structured logging scoped to one capture run using structlog and contextvars."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

_LOGGER_NAME = "browser_cassette"
_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_structlog() -> None:
    """Configure structlog to render JSON through stdlib logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Inject capture context
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


@contextmanager
def capture_logging(level: str = "WARNING", debug_log: str | Path | None = None) -> Iterator[logging.Logger]:
    """Attach console and debug-file handlers for the duration of one run.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        debug_log: File receiving DEBUG-level logs for the run, disabled when empty

    Yields:
        The package logger the handlers are attached to
    """
    configure_structlog()

    package_logger = logging.getLogger(_LOGGER_NAME)
    previous_level = package_logger.level
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.WARNING))
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handlers.append(console)

    if debug_log:
        path = Path(debug_log).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)

    try:
        yield package_logger
    finally:
        for handler in handlers:
            package_logger.removeHandler(handler)
            handler.close()
        package_logger.setLevel(previous_level)
        clear_capture_context()


def bind_capture_context(url: str, cassette: str) -> None:
    """Bind capture context for all subsequent logs in this async context.

    Args:
        url: The capture target
        cassette: Cassette name relative to the library dir
    """
    structlog.contextvars.bind_contextvars(capture_url=url, cassette=cassette)


def clear_capture_context() -> None:
    """Clear capture context after the run completes."""
    structlog.contextvars.clear_contextvars()


def get_capture_logger(name: str = _LOGGER_NAME) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger carrying the capture context.

    Args:
        name: Logger name

    Returns:
        Bound logger with capture context
    """
    return structlog.get_logger(name)

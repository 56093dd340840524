"""structlog setup shared by the CLI, the live monitor and scan workers.

Records from structlog and from plain stdlib loggers (ccxt, aiohttp) go
through one ProcessorFormatter on stderr, so printed reports on stdout stay
clean. Per-symbol work runs inside symbol_context(), which binds the symbol
into contextvars: every event logged underneath carries it, including events
from asyncio tasks and worker threads started there.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Libraries that log every request at DEBUG/INFO
_CHATTY_LOGGERS = ("ccxt", "aiohttp", "asyncio")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(
    log_level: str = "INFO",
    log_format: str | None = None,
    worker: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Root log level name.
        log_format: "console" or "json". None reads LOG_FORMAT from the
            environment, defaulting to console.
        worker: Set in scan worker processes; binds ``worker_pid`` so
            interleaved output from a process pool can be told apart.
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if worker:
        structlog.contextvars.bind_contextvars(worker_pid=os.getpid())


@contextmanager
def symbol_context(symbol: str) -> Iterator[None]:
    """Bind ``symbol`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(symbol=symbol):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

"""structlog setup plus the timing and exception helpers used by the services.

Output is JSON unless DEBUG is set, in which case the console renderer is used.
Request-scoped fields (request_id, path) are bound through structlog
contextvars by the HTTP middleware and merged into every event.
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from payrecon.config import settings

SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def configure_logging() -> None:
    renderer: Processor = structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=SHARED_PROCESSORS))
    logging.basicConfig(handlers=[handler], level=logging.DEBUG if settings.debug else logging.INFO, force=True)
    # SQL echo goes through its own logger; keep it out of production output
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log how long the wrapped block took.

    The yielded dict is merged into the final event, so the block can attach
    results (counts, ids). If the block raises, the event is logged at warning
    level with ``succeeded=False`` and the exception propagates.

        with log_timing("import_batch", logger=logger, activities=12) as timing:
            outcomes = run()
            timing["accepted"] = 3
    """
    log = logger or get_logger(__name__)
    extra: dict[str, Any] = {}
    started = time.perf_counter()
    succeeded = False
    try:
        yield extra
        succeeded = True
    finally:
        elapsed = round((time.perf_counter() - started) * 1000, 2)
        extra["duration_ms"] = elapsed
        method = getattr(log, level if succeeded else "warning", log.info)
        method(
            f"{operation} {'completed' if succeeded else 'failed'}",
            operation=operation,
            succeeded=succeeded,
            **context,
            **extra,
        )


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` with its type and message as structured fields."""
    method = getattr(logger, level, logger.error)
    fields: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }
    if include_traceback:
        fields["exc_info"] = exc
    method(context, **fields)

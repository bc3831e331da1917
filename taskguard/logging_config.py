import logging
import sys
from typing import Any

import structlog

from taskguard.config import DEBUG, LOG_LEVEL


def setup_logging() -> None:
    """Route stdlib logging and structlog through one renderer for the API and the worker.

    Stdlib records keep their ``extra`` fields, and both kinds of record pick
    up the job context bound with ``bind_job_context``.
    """

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if DEBUG:
        shared_processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )

    renderer = structlog.dev.ConsoleRenderer() if DEBUG else structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors + [structlog.stdlib.ExtraAdder()],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_job_context(**context: Any) -> None:
    """Attach job identifiers to every log line emitted while the job runs."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)

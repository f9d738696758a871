"""Observability for the job board: structured logging and CloudWatch Embedded Metrics.

Log lines carry the ``request_id``, ``method`` and ``path`` bound by
``RequestIdMiddleware`` plus the caller's ``user_id`` bound in ``main.get_context``,
so one request's application, resume and scoring events can be followed together.
Domain events log ids (``application_id``, ``job_id``, ``resume_id``), never
resume contents or job descriptions.

The ATS scoring path emits ``ats_scoring_started``/``succeeded``/``failed``
counters in the ``JobBoardAts`` namespace through `metric_scope` (re-exported
here); set ``AWS_EMF_ENVIRONMENT=Local`` to print them to stdout.

Import `init_observability` and call it early, before creating the FastAPI app.
``LOG_FORMAT=console`` switches from JSON to human-readable output.
"""
from __future__ import annotations

import logging
import os

from aws_embedded_metrics import metric_scope
import structlog

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]

_configured = False


def _setup_logging() -> None:
    """Configure structlog for structured logging (JSON or console)."""

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    # Define shared processors
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Choose renderer based on format
    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard logging root logger
    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    # No formatter needed here, structlog handles it via processors
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def init_observability() -> None:
    """Setup logging. Safe to call more than once; only the first call configures."""
    global _configured
    if _configured:
        return

    _setup_logging()
    _configured = True

    structlog.get_logger(__name__).info("Observability initialized")

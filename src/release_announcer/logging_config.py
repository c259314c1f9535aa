"""Structured logging configuration.

Release runs execute in CI, where logs are the only record of why a
release came out with the priority it did. Every escalation, lookup and
publish step is logged as a structured event so the job output can be
searched and parsed.

Two things are specific to release runs:
- Every event logged while a release is being prepared carries the
  version (``release_context``), so interleaved preview requests in the
  API service can be told apart
- The run handles forge and chat credentials; any event field that looks
  like one is masked before rendering (``redact_secrets``)

Usage:
    from release_announcer.logging_config import setup_logging, get_logger, release_context

    setup_logging(environment="production")
    logger = get_logger(__name__)
    with release_context(version="v0.9.2"):
        logger.info("priority_escalated", repository="paritytech/polkadot", change="#123")
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

REDACTED = "***"

# Event fields whose values are credentials.
_SECRET_MARKERS = ("token", "authorization", "password", "secret")


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor masking credential-like fields."""
    for key, value in event_dict.items():
        if value and any(marker in key.lower() for marker in _SECRET_MARKERS):
            event_dict[key] = REDACTED
    return event_dict


@contextmanager
def release_context(**context: Any) -> Iterator[None]:
    """Bind release fields (version, dry_run, ...) to every event logged inside."""
    with structlog.contextvars.bound_contextvars(**context):
        yield


def setup_logging(
    environment: str | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the application.

    In development: Pretty-printed, colorized output for readability.
    In production: JSON output, one event per line.

    Args:
        environment: "development" or "production". Reads from
                     ENVIRONMENT env var if not provided.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Reads from LOG_LEVEL env var if not provided.
        stream: Where events are written (stderr by default, so the CLI
                can print release notes on stdout)
    """
    env = environment or os.environ.get("ENVIRONMENT", "development")
    level = getattr(logging, (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    output = stream or sys.stderr

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=output.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=True,
    )

    # httpx logs each request through the standard library
    logging.basicConfig(format="%(message)s", stream=output, level=level)


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)

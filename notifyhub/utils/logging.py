# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging for the notification engine and its workers.

Engine modules log through ``logging.getLogger(__name__)`` with %-style
arguments; worker code may use structlog directly. Both go through one
``ProcessorFormatter`` on the root handler, so every line carries the
same timestamp, level and bound context (``tenant_id``, ``instance_id``,
``task``) and is rendered as JSON outside development.

Example:
    >>> from notifyhub.utils.logging import setup_logging, bind_context
    >>> from notifyhub.core.config import get_settings
    >>> setup_logging(get_settings())
    >>> bind_context(task="sweep_digest_buckets")
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from notifyhub.core.config.settings import Settings

# Libraries whose INFO output drowns the delivery log
QUIET_LOGGERS = ("sqlalchemy.engine", "asyncio", "dramatiq", "apscheduler", "redis")


def _render_chain(settings: "Settings") -> list[Processor]:
    if settings.is_development or settings.debug:
        return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(settings: "Settings") -> None:
    """Route structlog and stdlib logging through one structured handler.

    Safe to call more than once; the root handler is replaced.

    Args:
        settings: Application settings; log_level, debug and environment
            pick the level and renderer.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_render_chain(settings),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: object) -> None:
    """Attach key-value pairs to every log line of the current context.

    Sweep actors bind ``task`` so lines from one run can be grouped.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()

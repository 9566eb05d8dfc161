"""structlog configuration.

Every module logs through `structlog.get_logger()` with dotted event
names (`broker.published`, `relay.handler_failed`) and key/value context.
This module only decides the level and the renderer.
"""

import logging

import structlog

from parley.config import settings


def configure_logging(level: str | None = None) -> None:
    """Install a level-filtering structlog pipeline.

    The test environment is pinned to WARNING so success logs from the
    broker and relay stay out of test output.
    """
    name = (level or settings.log_level).upper()
    if settings.environment == "test":
        name = "WARNING"
    numeric = logging.getLevelNamesMapping().get(name, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.environment == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=False,
    )

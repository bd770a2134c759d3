"""Structured logging setup built on structlog."""

import logging
import sys

import structlog

ROOT_LOGGER_NAME = "transcript_relay"


def configure_logging(
    level: str | None = None, json_output: bool | None = None
) -> None:
    """Configure stdlib logging and structlog processors.

    Args:
        level: Log level name. Defaults to the configured ``log_level``.
        json_output: Render JSON lines instead of the console renderer.
            Defaults to the configured ``log_json``.
    """
    from transcript_relay.core.config import settings

    level = level or settings.log_level
    if json_output is None:
        json_output = settings.log_json

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn keeps its own handlers; align their level with ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)

    get_logger(ROOT_LOGGER_NAME).info(
        "logging_configured", level=level, json_output=json_output
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a structlog logger bound to ``name``.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("transcription_started", chat_id=42)
    """
    return structlog.get_logger(name)

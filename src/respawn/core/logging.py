# src/respawn/core/logging.py
"""Logging setup shared by the CLI and the monitor daemon.

structlog loggers and plain stdlib loggers end up on the same root
handlers: stdlib records pass through ProcessorFormatter with the same
pre-chain, so a psutil warning and a checkpoint event render alike.

The console gets either coloured key/value lines or JSON. When the
daemon runs it also appends JSON lines to logs/respawn.log under the
data directory, rotated daily.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

LOG_FILE_NAME = "respawn.log"

# psutil and urllib3 are quiet, but subprocess-heavy adapters can pull in
# chatty loggers on some platforms.
_NOISY_LOGGERS: tuple[str, ...] = (
    "urllib3",
    "urllib3.connectionpool",
    "asyncio",
)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop the _record/_from_structlog keys ProcessorFormatter injects."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _json_formatter(shared_processors: list[Any]) -> ProcessorFormatter:
    return ProcessorFormatter(
        processors=[
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    log_dir: Path | None = None,
) -> None:
    """Configure structlog and stdlib logging for respawn.

    Args:
        json_output: If True, console output is JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_dir: If given, also log JSON lines to log_dir/respawn.log,
            rotated at midnight and kept for a week.
    """
    log_level = getattr(logging, level.upper())
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Disable caching to allow reconfiguration in tests
        cache_logger_on_first_use=False,
    )

    if json_output:
        console_formatter = _json_formatter(shared_processors)
    else:
        console_formatter = ProcessorFormatter(
            processors=[
                _remove_internal_fields,
                structlog.dev.ConsoleRenderer(colors=True),
            ],
            foreign_pre_chain=shared_processors,
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(console_formatter)

    root = logging.getLogger()
    for existing in root.handlers:
        existing.close()
    root.handlers = [handler]
    root.setLevel(log_level)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(_json_formatter(shared_processors))
        root.addHandler(file_handler)

    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return the structlog logger for ``name`` (usually ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger

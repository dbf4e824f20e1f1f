"""Structured logging for the content firewall.

Every log line passes through :func:`redact_event_values` before it is
rendered, so credential-shaped strings from untrusted content or command
arguments never reach the console or log files.
"""

import logging
import sys
from collections.abc import MutableMapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from content_firewall.config import Settings, get_settings
from content_firewall.redaction import redact

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg")


def redact_event_values(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: redact secrets in string values (one level deep)."""
    for key, value in event_dict.items():
        if key == "event":
            continue
        if isinstance(value, str):
            event_dict[key] = redact(value)
        elif isinstance(value, list):
            event_dict[key] = [redact(v) if isinstance(v, str) else v for v in value]
    return event_dict


def _file_handler(settings: Settings, level: int) -> RotatingFileHandler | None:
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Console-only logging still works
        print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    return handler


def setup_logging(level: str | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Overrides ``settings.log_level`` when given.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])
    logging.root.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    logging.root.addHandler(console_handler)

    file_handler = _file_handler(settings, log_level) if settings.log_to_file else None
    if file_handler:
        logging.root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_event_values,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Colored console in development, JSON everywhere else
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                (
                    structlog.dev.ConsoleRenderer(colors=True)  # type: ignore[list-item]
                    if settings.is_development
                    else structlog.processors.JSONRenderer()
                ),
            ]
        )
    )
    if file_handler:
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ]
            )
        )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]

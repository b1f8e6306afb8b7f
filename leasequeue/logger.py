"""structlog setup shared by every leasequeue module.

Modules log through ``get_logger(__name__)`` with key/value fields. Nothing is
configured at import time; applications call ``configure_logging()`` once, or
leave logging to their own structlog setup.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from structlog.processors import CallsiteParameter

if TYPE_CHECKING:
    from structlog.types import EventDict, Processor, WrappedLogger

type BoundLogger = structlog.stdlib.BoundLogger
type LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"]


class LoggingConfig(BaseSettings):
    """Logging settings, read from ``LOG_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LOG_",
        extra="forbid",
        frozen=True,
    )

    level: LogLevel = Field(default="INFO")
    json_output: bool = Field(default=False, description="JSON lines instead of the console renderer")
    service_name: str = Field(default="leasequeue", description="Bound to every log line as 'service'")
    file_path: str | None = Field(default=None, description="Rotating log file; stdout when unset")
    max_bytes: int = Field(default=50_000_000, ge=1024)
    backup_count: int = Field(default=10, ge=0)
    library_log_levels: dict[str, LogLevel] = Field(
        default_factory=lambda: {"redis": "WARNING"},
        description="Levels for noisy third-party loggers",
    )
    enable_otel: bool = Field(
        default=False,
        description="Add trace_id and span_id of the current span (needs the otel extra)",
    )


def _add_otel_trace_context(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    from opentelemetry import trace

    span = trace.get_current_span()
    if span.is_recording():
        context = span.get_span_context()
        event_dict["trace_id"] = format(context.trace_id, "032x")
        event_dict["span_id"] = format(context.span_id, "016x")
    return event_dict


def build_processors(config: LoggingConfig) -> list[Processor]:
    """Processor chain ending in the JSON or console renderer."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.CallsiteParameterAdder(
            parameters=[CallsiteParameter.MODULE, CallsiteParameter.FUNC_NAME, CallsiteParameter.LINENO]
        ),
    ]
    if config.enable_otel:
        processors.append(_add_otel_trace_context)

    if config.json_output:
        processors += [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.dev.ConsoleRenderer(),
        ]
    return processors


def build_handler(config: LoggingConfig) -> logging.Handler:
    """Rotating file handler when ``file_path`` is set, stdout otherwise."""
    handler: logging.Handler
    if config.file_path:
        path = Path(config.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(config.level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Route structlog through stdlib logging with a single root handler."""
    config = config or LoggingConfig()

    structlog.configure(
        processors=build_processors(config),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = [build_handler(config)]
    root.setLevel(config.level)
    for name, level in config.library_log_levels.items():
        logging.getLogger(name).setLevel(level)

    structlog.contextvars.bind_contextvars(service=config.service_name)


def get_logger(name: str | None = None) -> BoundLogger:
    return cast(BoundLogger, structlog.get_logger(name))


def bind_context(**fields: str | float | bool | None) -> None:
    """Bind fields to every log line of the current task (contextvars)."""
    structlog.contextvars.bind_contextvars(**fields)


def log_lifecycle(logger: BoundLogger, verbose: bool, event: str, **fields: object) -> None:
    """Per-message lifecycle log line: info when the queue is verbose, debug otherwise."""
    if verbose:
        logger.info(event, **fields)
    else:
        logger.debug(event, **fields)

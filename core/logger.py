import logging
import sys
from datetime import datetime
from typing import Any

import structlog

from config import LoggingConfig


def _make_cycle_safe(value: Any, seen: set) -> Any:
    """Replaces containers already on the current path with a marker."""
    if isinstance(value, (dict, list, tuple, set)):
        marker = id(value)
        if marker in seen:
            return "<circular>"
        seen.add(marker)
        try:
            if isinstance(value, dict):
                return {str(k): _make_cycle_safe(v, seen) for k, v in value.items()}
            return [_make_cycle_safe(v, seen) for v in value]
        finally:
            seen.discard(marker)
    return value


def cycle_safe_values(logger, method_name, event_dict):
    """structlog processor that makes self-referencing values renderable."""
    return {key: _make_cycle_safe(value, set()) for key, value in event_dict.items()}


def setup_logging(logging_config: LoggingConfig) -> None:
    """
    Set up logging for the application using structlog on top of stdlib logging.

    Must be called once at process start-up, before any workflow runs.
    Calling it again replaces the handlers instead of stacking them.
    """
    log_level = logging_config.log_level.upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        cycle_safe_values,
    ]

    if logging_config.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer(default=str)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers = []

    # Console Handler
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    # File Handler (if configured)
    if logging_config.log_file_path:
        log_path = logging_config.log_file_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        new_log_file = log_path.parent / f"{log_path.stem}_{timestamp}{log_path.suffix}"

        file_handler = logging.FileHandler(new_log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structured_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger with the given name.

    Args:
        name: The name of the logger (usually __name__ of the module)

    Returns:
        A structured logger instance with context binding capabilities

    Example:
        >>> logger = get_structured_logger(__name__)
        >>> logger.info("workflow_started", target_id="123")
    """
    return structlog.get_logger(name)


def bind_context(logger: structlog.BoundLogger, **context) -> structlog.BoundLogger:
    """
    Bind context data to a logger for all subsequent log entries.

    Example:
        >>> logger = get_structured_logger(__name__)
        >>> target_logger = bind_context(logger, target_id="12345", company="Example Inc")
        >>> target_logger.info("application_started")  # Will include target_id and company
    """
    return logger.bind(**context)

"""
Structured logging configuration with request tracking and rotation.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to all log entries."""
    event_dict["app"] = "countries-api"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    log_max_bytes: int = 10485760,  # 10MB
    log_backup_count: int = 5,
) -> None:
    """
    Configure structured logging with rotation.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ('json' or 'console')
        log_file: Optional log file path
        log_max_bytes: Max log file size before rotation
        log_backup_count: Number of backup files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return structlog.get_logger(name)


def mask_api_key(api_key: Optional[str]) -> str:
    """
    Mask an API key for display and logs.

    Keys shorter than 10 characters are too short to mask meaningfully and are
    returned unchanged; longer keys keep their first and last four characters.
    """
    if not api_key or len(api_key) < 10:
        return api_key or ""
    return f"{api_key[:4]}...{api_key[-4:]}"


def log_request(
    method: str,
    path: str,
    request_id: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> None:
    """
    Log an API request as it arrives and again when it completes.

    A call without ``status_code`` logs ``request_received``; with one it logs
    ``request_completed``, at warning level for 5xx responses.
    """
    logger = get_logger("api")
    if status_code is None:
        logger.info("request_received", method=method, path=path, request_id=request_id, **kwargs)
        return

    log = logger.warning if status_code >= 500 else logger.info
    log(
        "request_completed",
        method=method,
        path=path,
        request_id=request_id,
        status_code=status_code,
        duration_ms=round(duration_ms or 0.0, 2),
        **kwargs
    )


def log_api_key_rejected(
    api_key: str,
    reason: str,
    endpoint: str,
    api_key_id: Optional[int] = None,
    **kwargs
) -> None:
    """
    Log a rejected API key.

    Args:
        api_key: Raw candidate key (masked before logging)
        reason: Rejection kind (missing, unknown, inactive, expired)
        endpoint: Request path
        api_key_id: Stored key id when a record was found
        **kwargs: Additional context
    """
    logger = get_logger("gateway")
    logger.info(
        "api_key_rejected",
        api_key=mask_api_key(api_key) or None,
        reason=reason,
        endpoint=endpoint,
        api_key_id=api_key_id,
        **kwargs
    )


def log_bookkeeping_failure(
    operation: str,
    api_key_id: int,
    endpoint: str,
    exception: Exception,
    **kwargs
) -> None:
    """
    Log a failed usage-tracking write.

    These failures never reach the requester; this log is the only record.
    """
    logger = get_logger("gateway")
    logger.warning(
        "usage_bookkeeping_failed",
        operation=operation,
        api_key_id=api_key_id,
        endpoint=endpoint,
        exception_type=type(exception).__name__,
        exception_message=str(exception),
        **kwargs
    )


def log_upstream_error(
    service: str,
    url: str,
    error: str,
    status_code: Optional[int] = None,
    **kwargs
) -> None:
    """Log a failed call to an upstream HTTP service."""
    logger = get_logger("upstream")
    logger.error(
        "upstream_request_failed",
        service=service,
        url=url,
        status_code=status_code,
        error=error,
        **kwargs
    )


def log_exception(
    exception: Exception,
    context: Dict[str, Any] = None,
    **kwargs
) -> None:
    """
    Log exception with full context.

    Args:
        exception: Exception instance
        context: Additional context dictionary
        **kwargs: Additional context
    """
    logger = get_logger("exception")

    log_data = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        **(context or {}),
        **kwargs
    }

    logger.exception(
        "exception_occurred",
        **log_data
    )

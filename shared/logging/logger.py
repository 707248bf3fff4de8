"""
Logger Implementation
=====================

structlog setup for the ingestion service and its scripts.

One processor chain serves both structlog loggers and stdlib loggers
(uvicorn, SQLAlchemy), so every line carries the same service stamp and
secret redaction. Production renders JSON; other environments render a
coloured console with rich tracebacks.

Version: 0.1.0
"""

import datetime
import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


SERVICE_VERSION = "0.1.0"

REDACTED = "***REDACTED***"

# Matched as substrings of lower-cased keys, so "X-Api-Key" headers are caught
SENSITIVE_KEYS = (
    "password",
    "api_key",
    "api-key",
    "apikey",
    "secret",
    "token",
    "authorization",
    "private_key",
)

# Per-request chatter from the HTTP stack drowns out fetch events
QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "asyncio")


def _service_context(service_name: str) -> Processor:
    """Processor stamping service name and version on every entry."""

    def _add_service_context(
        logger: logging.Logger,
        method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("version", SERVICE_VERSION)
        return event_dict

    return _add_service_context


def _add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(marker in key_lower for marker in SENSITIVE_KEYS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def _censor_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Redact credentials, including source request headers logged as dicts."""
    return _redact(event_dict)


def _build_processors(service_name: str, json_logs: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_timestamp,
        _service_context(service_name),
        _censor_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
    else:
        processors.append(structlog.dev.set_exc_info)
    return processors


def _build_renderer(json_logs: bool) -> Processor:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.RichTracebackFormatter(
            show_locals=False,
            max_frames=10,
        ),
    )


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "regwatch",
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Root level name, e.g. "DEBUG" when tracing a single source
        json_logs: Render JSON lines (production deployments and cron)
        service_name: Stamped as `service` on every entry, e.g. "alert-ingestion"
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = _build_processors(service_name, json_logs)

    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records go through the same chain before rendering
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _build_renderer(json_logs),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger, usually with `__name__`.

    Events are snake_case names with context as keyword arguments:

        logger = get_logger(__name__)
        logger.warning("fetch_retry", source="fsis-recalls", endpoint="primary", attempt=2)
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Attach context to every log entry in the current async task.

    The pipeline binds `run_id` and `scope` for a run and `source` while a
    source is processed, so fetch and dedup events need not repeat them.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove previously bound context variables."""
    structlog.contextvars.unbind_contextvars(*keys)

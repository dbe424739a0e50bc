"""
Structured logging for the decision API.

Each classification and chain decision is logged as one event, so the log is
the audit trail of why a message was routed where it was. Events carry:
- timestamp (ISO 8601), level, logger name
- service (SERVICE_NAME)
- trace_id, request_id, user_id (bound per request by TraceIDMiddleware)

Event names are snake_case and grouped by prefix: ``intent_*`` for the
classifier, ``contract_chain_*`` for the planner, ``llm_*`` for the LLM
collaborator, ``entity_registry_*`` for the registry. Failures add ``error``
and ``error_type`` fields.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

SERVICE_NAME = "sales_assistant_decision_api"
DEFAULT_LOG_LEVEL = logging.INFO

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# Request-scoped fields copied onto every event, in output order
_REQUEST_CONTEXT = (
    ("trace_id", trace_id_var),
    ("request_id", request_id_var),
    ("user_id", user_id_var),
)


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor: stamp the request context and service onto an event."""
    for key, var in _REQUEST_CONTEXT:
        value = var.get()
        if value:
            event_dict[key] = value
    event_dict["service"] = SERVICE_NAME
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def resolve_log_level(name: Optional[str]) -> int:
    """Map a LOG_LEVEL string to a logging level; unknown names mean INFO."""
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: LOG_LEVEL value; unknown names fall back to INFO
        service_name: overrides SERVICE_NAME for every later event
        json_output: one JSON object per line when True, console rendering otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=resolve_log_level(log_level),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Module logger; call with ``__name__``."""
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    """Trace ID of the request being handled, echoed in error bodies."""
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_user_id(user_id: Optional[str]) -> None:
    user_id_var.set(user_id)


def get_user_id() -> Optional[str]:
    return user_id_var.get()


def generate_request_id() -> str:
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """New trace ID for requests that arrive without X-Trace-ID."""
    return str(uuid.uuid4())

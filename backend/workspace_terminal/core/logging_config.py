"""
Workspace Terminal - Logging Configuration

- production: one JSON object per line (stdout + optional rotating file)
- anything else: readable single-line text

Request-scoped fields (request_id, user_id, project_id) are bound once per
request with bind_context() and stamped onto every record logged while the
request is handled, including terminal events from the executor.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from workspace_terminal.core.config import settings


CONTEXT_FIELDS = ("request_id", "user_id", "project_id")

_log_context: ContextVar[Optional[Dict[str, str]]] = ContextVar("log_context", default=None)


def current_context() -> Dict[str, str]:
    return dict(_log_context.get() or {})


def bind_context(**values: Optional[str]) -> None:
    """Add request-scoped fields; None and empty values are ignored"""
    context = current_context()
    context.update({k: v for k, v in values.items() if k in CONTEXT_FIELDS and v})
    _log_context.set(context)


def clear_context() -> None:
    _log_context.set(None)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_RECORD_KEYS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", *CONTEXT_FIELDS}


class JSONFormatter(logging.Formatter):
    """Structured records for log aggregation"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **current_context(),
        }

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_KEYS and not key.startswith("_")
        )
        return json.dumps(entry, default=str)


class ContextualFormatter(logging.Formatter):
    """Plain text with the request id and caller in front of the message"""

    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        for field in CONTEXT_FIELDS:
            setattr(record, field, context.get(field, "-"))
        return super().format(record)


class WorkspaceTerminalLogger(logging.Logger):
    """Logger with structured helpers for HTTP and terminal events"""

    def log_request(self, method: str, path: str, status_code: int,
                    duration_ms: float, **kwargs) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        self.log(
            level,
            f"← {method} {path} - {status_code} ({duration_ms:.2f}ms)",
            extra={
                "event_type": "http_request_complete",
                "http_method": method,
                "http_path": path,
                "http_status": status_code,
                "duration_ms": round(duration_ms, 2),
                **kwargs
            }
        )

    def log_terminal_event(self, event: str, session_id: str,
                           level: int = logging.INFO, **kwargs) -> None:
        """Session lifecycle event (spawn, exit, kill, reap...) as `[Terminal:<id>] event k=v`"""
        details = " ".join(f"{k}={v}" for k, v in kwargs.items() if v is not None)
        self.log(
            level,
            f"[Terminal:{session_id}] {event}" + (f" {details}" if details else ""),
            extra={"event_type": event, "session_id": session_id, **kwargs}
        )

    def log_error_with_context(self, error: Exception, context: str, **kwargs) -> None:
        self.error(
            f"Error in {context}: {type(error).__name__}: {error}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_context": context,
                **kwargs
            }
        )


def _handlers(formatter: logging.Formatter, backup_count: int):
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(formatter)
    yield console

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=backup_count)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        yield file_handler


def setup_logging() -> WorkspaceTerminalLogger:
    """Configure the "workspace_terminal" logger for the current environment"""
    logging.setLoggerClass(WorkspaceTerminalLogger)

    logger = logging.getLogger("workspace_terminal")
    logger.__class__ = WorkspaceTerminalLogger  # Created before setLoggerClass in some import orders
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()

    json_logging = settings.ENVIRONMENT == "production"
    if json_logging:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = ContextualFormatter(
            "%(asctime)s | %(levelname)-8s | [%(request_id)s] [%(user_id)s] | %(message)s"
        )

    for handler in _handlers(formatter, backup_count=10 if json_logging else 5):
        logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sse_starlette"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info(
        "Logging initialized",
        extra={"environment": settings.ENVIRONMENT, "log_level": settings.LOG_LEVEL, "json_logging": json_logging}
    )
    return logger


logger: WorkspaceTerminalLogger = setup_logging()


__all__ = [
    "logger",
    "setup_logging",
    "bind_context",
    "clear_context",
    "current_context",
    "new_request_id",
    "JSONFormatter",
    "ContextualFormatter",
    "WorkspaceTerminalLogger",
]

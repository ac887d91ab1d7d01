"""
Logging setup for the API.

Provides:
- JSON logging for production, readable text logging for development
- A request id carried through each request and attached to every record
- Masking of sensitive keys in structured extras
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


SENSITIVE_FIELDS = frozenset({
    "password",
    "token",
    "secret",
    "authorization",
    "cookie",
    "access_key",
})

MAX_VALUE_LENGTH = 1000

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_request_id(request_id: Optional[str]):
    """Bind a request id to the current context, returns the reset token."""
    return _request_id.set(request_id)


def reset_request_id(token) -> None:
    _request_id.reset(token)


def mask_sensitive(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """Recursively mask sensitive keys in data."""
    if depth > max_depth:
        return "...TRUNCATED..."
    if isinstance(data, dict):
        return {
            k: "***MASKED***" if _is_sensitive(k) else mask_sensitive(v, depth + 1)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [mask_sensitive(item, depth + 1) for item in data]
    if isinstance(data, str) and len(data) > MAX_VALUE_LENGTH:
        return data[:MAX_VALUE_LENGTH] + f"...({len(data)} chars)"
    return data


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return any(s in name for s in SENSITIVE_FIELDS)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production use."""

    def __init__(self, service: str = "videotube-api", environment: str = "dev"):
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "environment": self.environment,
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        extra = getattr(record, "extra", None)
        if extra:
            log_data["extra"] = mask_sensitive(extra)

        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }
        return json.dumps(log_data, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        request_id = get_request_id()
        ctx = f" [req={request_id[:8]}]" if request_id else ""
        msg = f"{timestamp} {record.levelname:8} {record.name}{ctx} - {record.getMessage()}"

        extra = getattr(record, "extra", None)
        if isinstance(extra, dict) and extra:
            masked = mask_sensitive(extra)
            msg += " | " + " | ".join(f"{k}={v}" for k, v in masked.items())

        if record.exc_info:
            msg += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return msg


def configure_logging(level: str = "INFO", format_type: str = "text", environment: str = "dev") -> None:
    """Install a single stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    if format_type == "json":
        handler.setFormatter(JSONFormatter(environment=environment))
    else:
        handler.setFormatter(TextFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # uvicorn ships its own handlers, route them through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True


def log_extra(logger: logging.Logger, level: int, msg: str, **extra) -> None:
    """Log a message with structured data attached as ``record.extra``."""
    logger.log(level, msg, extra={"extra": extra})

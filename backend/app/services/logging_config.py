"""Structured logging setup for the load estimator service."""
import logging
import json
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

# Extras that pipeline stages attach via logger.info(..., extra={...})
_EXTRA_FIELDS = (
    "run_id", "stage", "duration_ms", "room_count",
    "request_id", "http_method", "http_path", "http_status",
)

# Set by RequestTimingMiddleware for the lifetime of one HTTP request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line. Pipeline extras are lifted to top-level keys,
    and records emitted while serving a request carry its request_id.
    """
    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if "request_id" not in log_entry and request_id_var.get() is not None:
            log_entry["request_id"] = request_id_var.get()
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Install a single stdout handler on the root logger; repeat calls replace it."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # LiteLLM and the HTTP stack log every request at INFO
    for name in ["uvicorn.access", "httpcore", "httpx", "LiteLLM", "ezdxf"]:
        logging.getLogger(name).setLevel(logging.WARNING)

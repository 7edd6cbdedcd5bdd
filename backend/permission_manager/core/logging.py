"""
Logging configuration for the permission manager.

Console output is coloured on a TTY or emitted as JSON; an optional rotating file
handler mirrors it. structlog loggers render through the same stdlib handlers, so
``structlog.get_logger(__name__)`` and ``logging.getLogger(__name__)`` share one
pipeline and both carry the request id.
"""
import json
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

import structlog

from ..config import get_settings
from .request_context import request_id_var

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False

_RESERVED_ATTRS = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
    "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
    "threadName", "taskName", "_logger", "_name", "_from_structlog", "color_message",
}

REDACT_KEYS = {"password", "secret", "token", "authorization", "private_key", "client_key_data", "kubeconfig"}
REDACTED = "***REDACTED***"


def _mask(key: str, value: Any) -> Any:
    if str(key).lower() in REDACT_KEYS:
        return REDACTED if value else ""
    return value


def _structlog_event(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    """Return a copy of the structlog event dict carried by ``record``, if any."""
    return dict(record.msg) if isinstance(record.msg, dict) else None


def _render_key_values(event: Dict[str, Any]) -> str:
    message = str(event.pop("event", ""))
    pairs = " ".join(f"{key}={_mask(key, value)!r}" for key, value in event.items())
    return f"{message} {pairs}" if pairs else message


class ContextFilter(logging.Filter):
    """Inject request_id, service and env into every LogRecord."""

    def __init__(self, env: str) -> None:
        super().__init__()
        self._env = env

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        rid = getattr(record, "request_id", None) or request_id_var.get()
        if rid is not None:
            record.request_id = rid
        if not hasattr(record, "service"):
            record.service = "permission-manager"
        if not hasattr(record, "env"):
            record.env = self._env
        return True


class KeyValueFormatter(logging.Formatter):
    """Plain-text formatter; structlog events render as ``event key='value' ...``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        event = _structlog_event(record)
        if event is not None:
            record = logging.makeLogRecord(record.__dict__)
            record.msg = _render_key_values(event)
            record.args = ()
        return super().format(record)


class ColoredFormatter(KeyValueFormatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """JSON structured formatter.

    Emits time, level, name and message, merges extra attributes and structlog
    event fields, and masks values whose key looks sensitive.
    """

    def __init__(self, datefmt: Optional[str] = None) -> None:
        super().__init__(datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        event = _structlog_event(record)
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage() if event is None else str(event.pop("event", "")),
        }

        rid = getattr(record, "request_id", None) or request_id_var.get()
        if rid:
            payload["request_id"] = rid

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key == "request_id":
                continue
            payload[str(key)] = _mask(key, value)

        for key, value in (event or {}).items():
            payload[str(key)] = _mask(key, value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            # the event dict is rendered by KeyValueFormatter or JSONFormatter
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    use_color: bool = True,
) -> logging.Logger:
    """Configure the root logger once per process.

    Args:
        level: log level name, defaults to the LOG_LEVEL setting
        log_file: optional file path for a rotating file handler
        use_color: colour console output when stdout is a TTY

    Returns:
        logging.Logger: the service logger
    """
    global _CONFIGURED
    logger = logging.getLogger("permission_manager")

    if _CONFIGURED:
        return logger

    settings = get_settings()
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    context_filter = ContextFilter(settings.app_env)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context_filter)

    if settings.log_json:
        console_formatter: logging.Formatter = JSONFormatter(datefmt=LOG_DATE_FORMAT)
    elif use_color and sys.stdout.isatty():
        console_formatter = ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        console_formatter = KeyValueFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler.setFormatter(console_formatter)
    root.addHandler(console_handler)

    file_path = log_file or settings.log_file
    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.addFilter(context_filter)
        if settings.log_json:
            file_handler.setFormatter(JSONFormatter(datefmt=LOG_DATE_FORMAT))
        else:
            file_handler.setFormatter(KeyValueFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(file_handler)

    # route uvicorn/fastapi through the root handlers
    for log_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        l = logging.getLogger(log_name)
        l.handlers = []
        l.propagate = True

    # the kubernetes client logs full request bodies at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)

    _configure_structlog()

    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

"""
Logging setup shared by every dohGuard component.

Each component logger writes JSON lines to a rotating file and short
human-readable lines to stdout. Level, file and rotation size come from
DOHGUARD_LOG_LEVEL, DOHGUARD_LOG_FILE and DOHGUARD_LOG_MAX_BYTES.

The HTTP middleware stores a per-request id with `set_request_id()`;
every record emitted while handling that request carries it.
"""
import contextvars
import logging
import logging.handlers
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import traceback

LOGGER_PREFIX = "dohguard"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def set_request_id(request_id: str) -> contextvars.Token:
    return _request_id_var.set(request_id)


def get_request_id() -> str:
    return _request_id_var.get()


def reset_request_id(token: contextvars.Token) -> None:
    _request_id_var.reset(token)


class JSONLFormatter(logging.Formatter):
    """One JSON object per record, plus the current request id."""

    # Extra attributes copied from the record when present
    EXTRA_ATTRS = (
        "domain", "outcome", "status_code", "duration", "method", "path",
        "upstream", "reason", "state", "error_type", "circuit", "failures",
        "blocklist_size", "source", "message_size",
    )

    def __init__(self, component: str):
        super().__init__()
        self.component = component
        self.hostname = os.getenv("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "component": self.component,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
            "process_id": record.process,
            "module": record.module,
            "line": record.lineno,
        }

        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id

        entry.update(
            (attr, getattr(record, attr)) for attr in self.EXTRA_ATTRS if hasattr(record, attr)
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        return json.dumps(entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Merges fixed context (e.g. the upstream URL) into every record's extras."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def _build_handlers(
    component: str,
    level: int,
    log_file: str,
    max_bytes: int,
    backup_count: int,
    enable_console: bool,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    log_dir = os.path.dirname(log_file)
    try:
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(JSONLFormatter(component))
        handlers.append(file_handler)
    except OSError as e:
        # Keep running with console output only
        sys.stderr.write(f"Failed to set up file logging to {log_file}: {e}\n")

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    component: str = "proxy",
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: int = 10,
    enable_console: bool = True
) -> logging.Logger:
    """
    (Re)configure the logger for a dohGuard component.

    Args:
        component: Component name (api, relay, filtering, tools)
        log_level: Level name; defaults to DOHGUARD_LOG_LEVEL or INFO
        log_file: JSONL file; defaults to DOHGUARD_LOG_FILE or logs/dohguard.jsonl
        max_bytes: Rotation size; defaults to DOHGUARD_LOG_MAX_BYTES or 100MB
        backup_count: Number of rotated files to keep
        enable_console: Also log to stdout

    Returns:
        The configured `dohguard.<component>` logger
    """
    level_name = (log_level or os.getenv("DOHGUARD_LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("DOHGUARD_LOG_FILE", "logs/dohguard.jsonl")
    max_bytes = max_bytes or int(os.getenv("DOHGUARD_LOG_MAX_BYTES", str(100 * 1024 * 1024)))
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    for handler in _build_handlers(component, level, log_file, max_bytes, backup_count, enable_console):
        logger.addHandler(handler)
    return logger


def get_logger(component: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Return the component logger, configuring it on first use.

    With ``context``, a ContextAdapter is returned that adds those fields
    to every record.
    """
    logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
    if not logger.handlers:
        logger = setup_logging(component)
    if context:
        return ContextAdapter(logger, context)
    return logger

import json
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone
from typing import Dict, Any, Optional, TYPE_CHECKING
from pathlib import Path

if TYPE_CHECKING:
    from ..infrastructure.config.settings import LoggingSettings

# Logger cache: one StructuredLogger per name, so handlers are attached once
_logger_cache: Dict[str, 'StructuredLogger'] = {}
_cache_lock = threading.RLock()

# Settings installed by configure_logging(); None means "use defaults"
_active_config: Optional[Any] = None


# --- Custom JSON Formatter ---

class CustomJsonEncoder(json.JSONEncoder):
    """JSON encoder for values that show up in log payloads (datetimes, enums, bytes)."""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode('utf-8', errors='replace')
        if hasattr(obj, 'name') and hasattr(obj, 'value'):  # Enum-like
            return obj.name
        if isinstance(obj, type):
            return obj.__name__
        if isinstance(obj, BaseException):
            return f"{type(obj).__name__}: {obj}"
        return super().default(obj)


class JsonFormatter(logging.Formatter):
    """Formats log records into a JSON string."""

    def _sanitize_dict(self, d: dict) -> dict:
        """Recursively sanitize dictionary keys and values."""
        sanitized = {}
        for k, v in d.items():
            str_key = str(k)
            if isinstance(v, dict):
                sanitized[str_key] = self._sanitize_dict(v)
            elif isinstance(v, (list, tuple)):
                sanitized[str_key] = [self._sanitize_dict(item) if isinstance(item, dict) else item for item in v]
            else:
                sanitized[str_key] = v
        return sanitized

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            message_dict = self._sanitize_dict(record.msg)
        else:
            message_dict = {"message": record.getMessage()}

        log_object = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
            **message_dict,
        }

        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, cls=CustomJsonEncoder)


class StructuredLogger:
    """
    Thin wrapper around ``logging.Logger`` that logs ``(event_type, data)`` pairs.

    Usage:
        logger.info("bridge_server.started", {"host": host, "port": port})
    """

    def __init__(self, name: str, config: Any, filename: str = None):
        self.logger = logging.getLogger(name)
        level = getattr(config, 'level', 'INFO')
        level_name = getattr(level, 'value', level)
        self.logger.setLevel(getattr(logging, str(level_name).upper(), logging.INFO))
        self.logger.propagate = False

        console_enabled = getattr(config, 'console_enabled', True)
        file_enabled = getattr(config, 'file_enabled', False)
        structured_logging = getattr(config, 'structured_logging', True)
        max_file_size_mb = getattr(config, 'max_file_size_mb', 100)
        backup_count = getattr(config, 'backup_count', 5)

        log_file = None
        if file_enabled:
            log_dir = getattr(config, 'log_dir', 'logs')
            log_file = str(Path(log_dir) / (filename or f"{name}.jsonl"))

        self._setup_console_handler(console_enabled, structured_logging)
        self._setup_file_handler(file_enabled, log_file, max_file_size_mb, backup_count, structured_logging)

    def _setup_console_handler(self, enabled: bool, structured: bool):
        """
        Attach a stdout handler unless one is already attached.

        Idempotent: get_logger() caches instances, but configure_logging() may
        rebuild a logger for a name that already carries handlers.
        """
        if not enabled:
            return

        for existing_handler in self.logger.handlers:
            if isinstance(existing_handler, logging.StreamHandler):
                if getattr(existing_handler, 'stream', None) is sys.stdout:
                    return

        handler = logging.StreamHandler(sys.stdout)
        formatter = JsonFormatter() if structured else logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def _setup_file_handler(self, enabled: bool, log_file: Optional[str], max_size_mb: int,
                            backup_count: int, structured: bool):
        """Attach a rotating file handler unless one for the same file exists."""
        if not enabled or not log_file:
            return

        log_file_normalized = os.path.abspath(log_file)
        for existing_handler in self.logger.handlers:
            if isinstance(existing_handler, RotatingFileHandler):
                if os.path.abspath(existing_handler.baseFilename) == log_file_normalized:
                    return

        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        try:
            handler = RotatingFileHandler(
                log_file,
                maxBytes=max_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding='utf-8'
            )
        except OSError as e:
            # Report on stderr rather than silently losing the file log
            print(f"ERROR: Failed to create file handler for {log_file}: {e}", file=sys.stderr)
            return

        formatter = JsonFormatter() if structured else logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def _log(self, level: int, event_type: str, data: Dict[str, Any]):
        payload = {"event_type": event_type, "data": data}
        self.logger.log(level, payload)

    def info(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.INFO, event_type, data or {})

    def warning(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.WARNING, event_type, data or {})

    def error(self, event_type: str, data: Dict[str, Any] = None, exc_info=False):
        """
        Log an error event.

        Args:
            event_type: Type of error event
            data: Optional error context data
            exc_info: Include exception info (default: False)
        """
        payload = {"event_type": event_type, "data": data or {}}
        self.logger.error(payload, exc_info=exc_info)

    def debug(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.DEBUG, event_type, data or {})

    def is_debug_enabled(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)


class _DefaultLoggingConfig:
    level = "INFO"
    console_enabled = True
    file_enabled = False
    structured_logging = True
    log_dir = "logs"
    max_file_size_mb = 100
    backup_count = 5


def configure_logging(config: 'LoggingSettings') -> None:
    """
    Install the logging settings used by every logger created afterwards.

    Loggers already handed out keep their handlers but pick up the new level,
    so calling this once at startup (before components are built) is enough.
    """
    global _active_config
    with _cache_lock:
        _active_config = config
        level = getattr(config.level, 'value', config.level)
        for cached in _logger_cache.values():
            cached.logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def get_logger(name: str) -> StructuredLogger:
    """
    Get a cached structured logger instance for the given name.

    Args:
        name: Logger name (typically the dotted component name)

    Returns:
        Cached StructuredLogger instance (singleton per name)
    """
    if name in _logger_cache:
        return _logger_cache[name]

    with _cache_lock:
        # Another thread might have created it while we waited
        if name in _logger_cache:
            return _logger_cache[name]

        logger = StructuredLogger(name, _active_config or _DefaultLoggingConfig())
        _logger_cache[name] = logger
        return logger

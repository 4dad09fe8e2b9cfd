"""
Logging setup for the crawler workers, the coordinator and the query server.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from .config import LoggingConfig


# Records from these loggers never reach the console or the main log file
NOISY_LOGGERS = ('aiohttp.access', 'aiosqlite')

THIRD_PARTY_LEVELS = {
    'aiohttp': logging.WARNING,
    'aiosqlite': logging.WARNING,
    'asyncio': logging.WARNING,
    'playwright': logging.WARNING,
}

MAIN_LOG_BYTES = 50 * 1024 * 1024
ERROR_LOG_BYTES = 10 * 1024 * 1024


class JSONFormatter(logging.Formatter):
    """One JSON object per record; adapter context is merged in at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        log_entry.update(getattr(record, 'extra_fields', {}))
        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """
    Logger adapter carrying worker context.

    Context fields end up in ``record.extra_fields`` for the JSON formatter;
    a ``worker_id`` is also prefixed to the plain-text message.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault('extra', {})
        fields = dict(self.extra)
        fields.update(extra.pop('extra_fields', {}))
        extra['extra_fields'] = fields

        worker_id = fields.get('worker_id')
        if worker_id:
            msg = f"[{worker_id}] {msg}"
        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log an event about one page; the URL is appended and kept as a field."""
        extra = kwargs.setdefault('extra', {})
        extra['extra_fields'] = {'url': url, 'event_type': 'url_event'}
        self.log(level, f"{message}: {url}", **kwargs)


class PerformanceFilter(logging.Filter):
    """Drops records from chatty third-party loggers."""

    def __init__(self, suppress_modules: Optional[tuple] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or NOISY_LOGGERS

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.suppress_modules)


def _rotating_handler(path: Path, level: int, max_bytes: int, backup_count: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Configure the root logger.

    Three handlers are installed: console (INFO and up), a rotating main log
    file (DEBUG and up) and a rotating ``errors.log`` beside it.

    Args:
        config: Logging configuration section
        enable_performance_filtering: Drop records from NOISY_LOGGERS

    Returns:
        Configured root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    error_log_file = log_file.parent / 'errors.log'

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = _rotating_handler(log_file, logging.DEBUG, MAIN_LOG_BYTES, 5, formatter)
    error_handler = _rotating_handler(error_log_file, logging.ERROR, ERROR_LOG_BYTES, 3, formatter)

    if enable_performance_filtering:
        noise_filter = PerformanceFilter()
        console_handler.addFilter(noise_filter)
        file_handler.addFilter(noise_filter)

    for handler in (console_handler, file_handler, error_handler):
        root_logger.addHandler(handler)

    for logger_name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info(
        f"Logging initialized: level={config.level} json={config.json} "
        f"file={log_file} errors={error_log_file}"
    )
    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """Logger for ``name`` that tags every record with ``extra_context``."""
    return CrawlerLogAdapter(logging.getLogger(name), extra_context)


def log_system_info():
    """Log host resources and the versions of the storage and HTTP stacks."""
    import platform
    import sqlite3

    import aiohttp
    import psutil

    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
    logger.info(f"SQLite version: {sqlite3.sqlite_version}")
    logger.info(f"aiohttp version: {aiohttp.__version__}")

"""
Logging utilities for the search engine.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """
    Logger adapter that tags every record with a crawler id.

    Workers receive one of these at construction and log through ``emit``,
    so where the messages end up is decided by ``setup_logging`` alone.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Prefix the crawler id and attach the context as extra fields."""
        extra = kwargs.setdefault('extra', {})
        extra_fields = dict(extra.get('extra_fields', {}))
        extra_fields.update(self.extra)
        extra['extra_fields'] = extra_fields

        crawler_id = self.extra.get('crawler_id')
        if crawler_id is not None:
            msg = f"[{crawler_id:03d}] {msg}"
        return msg, kwargs

    def emit(self, level: int, message: str, **fields):
        """Structured log sink used by the crawl workers."""
        extra = {'extra_fields': fields} if fields else {}
        self.log(level, message, extra=extra)


class PerformanceFilter(logging.Filter):
    """Filter to suppress noisy third-party logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'aiosqlite',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        return not any(record.name.startswith(module) for module in self.suppress_modules)


def setup_logging(config: Dict[str, Any],
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the crawler and the search command.

    Args:
        config: Logging configuration dictionary (level, file, format, json)
        enable_performance_filtering: Enable filtering of noisy logs

    Returns:
        Configured root logger
    """
    log_file = Path(config.get('file', 'logs/searchengine.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.get('level', 'INFO').upper()))
    root_logger.handlers.clear()

    if config.get('json', False):
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )

    log_filter = PerformanceFilter() if enable_performance_filtering else None
    handlers = [
        _handler(logging.StreamHandler(sys.stdout), logging.INFO, formatter, log_filter),
        # 50MB x 5 for everything, 10MB x 3 for errors only
        _handler(_rotating(log_file, 50, 5), logging.DEBUG, formatter, log_filter),
        _handler(_rotating(log_file.parent / 'errors.log', 10, 3), logging.ERROR, formatter),
    ]
    for handler in handlers:
        root_logger.addHandler(handler)

    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'aiosqlite': logging.WARNING,
        'sqlalchemy.engine': logging.WARNING,
        'asyncio': logging.WARNING,
        'filelock': logging.WARNING,
        'tldextract': logging.WARNING,
    }
    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info("Logging system initialized")
    root_logger.info(f"Log file: {log_file}")
    root_logger.info(f"Log level: {config.get('level', 'INFO')}")

    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """
    Get a crawler-specific logger with additional context.

    Args:
        name: Logger name
        **extra_context: Context fields included in every message (e.g. crawler_id)

    Returns:
        CrawlerLogAdapter instance
    """
    logger = logging.getLogger(name)
    return CrawlerLogAdapter(logger, extra_context)


def _rotating(path: Path, max_megabytes: int, backup_count: int) -> logging.Handler:
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=max_megabytes * 1024 * 1024, backupCount=backup_count, encoding='utf-8'
    )


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter,
             log_filter: Optional[logging.Filter] = None) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    if log_filter is not None:
        handler.addFilter(log_filter)
    return handler

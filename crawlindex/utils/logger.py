"""
Logging utilities for the crawl-and-index service.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
from datetime import datetime, timezone

from .config import LoggingConfig


# Attributes every LogRecord carries; anything else arrived through ``extra``.
RESERVED_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

QUIET_LOGGERS = ('aiohttp.access', 'aiohttp.client', 'aiohttp.internal')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying any crawl context passed as ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in RESERVED_ATTRS and key not in entry
        )
        return json.dumps(entry, ensure_ascii=False, default=str)


class RunLogAdapter(logging.LoggerAdapter):
    """
    Tags every record of one crawl run with the run's origin and depth
    bound, so interleaved runs can be told apart in the logs.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def page(self, level: int, url: str, message: str, outcome: Optional[str] = None):
        """Log something that happened to a single page of the run."""
        extra: Dict[str, Any] = {'url': url}
        if outcome:
            extra['outcome'] = outcome
        self.log(level, message, extra=extra)

    def stat(self, name: str, value: Any):
        """Log one end-of-run statistic."""
        self.info(f"{name} = {value}", extra={'stat_name': name, 'stat_value': value})


class QuietLibraryFilter(logging.Filter):
    """Drops chatty per-request records from the HTTP library."""

    def __init__(self, quiet: Iterable[str] = QUIET_LOGGERS):
        super().__init__()
        self.quiet = tuple(quiet)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.quiet)


def _rotating_handler(path: Path, level: int, max_bytes: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """
    Configure the root logger for the service.

    Console output at INFO, a rotating debug log at ``config.file`` and a
    separate ``errors.log`` beside it. ``config.json`` switches every handler
    to JSON lines.

    Returns:
        The root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)
    quiet = QuietLibraryFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(quiet)
    root_logger.addHandler(console_handler)

    file_handler = _rotating_handler(log_file, logging.DEBUG, 50 * 1024 * 1024, 5, formatter)
    file_handler.addFilter(quiet)
    root_logger.addHandler(file_handler)

    root_logger.addHandler(
        _rotating_handler(log_file.parent / 'errors.log', logging.ERROR, 10 * 1024 * 1024, 3, formatter)
    )

    for name in ('aiohttp', 'asyncio'):
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging to {log_file} at {config.level} (json={config.json})")
    return root_logger


def get_run_logger(name: str, origin: str, max_depth: int) -> RunLogAdapter:
    """Logger for one crawl run."""
    return RunLogAdapter(logging.getLogger(name), {'origin': origin, 'max_depth': max_depth})

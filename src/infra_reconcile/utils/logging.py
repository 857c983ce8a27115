"""Console and JSON-lines logging for reconciliation runs.

Executor and provisioner log calls pass ``extra={'resource_id': ...}`` so
that every line about a resource can be correlated across workers; both
formatters below render those fields.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


STRUCTURED_FIELDS = ('resource_id', 'resource_type', 'operation', 'attempt', 'duration')

NOISY_LOGGERS = ('boto3', 'botocore', 'urllib3', 's3transfer')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the run log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in STRUCTURED_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colored lines, prefixed with the operation and resource when known."""

    LEVEL_COLORS = {
        logging.DEBUG: '36',
        logging.INFO: '32',
        logging.WARNING: '33',
        logging.ERROR: '31',
        logging.CRITICAL: '35',
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_color and record.levelno in self.LEVEL_COLORS:
            level = f"\033[{self.LEVEL_COLORS[record.levelno]}m{level}\033[0m"

        message = record.getMessage()
        resource_id = getattr(record, 'resource_id', None)
        if resource_id:
            operation = getattr(record, 'operation', None)
            message = f"[{operation} {resource_id}] {message}" if operation else f"[{resource_id}] {message}"

        clock = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        line = f"{clock} {level} {message}"
        if record.exc_info and logging.getLogger().isEnabledFor(logging.DEBUG):
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    log_level: str = 'info',
    log_dir: Optional[str] = '.reconcile/logs'
) -> None:
    """Configure the root logger for a CLI run.

    Console lines go to stderr at ``log_level`` so ``--json`` output on
    stdout stays parseable. When ``log_dir`` is set, a daily
    ``reconcile-YYYYMMDD.jsonl`` file there receives everything at DEBUG.
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG if log_dir else level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter(use_color=sys.stderr.isatty()))
    root_logger.addHandler(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        run_log = directory / f"reconcile-{datetime.now(timezone.utc):%Y%m%d}.jsonl"

        file_handler = logging.FileHandler(run_log)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the module logger for ``name``."""
    return logging.getLogger(name)

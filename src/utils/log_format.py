"""
Logging Setup for Feed Reconciliation

Console and structured JSON log formatting. JSON output is enabled with the
JSON_LOGGING environment variable or the --json-logs flag.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from src.utils.run_context import setup_run_logging

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s [%(run_id)s] %(name)s - %(message)s'
CONSOLE_DATEFMT = '%Y-%m-%d %H:%M:%S'

_EXTRA_FIELDS = {
    'source': 'source',
    'mode': 'mode',
    'duration': 'duration_seconds',
    'discrepancies': 'discrepancies',
}


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with run ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'run_id': getattr(record, 'run_id', None),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for attr, key in _EXTRA_FIELDS.items():
            if hasattr(record, attr):
                log_data[key] = getattr(record, attr)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def json_logging_enabled() -> bool:
    """Whether JSON_LOGGING is set to true."""
    return os.getenv('JSON_LOGGING', 'false').lower() == 'true'


def configure_logging(verbose: bool = False, json_logs: bool = False) -> logging.Logger:
    """
    Configure the root logger.

    Logs go to stderr so that stdout carries only the JSON report.

    Args:
        verbose: Enable DEBUG level
        json_logs: Emit JSON lines instead of console format

    Returns:
        The configured root logger
    """
    handler = logging.StreamHandler(sys.stderr)

    if json_logs or json_logging_enabled():
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))

    setup_run_logging(handler)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # websockets logs every frame at DEBUG
    logging.getLogger('websockets').setLevel(logging.INFO)

    return root

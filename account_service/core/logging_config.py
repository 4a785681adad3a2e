# -*- coding: utf-8 -*-
"""
Logging configuration for the account service.

Routes logs by severity for container log classification:
- DEBUG, INFO, WARNING → STDOUT
- ERROR, CRITICAL → STDERR

Handlers run behind a QueueHandler/QueueListener pair so request handlers
on the event loop never block on stdout/stderr writes. Configured secrets
(signing keys, API keys) are masked before a record is queued.
"""

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from typing import Iterable, Optional

from account_service.utils.security import mask_secret

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_log_listener: Optional[QueueListener] = None
_atexit_registered = False

_TRACEBACK_FORMATTER = logging.Formatter()


class MaxLevelFilter(logging.Filter):
    """Pass only records up to max_level (inclusive)."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


class SecretRedactionFilter(logging.Filter):
    """
    Replace configured secret values in the rendered message, the
    traceback and the stack info.

    Matches the raw value and its 0x-less form, so a private key leaks
    neither way. Always passes the record.
    """

    def __init__(self, secrets: Iterable[Optional[str]]):
        super().__init__()
        values = set()
        for secret in secrets:
            if not secret:
                continue
            values.add(secret)
            if secret.startswith("0x"):
                values.add(secret[2:])
        # longest first, so "0x<key>" is masked before "<key>"
        self._secrets = sorted(values, key=len, reverse=True)

    def filter(self, record):
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = self._redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if record.exc_info and not record.exc_text:
            # render here so the traceback is masked before it is queued
            record.exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._redact(record.exc_text)
        if record.stack_info:
            record.stack_info = self._redact(record.stack_info)
        return True

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, mask_secret(secret))
        return text


def setup_logging(level: str = "INFO", secrets: Iterable[Optional[str]] = ()):
    """
    Install the queue-backed root handler.

    Safe to call more than once: a running listener is stopped and
    replaced. Call before the first log line of the process.

    Args:
        level: Root level name ("DEBUG", "INFO", ...)
        secrets: Values that must never appear in log output
    """
    global _log_listener, _atexit_registered

    if _log_listener is not None:
        _stop_log_listener()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    to_stdout = logging.StreamHandler(sys.stdout)
    to_stdout.addFilter(MaxLevelFilter(logging.WARNING))
    to_stdout.setFormatter(formatter)

    to_stderr = logging.StreamHandler(sys.stderr)
    to_stderr.setLevel(logging.ERROR)
    to_stderr.setFormatter(formatter)

    records: queue.Queue = queue.Queue()
    queue_handler = QueueHandler(records)
    queue_handler.addFilter(SecretRedactionFilter(secrets))
    root_logger.addHandler(queue_handler)

    _log_listener = QueueListener(records, to_stdout, to_stderr, respect_handler_level=True)
    _log_listener.start()
    if not _atexit_registered:
        atexit.register(_stop_log_listener)
        _atexit_registered = True

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _stop_log_listener():
    """Flush and stop the queue listener (called at exit)."""
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None

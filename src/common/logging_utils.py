"""Centralized logging helpers.

Provides one-time logging configuration plus small helpers used across the
codebase to attach structured context to records, keep DEBUG-only work cheap,
and avoid leaking credentials embedded in registry URLs.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from constants import Constants

_SENSITIVE_PARAMS = re.compile(r"(token|auth|key|secret|password|sig|signature)", re.IGNORECASE)
_CONFIGURED_HANDLER_ATTR = "_tarprefetch_handler"


def configure_logging(log_file: Optional[str] = None) -> None:
    """Configure the root logger once.

    Level comes from the TARPREFETCH_LOG_LEVEL environment variable (the CLI
    writes --loglevel there) and defaults to INFO.
    """
    level_name = os.environ.get(Constants.LOG_LEVEL_ENV, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, _CONFIGURED_HANDLER_ATTR, False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        setattr(handler, _CONFIGURED_HANDLER_ATTR, True)
        root.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(file_handler)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted for this logger."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping None values.

    Fields are namespaced under ``ctx_`` to avoid clashing with LogRecord
    attributes such as ``name`` or ``module``.
    """
    return {f"ctx_{k}": v for k, v in fields.items() if v is not None}


def redact(value: Optional[str]) -> str:
    """Replace a secret with a fixed marker."""
    if not value:
        return ""
    return "[REDACTED]"


def safe_url(url: str) -> str:
    """Strip userinfo and mask token-like query parameters."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{redact('userinfo')}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = [
            (k, redact(v) if _SENSITIVE_PARAMS.search(k) else v)
            for k, v in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="[]")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds, measured up to now if still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)

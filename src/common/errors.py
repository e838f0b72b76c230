"""Error taxonomy shared by the resolver and the fetcher."""

from __future__ import annotations

from typing import Optional


class PrefetchError(Exception):
    """Base class for per-item failures.

    These are raised inside the core and converted into failure records at
    the per-item boundary; none of them should reach the process exit path.
    """

    def __init__(self, message: str, *, specifier: Optional[str] = None):
        super().__init__(message)
        self.specifier = specifier


class InputError(PrefetchError):
    """Malformed specifier or unsupported dependency source."""


class ResolutionError(PrefetchError):
    """Package not found, or no published version satisfies the request."""


class NetworkError(PrefetchError):
    """Timeout, connection failure, non-2xx response or unreadable body."""

    def __init__(self, message: str, *, specifier: Optional[str] = None, status_code: int = 0):
        super().__init__(message, specifier=specifier)
        self.status_code = status_code


class IntegrityError(PrefetchError):
    """Downloaded bytes do not match the declared length or digest."""

"""Shared HTTP helpers used by the registry client.

Encapsulates request/timeout error handling so callers receive either a
status/body pair or a NetworkError, never a raw requests exception. Retries
are opt-in: callers pass a ``retry`` wrapper (see ``with_retries``); the
default performs exactly one attempt.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

import requests

from constants import Constants
from common.errors import NetworkError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

T = TypeVar("T")
RetryWrapper = Callable[[Callable[[], T]], T]


def no_retry(func: Callable[[], T]) -> T:
    """Run ``func`` once."""
    return func()


def with_retries(attempts: int, base_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC) -> RetryWrapper:
    """Build a retry wrapper that re-runs a call on NetworkError.

    Args:
        attempts: Total attempts including the first one.
        base_delay: Seconds before the first retry; doubles each time.

    Returns:
        A callable taking a zero-argument function and returning its result.
    """
    attempts = max(1, int(attempts))

    def _wrapper(func: Callable[[], T]) -> T:
        last_exc: Optional[NetworkError] = None
        for attempt in range(attempts):
            try:
                return func()
            except NetworkError as exc:
                last_exc = exc
                if attempt + 1 < attempts:
                    delay = base_delay * (2 ** attempt)
                    logger.debug("Retrying after network error (%s), sleeping %.2fs", exc, delay)
                    time.sleep(delay)
        assert last_exc is not None
        raise last_exc

    return _wrapper


def robust_get(
    url: str,
    *,
    timeout: float = Constants.METADATA_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
    retry: Optional[RetryWrapper] = None,
    **kwargs: Any,
) -> Tuple[int, Dict[str, str], str]:
    """Perform a GET and return (status_code, headers, text).

    Raises:
        NetworkError: on timeout, connection failure or a 5xx response.
    """
    safe_target = safe_url(url)
    request_headers = {"User-Agent": Constants.USER_AGENT}
    if headers:
        request_headers.update(headers)

    def _attempt() -> Tuple[int, Dict[str, str], str]:
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action="GET",
                        target=safe_target,
                    )
                )
            try:
                response = requests.get(url, timeout=timeout, headers=request_headers, **kwargs)
            except requests.Timeout as exc:
                raise NetworkError(f"GET {safe_target} timed out after {timeout} seconds") from exc
            except requests.RequestException as exc:  # includes ConnectionError
                raise NetworkError(f"GET {safe_target} failed: {exc}") from exc

        if response.status_code >= 500:
            raise NetworkError(
                f"GET {safe_target} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    status_code=response.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                )
            )
        return response.status_code, dict(response.headers), response.text

    return (retry or no_retry)(_attempt)


def get_json(
    url: str,
    *,
    timeout: float = Constants.METADATA_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
    retry: Optional[RetryWrapper] = None,
    **kwargs: Any,
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """Perform a GET and parse a JSON body.

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none). The parsed
        value is None for non-200 responses.

    Raises:
        NetworkError: on transport failures, 5xx, or a 200 whose body is not JSON.
    """
    status_code, response_headers, text = robust_get(
        url, timeout=timeout, headers=headers, retry=retry, **kwargs
    )
    if status_code != 200:
        return status_code, response_headers, None
    try:
        return status_code, response_headers, json.loads(text)
    except json.JSONDecodeError as exc:
        if is_debug_enabled(logger):
            logger.debug(
                "JSON decode error",
                extra=extra_context(
                    event="parse",
                    component="http_client",
                    action="get_json",
                    outcome="json_decode_error",
                    target=safe_url(url),
                )
            )
        raise NetworkError(f"Invalid JSON from {safe_url(url)}", status_code=status_code) from exc

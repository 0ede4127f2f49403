"""Shared HTTP helpers used by the remote feed client.

Encapsulates common request/timeout error handling so callers avoid
duplicating try/except blocks. Failures surface as ``FeedError`` so a single
unreachable package does not terminate a restore run.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from errors import FeedError

logger = logging.getLogger(__name__)

# Simple in-memory cache for HTTP responses
_http_cache: Dict[str, Tuple[Any, float]] = {}
_http_cache_lock = threading.Lock()


def _get_cache_key(method: str, url: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Generate cache key from request parameters."""
    headers_str = str(sorted(headers.items())) if headers else ""
    return f"{method}:{url}:{headers_str}"


def _is_cache_valid(cache_entry: Tuple[Any, float]) -> bool:
    """Check if cache entry is still valid."""
    _, cached_time = cache_entry
    return time.time() - cached_time < Constants.HTTP_CACHE_TTL_SEC


def clear_cache() -> None:
    """Drop every cached response."""
    with _http_cache_lock:
        _http_cache.clear()


def robust_get(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    use_cache: bool = True,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], str]:
    """Perform GET request with timeout, retries, and caching with DEBUG traces.

    Returns:
        Tuple of (status_code, headers_dict, text)

    Raises:
        FeedError: when every attempt failed at the transport level.
    """
    cache_key = _get_cache_key("GET", url, headers)
    safe_target = safe_url(url)

    if use_cache:
        with _http_cache_lock:
            entry = _http_cache.get(cache_key)
        if entry is not None and _is_cache_valid(entry):
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP cache hit",
                    extra=extra_context(
                        event="cache_hit", component="http_client", action="GET", target=safe_target
                    ),
                )
            return entry[0]

    last_exception = None
    for attempt in range(Constants.HTTP_RETRY_MAX):
        with Timer() as t:
            try:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request",
                        extra=extra_context(
                            event="http_request",
                            component="http_client",
                            action="GET",
                            target=safe_target,
                            attempt=attempt + 1,
                        ),
                    )
                response = requests.get(
                    url, timeout=Constants.REQUEST_TIMEOUT, headers=headers, **kwargs
                )
            except requests.Timeout:
                last_exception = "timeout"
                logger.debug("GET %s timed out (attempt %d)", safe_target, attempt + 1)
                continue
            except requests.RequestException as exc:  # includes ConnectionError
                last_exception = str(exc)
                logger.debug("GET %s failed (attempt %d): %s", safe_target, attempt + 1, exc)
                continue

        result = (response.status_code, dict(response.headers), response.text)
        if use_cache and response.status_code < 500:  # Don't cache server errors
            with _http_cache_lock:
                _http_cache[cache_key] = (result, time.time())
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
                ),
            )
        return result

    raise FeedError(
        f"GET {safe_target} failed after {Constants.HTTP_RETRY_MAX} attempts: {last_exception}"
    )


def download_bytes(url: str, *, context: str, **kwargs: Any) -> bytes:
    """Download a payload, raising ``FeedError`` on transport errors or non-200 responses."""
    safe_target = safe_url(url)
    with Timer() as t:
        try:
            res = requests.get(url, timeout=Constants.REQUEST_TIMEOUT, **kwargs)
        except requests.Timeout as exc:
            raise FeedError(
                f"{context} download timed out after {Constants.REQUEST_TIMEOUT} seconds: {safe_target}"
            ) from exc
        except requests.RequestException as exc:
            raise FeedError(f"{context} download failed: {safe_target}: {exc}") from exc
    if res.status_code != 200:
        raise FeedError(f"{context} download failed: {safe_target} returned HTTP {res.status_code}")
    logger.debug(
        "Downloaded %d bytes from %s in %d ms", len(res.content), safe_target, t.duration_ms()
    )
    return res.content

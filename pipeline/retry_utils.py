#!/usr/bin/env python3
"""Retry utilities with exponential backoff for handling transient provider failures."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar
from urllib.error import HTTPError, URLError


T = TypeVar("T")

LOGGER = logging.getLogger("learnhub.retry")


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0


def retry_config_from_env(prefix: str = "LH_RETRY_") -> RetryConfig:
    """Read MAX_ATTEMPTS, INITIAL_DELAY, MAX_DELAY and BACKOFF_MULTIPLIER under ``prefix``.

    Unparseable values fall back to the defaults; values below the minimum are clamped.
    """
    defaults = RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=30.0)

    def _int_env(name: str, default: int, minimum: int) -> int:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            return default
        return max(minimum, value)

    def _float_env(name: str, default: float, minimum: float) -> float:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError:
            return default
        return max(minimum, value)

    max_attempts = _int_env(f"{prefix}MAX_ATTEMPTS", defaults.max_attempts, 1)
    initial_delay = _float_env(f"{prefix}INITIAL_DELAY", defaults.initial_delay, 0.0)
    max_delay = _float_env(f"{prefix}MAX_DELAY", defaults.max_delay, 0.0)
    backoff_multiplier = _float_env(
        f"{prefix}BACKOFF_MULTIPLIER",
        defaults.backoff_multiplier,
        1.0,
    )

    # max_delay is never below initial_delay.
    max_delay = max(max_delay, initial_delay)

    return RetryConfig(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_multiplier=backoff_multiplier,
    )


class NonRetryableError(Exception):
    """The provider rejected the call in a way a retry cannot fix."""


class MaxRetriesExceeded(Exception):
    """Every attempt failed with a transient error."""


def _is_retryable_error(error: Exception) -> bool:
    """Rate limits, 5xx responses and network failures are transient; other HTTP errors are not."""
    if isinstance(error, HTTPError):
        return error.code == 429 or 500 <= error.code < 600
    return isinstance(error, (URLError, TimeoutError, ConnectionError))


def _retry_after_seconds(error: Exception) -> Optional[float]:
    if not isinstance(error, HTTPError) or error.headers is None:
        return None
    raw = error.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def with_retry(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds, backing off exponentially between attempts.

    A ``Retry-After`` header on a 429/5xx response overrides the computed
    delay, capped at ``config.max_delay``.

    Raises:
        NonRetryableError: the first non-transient failure
        MaxRetriesExceeded: all ``config.max_attempts`` attempts failed
    """
    if config is None:
        config = retry_config_from_env()

    last_error: Optional[Exception] = None
    delay = config.initial_delay

    for attempt in range(1, config.max_attempts + 1):
        try:
            return operation()
        except Exception as exc:
            last_error = exc
            if not _is_retryable_error(exc):
                raise NonRetryableError(f"{operation_name} failed: {exc}") from exc
            if attempt >= config.max_attempts:
                break

            retry_after = _retry_after_seconds(exc)
            wait = min(retry_after, config.max_delay) if retry_after is not None else delay
            LOGGER.warning(
                "retry.scheduled",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                    "delay_sec": round(wait, 2),
                    "error": str(exc),
                },
            )
            sleep(wait)
            delay = min(delay * config.backoff_multiplier, config.max_delay)

    raise MaxRetriesExceeded(
        f"{operation_name} failed after {config.max_attempts} attempts: {last_error}"
    ) from last_error

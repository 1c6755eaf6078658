"""Retry logic with exponential backoff for model calls.

Operations passed to :func:`with_retry` return a :class:`ModelResponse`
rather than raising, so the policy inspects ``response.error`` to decide
whether another attempt is worthwhile.
"""

from __future__ import annotations

import email.utils
import math
import random
import time
from typing import Callable, Mapping, Optional

from taskpilot.config import defaults
from taskpilot.config.models import RetryConfig
from taskpilot.llm.types import RETRYABLE_ERROR_CODES, ErrorCode, ModelResponse, RetryContext, T
from taskpilot.utils.cancellation import CancellationToken
from taskpilot.utils.log import debug


def is_retryable_error(code: Optional[ErrorCode]) -> bool:
    """True for transient failures (rate limit, network, timeout)."""
    return code in RETRYABLE_ERROR_CODES


def calculate_delay(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    enable_jitter: bool = True,
    jitter_factor: float = defaults.DEFAULT_JITTER_FACTOR,
) -> float:
    """Calculate backoff delay in milliseconds.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay_ms: Delay for the first retry
        max_delay_ms: Upper bound before jitter
        enable_jitter: Scale by a uniform factor in [1-jitter, 1+jitter]
        jitter_factor: Jitter half-width

    Returns:
        Delay in milliseconds
    """
    capped = min(base_delay_ms * (2 ** attempt), max_delay_ms)
    if not enable_jitter:
        return capped

    factor = random.uniform(1 - jitter_factor, 1 + jitter_factor)
    return max(defaults.MIN_RETRY_DELAY_MS, math.floor(capped * factor))


def extract_retry_after_ms(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    """Parse a provider retry hint from response headers.

    Understands ``retry-after-ms`` and ``retry-after`` (seconds or an HTTP
    date).  Returns None when no usable hint is present.
    """
    if not headers:
        return None

    lowered = {str(k).lower(): v for k, v in headers.items()}

    raw_ms = lowered.get("retry-after-ms")
    if raw_ms is not None:
        try:
            return max(0, int(float(raw_ms)))
        except (TypeError, ValueError):
            pass

    raw = lowered.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0, int(float(raw) * 1000))
    except (TypeError, ValueError):
        pass

    try:
        when = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0, int((when.timestamp() - time.time()) * 1000))


def _sleep(delay_ms: float, cancel: Optional[CancellationToken]) -> bool:
    """Sleep for *delay_ms*; return True if cancelled while waiting."""
    if cancel is None:
        time.sleep(delay_ms / 1000.0)
        return False
    return cancel.wait(delay_ms / 1000.0)


def with_retry(
    operation: Callable[[], ModelResponse[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[RetryContext], None]] = None,
    cancel: Optional[CancellationToken] = None,
) -> ModelResponse[T]:
    """Run *operation* until it succeeds, fails terminally, or retries run out.

    All state is local to the call, so concurrent invocations never share
    attempt counters or timers.

    Args:
        operation: Zero-argument callable returning a ModelResponse
        config: Retry tunables (defaults when omitted)
        on_retry: Observer called before each backoff sleep
        cancel: Token observed during the backoff sleep

    Returns:
        The first successful response, or the last failure
    """
    config = config or RetryConfig()
    max_retries = config.max_retries

    attempt = 0
    while True:
        response = operation()
        if response.success:
            return response

        if not is_retryable_error(response.error) or attempt >= max_retries:
            return response

        if response.retry_after_ms is not None:
            delay_ms = response.retry_after_ms
        else:
            delay_ms = calculate_delay(
                attempt,
                config.base_delay_ms,
                config.max_delay_ms,
                config.enable_jitter,
                config.jitter_factor,
            )

        debug(
            "retry",
            f"{response.error.value if response.error else 'error'} "
            f"(attempt {attempt + 1}/{max_retries}), retrying in {delay_ms}ms",
        )

        if on_retry:
            on_retry(
                RetryContext(
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_ms=int(delay_ms),
                    error=response.error or ErrorCode.UNKNOWN,
                    message=response.message,
                )
            )

        if _sleep(delay_ms, cancel):
            return response

        attempt += 1

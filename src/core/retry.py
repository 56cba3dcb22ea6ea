# src/core/retry.py — v1
"""Bounded retry with exponential backoff for registry and cluster API calls.

Only ``TransientInfraError`` is retried. Everything else propagates on the
first attempt. Test commands never go through here.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from shipline.core.errors import RetryExhausted, TransientInfraError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for backend calls."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    jitter: bool = True


DEFAULT_RETRY_CONFIG = RetryConfig()
NO_RETRY = RetryConfig(max_retries=0, base_delay_s=0.0)

_TRANSIENT_PATTERNS = re.compile(
    r"timed? ?out|timeout|connection (reset|refused)|temporar(y|ily)|"
    r"too many requests|\b429\b|\b50[0234]\b|service unavailable|"
    r"bad gateway|i/o timeout|tls handshake|unexpected eof",
    re.IGNORECASE,
)


def is_transient_output(output: str) -> bool:
    """Classify CLI error output as a transient infrastructure failure."""
    return bool(_TRANSIENT_PATTERNS.search(output or ""))


def _compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "unknown",
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async backend call, retrying transient failures.

    Raises:
        RetryExhausted: If the call kept failing transiently.
    """
    config = config or DEFAULT_RETRY_CONFIG
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except TransientInfraError as e:
            attempts += 1
            if attempts > config.max_retries:
                raise RetryExhausted(operation, attempts, e) from e

            delay = _compute_delay(config, attempts - 1)
            logger.warning(
                "'%s' transient failure (attempt %d/%d), retrying in %.1fs: %s",
                operation, attempts, config.max_retries, delay, e,
            )
            await asyncio.sleep(delay)

"""Bounded retry for state-lock contention."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from ..config import LockConfig
from ..errors import LockContention

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_lock(
    operation: Callable[[], T],
    config: LockConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Run `operation`, retrying with exponential backoff on ``LockContention``.

    Any other exception propagates immediately. After `config.max_attempts`
    lock failures the last ``LockContention`` is re-raised.
    """
    attempts = max(1, config.max_attempts)
    delay = config.backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except LockContention:
            if attempt == attempts:
                logger.error("🔒 State lock still held after %d attempts, giving up", attempts)
                raise
            logger.warning(
                "🔒 State lock busy during %s (attempt %d/%d), retrying in %.1fs",
                description,
                attempt,
                attempts,
                delay,
            )
            sleep(delay)
            delay = min(delay * config.backoff_factor, config.max_backoff_seconds)
    raise AssertionError("unreachable")

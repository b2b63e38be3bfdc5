"""Retries for writes that must not be lost, such as quota commits."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, TypeVar

from pairtalk.models.config import RetryPolicy

logger = logging.getLogger("pairtalk.retry")

__all__ = ["RetryPolicy", "retry_with_backoff"]

T = TypeVar("T")


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    policy: RetryPolicy,
    *args: Any,
    operation: str = "operation",
    context: Mapping[str, Any] | None = None,
) -> T:
    """Await ``fn(*args)``, making up to ``policy.attempts`` attempts.

    *operation* and *context* (e.g. pair key and session id) label the
    retry log lines so a lost write can be traced to its call.

    Raises:
        Exception: The last attempt's exception once attempts run out.
    """
    labels = dict(context or {})
    described = " ".join(f"{k}={v}" for k, v in labels.items())
    for retry in range(policy.attempts):
        try:
            result = await fn(*args)
        except Exception as exc:
            if retry + 1 >= policy.attempts:
                raise
            delay = policy.delay_for(retry)
            logger.warning(
                "%s failed on attempt %d/%d (%s): %s; retrying in %.2fs",
                operation,
                retry + 1,
                policy.attempts,
                described,
                exc,
                delay,
                extra={**labels, "attempt": retry + 1, "delay": delay},
            )
            await asyncio.sleep(delay)
            continue
        if retry:
            logger.info("%s succeeded on attempt %d (%s)", operation, retry + 1, described)
        return result
    raise AssertionError("unreachable")  # pragma: no cover

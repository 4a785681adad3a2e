"""
Async retry utility for transient failures in collaborator adapters.

The account core never retries: domain errors are final and storage
atomicity must not be replayed blindly. Only the outbound HTTP adapters
(mail delivery) use this helper.

Retry policy:
- Exponential backoff with jitter
- Only transient transport failures are retried
- Original exception is raised after the last attempt
- No logging inside the utility (caller handles logging)
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Tuple, Type

import httpx

DEFAULT_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0

TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.TransportError,  # connect/read errors and timeouts
    asyncio.TimeoutError,
    ConnectionError,
)


async def retry_async(
    fn: Callable[[], Awaitable[Any]],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> Any:
    """
    Call fn until it succeeds, retrying transient errors with backoff.

    Args:
        fn: Zero-argument callable returning an awaitable
        retries: Retries after the first attempt (default 2, 3 attempts total)
        base_delay: Delay before the first retry, doubled each attempt
        max_delay: Upper bound for a single delay
        retry_on: Exception types considered transient

    Returns:
        Result of fn

    Raises:
        The last exception once retries are exhausted; non-transient
        exceptions immediately
    """
    for attempt in range(retries + 1):
        try:
            return await fn()
        except retry_on:
            if attempt >= retries:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            # ±20% jitter
            delay = max(0.0, delay + delay * 0.2 * (random.random() * 2 - 1))
            await asyncio.sleep(delay)

    raise RuntimeError("retry_async: unexpected end of retry loop")

"""
Backoff for transient Object Storage and Document API failures.

Delays are kept short: every retried call sits on the request path of a
function with a hard execution timeout.
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar

from .exceptions import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    """Delay before retry number ``attempt + 1``, capped at ``max_delay``."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay += random.uniform(0, 0.1 * delay)
    return delay


def retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    jitter: bool = True,
    retry_on: Tuple[Type[BaseException], ...] = (RetryableError,)
):
    """
    Retry a storage call with exponential backoff.

    Only exceptions listed in ``retry_on`` are retried; the clients raise
    RetryableError for throttling and 5xx answers. Anything else propagates
    on the first attempt. After ``max_retries`` retries the last error is
    re-raised.

    Example:
        @retry_with_backoff(max_retries=3)
        def put_blob(self, key, body):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = getattr(func, '__qualname__', repr(func))

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries:
                        logger.error(
                            'Giving up on %s after %d retries: %s', name, attempt, e
                        )
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay, jitter)
                    attempt += 1
                    logger.warning(
                        'Transient failure in %s, retry %d/%d in %.2fs: %s',
                        name, attempt, max_retries, delay, e
                    )
                    time.sleep(delay)

        return wrapper
    return decorator

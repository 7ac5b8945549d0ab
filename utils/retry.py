"""
Retry logic with exponential backoff.

Handles transient failures around collaborator calls (language model,
retrieval) and state-file writes. Collaborator calls are async, so both a
blocking and an awaitable flavour are provided, plus a timeout wrapper
that turns expiry into a retryable error.
"""

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from utils.exceptions import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1


TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)

COLLABORATOR_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    CollaboratorError,
    ConnectionError,
    TimeoutError,
)


class NonRetryableError(Exception):
    """Mark an error as non-retryable (fail immediately)."""

    pass


def _backoff_delay(config: RetryConfig, attempt: int) -> float:
    delay = min(config.initial_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)
    if config.jitter:
        jitter_range = delay * config.jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


def with_retry(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
):
    """
    Decorator for adding retry logic to blocking functions.

    Usage:
        @with_retry(RetryConfig(max_attempts=3, initial_delay=0.1))
        def write_table():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return retry_with_backoff(
                func,
                args=args,
                kwargs=kwargs,
                config=config,
                retryable_exceptions=retryable_exceptions,
            )

        return wrapper

    return decorator


def retry_with_backoff(
    func: Callable,
    args: tuple = (),
    kwargs: Optional[dict] = None,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Execute a blocking function with exponential backoff retry.

    Raises:
        The last exception once all attempts are exhausted.
    """
    cfg = config or RetryConfig()
    kwargs = kwargs or {}

    for attempt in range(1, cfg.max_attempts + 1):
        try:
            return func(*args, **kwargs)

        except NonRetryableError:
            raise

        except retryable_exceptions as e:
            if attempt == cfg.max_attempts:
                logger.error(f"All {cfg.max_attempts} attempts failed for {func.__name__}: {e}")
                raise

            delay = _backoff_delay(cfg, attempt)
            logger.warning(
                f"Attempt {attempt}/{cfg.max_attempts} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            if on_retry:
                on_retry(e, attempt)
            time.sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")


async def async_retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    args: tuple = (),
    kwargs: Optional[dict] = None,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = COLLABORATOR_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Await a coroutine function with exponential backoff retry.

    Same contract as retry_with_backoff, but sleeps with asyncio so other
    sessions keep running while one waits on a flaky collaborator.
    """
    cfg = config or RetryConfig()
    kwargs = kwargs or {}
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, cfg.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except NonRetryableError:
            raise

        except retryable_exceptions as e:
            if attempt == cfg.max_attempts:
                logger.error(f"All {cfg.max_attempts} attempts failed for {name}: {e}")
                raise

            delay = _backoff_delay(cfg, attempt)
            logger.warning(
                f"Attempt {attempt}/{cfg.max_attempts} failed for {name}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            if on_retry:
                on_retry(e, attempt)
            await asyncio.sleep(delay)

    raise RuntimeError("async_retry_with_backoff called with max_attempts < 1")


async def call_with_timeout(
    awaitable: Awaitable[Any],
    timeout_seconds: Optional[float],
    collaborator: str,
) -> Any:
    """
    Await a collaborator call, converting expiry into CollaboratorError.

    A timeout of None or <= 0 disables the bound.
    """
    if timeout_seconds is None or timeout_seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise CollaboratorError(
            f"{collaborator} call timed out after {timeout_seconds:.1f}s",
            collaborator=collaborator,
        ) from e


class RetryStrategies:
    """Pre-built retry strategies for common scenarios."""

    @staticmethod
    def collaborator_call(max_attempts: int = 3, initial_delay: float = 1.0) -> RetryConfig:
        return RetryConfig(
            max_attempts=max_attempts,
            initial_delay=initial_delay,
            max_delay=30.0,
            exponential_base=2.0,
            jitter=True,
        )

    @staticmethod
    def file_operation() -> RetryConfig:
        return RetryConfig(
            max_attempts=3,
            initial_delay=0.05,
            max_delay=1.0,
            exponential_base=2.0,
            jitter=False,
        )

"""Retry with exponential backoff for transient collaborator failures.

Used for in-step retries of agent invocations and for discovery polls.
Errors deriving from NonRetryableError (agent throttling among them) are
re-raised on the first occurrence: waiting out a throttling window is the
job of the processing loop, not of an in-step retry.
"""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class NonRetryableError(Exception):
    """Base class for errors that must never be retried in place."""


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    operation_name: str = "operation",
    no_retry: Tuple[Type[BaseException], ...] = (),
) -> T:
    """Run ``operation`` until it succeeds or attempts are exhausted.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``.

    Args:
        operation: Zero-argument coroutine factory.
        max_attempts: Total attempts, including the first.
        base_delay: Delay in seconds after the first failure.
        operation_name: Label used in log entries.
        no_retry: Extra exception types to re-raise immediately.

    Returns:
        The operation's result.

    Raises:
        The last exception raised by ``operation``.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            logger.debug(
                "Attempting operation",
                operation=operation_name,
                attempt=attempt,
                max_attempts=attempts,
            )
            return await operation()
        except NonRetryableError:
            raise
        except no_retry:
            raise
        except Exception as exc:
            if attempt == attempts:
                logger.error(
                    "Operation failed after all attempts",
                    operation=operation_name,
                    attempts=attempts,
                    error=str(exc),
                )
                raise

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Operation failed, retrying",
                operation=operation_name,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")

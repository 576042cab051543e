"""
Error Handling Utility Module

Reusable error handling patterns with structured, contextual logging:
1. log_and_continue() - Log error and continue execution (for expected partial failures)
2. with_async_retry() - Decorator for bounded retry of coroutines with a fixed backoff
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")


def log_and_continue(
    logger: logging.Logger,
    error: Exception,
    context: dict[str, Any],
    error_type: str = "Operation",
) -> None:
    """
    Log an error with structured context and continue execution gracefully.

    Use this when a failure affects a single item and must not halt the
    surrounding work (e.g. one project's stats in a fan-out).

    Args:
        logger: Logger instance from logging.getLogger(__name__)
        error: The caught exception
        context: Structured data about what failed (project, query, etc.)
        error_type: Human-readable description of the operation

    Example:
        for (project, query), result in zip(targets, results):
            if isinstance(result, Exception):
                log_and_continue(logger, result, {"project": project.slug}, "Stat fetch")
                continue
    """
    logger.warning(
        f"{error_type} failed: {error}",
        extra={
            "error_type": error_type,
            "exception_class": error.__class__.__name__,
            "context": context,
        },
    )


def with_async_retry(
    max_attempts: int = 3,
    backoff_seconds: float = 3.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to retry a coroutine function a bounded number of times.

    Waits a fixed ``backoff_seconds`` between attempts. The sleep is awaited,
    so other tasks on the event loop keep running while one task backs off.
    After the last attempt fails the original exception is re-raised.

    Args:
        max_attempts: Total number of attempts, including the first (default: 3)
        backoff_seconds: Fixed wait between attempts
        exceptions: Exception types that trigger a retry; anything else propagates immediately
        sleep: Awaitable sleep function (injectable for tests)

    Example:
        @with_async_retry(max_attempts=3, backoff_seconds=3.0, exceptions=(SentryAPIError,))
        async def fetch_stats(project: Project) -> list[StatBucket]:
            return await client.get_project_stats(...)
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            logger = logging.getLogger(func.__module__)

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"Function {func.__name__} failed after {max_attempts} attempts: {e}",
                            extra={
                                "function": func.__name__,
                                "max_attempts": max_attempts,
                                "final_exception": e.__class__.__name__,
                            },
                        )
                        raise

                    logger.warning(
                        f"Function {func.__name__} failed (attempt {attempt}/{max_attempts}), "
                        f"retrying in {backoff_seconds:.1f}s: {e}",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "wait_time": backoff_seconds,
                            "exception": e.__class__.__name__,
                        },
                    )
                    await sleep(backoff_seconds)

            raise RuntimeError("Retry logic failed unexpectedly")

        return wrapper

    return decorator

"""
Centralized Error Handler

Keeps side-effect failures (email delivery, scheduled sweeps) from
propagating into the request path or killing the scheduler, while still
logging them with context.
"""

import inspect
from functools import wraps
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from logging_config import get_logger, log_error

logger = get_logger(__name__)
T = TypeVar('T')


class ErrorHandler:
    """Centralized error handling with proper logging"""

    @staticmethod
    async def safe_execute_async(
        coro: Coroutine[Any, Any, T],
        default: T = None,
        context: dict | None = None,
        log_level: str = "ERROR"
    ) -> T:
        """
        Safely execute an async function with error handling.

        Usage:
            sent = await ErrorHandler.safe_execute_async(
                email_service.send_invitation(...),
                default=False,
                context={"promise_id": str(promise.id)}
            )
        """
        try:
            return await coro
        except Exception as e:
            log_error(e, context, log_level)
            return default


def handle_errors(
    default: Any = None,
    context: dict | None = None,
    log_level: str = "ERROR",
):
    """
    Decorator for coroutine functions: log the failure with context and
    return `default` instead of raising.

    Usage:
        @handle_errors(default=None, context={"job": "overdue_sweep"})
        async def scheduled_job():
            # Errors are logged, the scheduler keeps ticking
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"handle_errors expects a coroutine function, got {func.__name__}")

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                ctx = dict(context or {})
                ctx["function"] = func.__name__
                log_error(e, ctx, log_level)
                return default

        return wrapper

    return decorator

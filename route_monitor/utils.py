"""Provides utility functions and custom exceptions for the application.

This module contains common helpers that are used across various parts of the
route_monitor package.

Classes:
    DaemonError: Base class for every failure talking to the daemon.
    TransportError: The request never produced an HTTP response.
    ApiError: The daemon answered with a non-success status.
    PayloadError: The daemon answered, but the body could not be understood.

Functions:
    retry: A decorator that retries a function call upon failure with
           configurable delay and backoff.
"""
import time
import logging
from functools import wraps
from typing import Callable, Any, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

# A generic TypeVar to preserve function signatures in the decorator
F = TypeVar('F', bound=Callable[..., Any])


class DaemonError(Exception):
    """Base exception for all errors raised while talking to the daemon."""
    pass


class TransportError(DaemonError):
    """Raised when a request fails before any HTTP response is received.

    Connection refused, DNS failures and timeouts all end up here.
    """
    pass


class ApiError(DaemonError):
    """Raised when the daemon responds with a non-2xx status.

    Attributes:
        status: The HTTP status code.
        message: The server-provided error text, or a generic description
            built from the status code when the body carried none.
    """

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or f"HTTP {status}"
        super().__init__(self.message)


class PayloadError(DaemonError):
    """Raised when a response body is not valid JSON or has the wrong shape."""
    pass


def retry(tries: int = 2, delay: float = 5, backoff: float = 1,
          exceptions: Tuple[Type[BaseException], ...] = (Exception,)) -> Callable[[F], F]:
    """Creates a decorator that retries a function upon failure.

    This decorator will re-invoke the decorated function if it raises one of
    `exceptions`. It supports a configurable number of attempts, an initial
    delay, and an exponential backoff factor.

    Args:
        tries: The maximum number of attempts to make.
        delay: The initial delay between retries in seconds.
        backoff: The factor by which the delay is multiplied after each failed
            attempt. A value of 1 results in a fixed delay.
        exceptions: The exception types that trigger another attempt. Anything
            else propagates immediately.

    Returns:
        A decorator that can be applied to a function to make it resilient to
        transient failures.
    """
    def deco_retry(f: F) -> F:
        @wraps(f)
        def f_retry(*args: Any, **kwargs: Any) -> Any:
            _tries, _delay = tries, delay
            for attempt in range(1, _tries + 1):
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    if attempt == _tries:
                        logger.error(f"Function '{f.__name__}' failed on the final attempt ({attempt}/{_tries}): {e}")
                        raise

                    logger.warning(f"Function '{f.__name__}' failed with '{e}'. Attempt {attempt}/{_tries}. "
                                   f"Retrying in {_delay} seconds...")
                    time.sleep(_delay)
                    _delay *= backoff
            # The loop either returns a result or raises.
            raise RuntimeError("Exited retry loop unexpectedly.")
        return f_retry  # type: ignore
    return deco_retry

"""Retry utilities for storage operations.

Provides exponential backoff retry logic for transient database errors
and translation of SQLAlchemy failures into StorageError.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from herald.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying database operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Only connection-level failures are retried; constraint violations and
# programming errors surface immediately.
_transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((OperationalError, InterfaceError)),
    before_sleep=_log_retry,
    reraise=True,
)


def storage_errors(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Wrap SQLAlchemy errors raised by ``fn`` in StorageError."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper


def storage_retry(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry transient database errors, then wrap failures in StorageError.

    Use on reads and on inserts of freshly generated rows; conditional
    updates go through ``storage_errors`` only.
    """
    return storage_errors(_transient_retry(fn))

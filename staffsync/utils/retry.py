"""Store call guard - per-call timeout plus bounded exponential backoff

Every suspending store operation goes through ``call_with_retry`` so that no
single call can block the event loop indefinitely. Transient faults are
retried here and only surface as ``OperationTimeoutError`` once the attempts
are exhausted.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from pymongo.errors import AutoReconnect, NetworkTimeout, ServerSelectionTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import settings
from ..domain.errors import OperationTimeoutError
from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    AutoReconnect,
    NetworkTimeout,
    ServerSelectionTimeoutError,
)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    op_name: str,
    timeout: Optional[float] = None,
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """
    Run a store operation with a timeout, retrying transient faults

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        op_name: Name used in logs and in the raised error
        timeout: Per-attempt timeout in seconds (default: settings)
        attempts: Max attempts (default: settings.store_retry_attempts)
        backoff: Exponential backoff multiplier in seconds

    Raises:
        OperationTimeoutError: When every attempt failed transiently
    """
    timeout = settings.store_timeout_seconds if timeout is None else timeout
    attempts = settings.store_retry_attempts if attempts is None else attempts
    backoff = settings.store_retry_backoff_seconds if backoff is None else backoff

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, max=settings.store_retry_max_backoff_seconds),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"Retrying {op_name}",
                        extra={"attempt": attempt.retry_state.attempt_number}
                    )
                return await asyncio.wait_for(operation(), timeout=timeout)
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.warning(
            f"{op_name} failed after {attempts} attempts: {last!r}",
            extra={"attempt": attempts}
        )
        raise OperationTimeoutError(
            f"{op_name} did not complete",
            details={"operation": op_name, "attempts": attempts, "cause": type(last).__name__}
        ) from last

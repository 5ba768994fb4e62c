"""
Timeout Utilities
=================
Consistent timeout handling for every call that leaves the process.

Usage:
    from utils.timeout import TIMEOUTS, timeout_wrapper, run_with_deadline

    # Bound a single brokerage call
    account = timeout_wrapper(client.get_account, TIMEOUTS.API_CALL, "get_account")

    # Bound a whole gateway operation from the caller's side
    outcomes = run_with_deadline(gateway.place_multiple_orders, 20.0, "orders", requests)

Design Principles:
- Simple timeout + log + raise
- No mid-flight abort: on expiry the worker thread is abandoned and its
  result discarded
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# TIMEOUT CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class TimeoutConfig:
    """Standard timeout values by operation type (in seconds)."""

    # API calls (account, clock, positions, single quote)
    API_CALL: float = 15.0

    # Data fetching (bars, snapshots, one quote page)
    DATA_FETCH: float = 30.0

    # Order submission, replacement, position close
    ORDER_SUBMIT: float = 30.0

    # Waiting for the trade-update stream to come up
    STREAM_CONNECT: float = 30.0


# Default instance for easy import
TIMEOUTS = TimeoutConfig()


# =============================================================================
# TIMEOUT WRAPPER
# =============================================================================

def timeout_wrapper(
    func: Callable[..., T],
    timeout_seconds: float,
    operation_name: str = "operation",
    *args,
    **kwargs
) -> T:
    """
    Execute a function with a timeout.

    Uses a single-thread executor so blocking HTTP calls can be bounded.

    Args:
        func: Function to execute
        timeout_seconds: Maximum time to wait in seconds
        operation_name: Name for logging purposes
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from func

    Raises:
        TimeoutError: If function doesn't complete within timeout
        Exception: Any exception raised by func
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"timeout-{operation_name}")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FuturesTimeoutError:
        logger.error(
            f"Timeout: {operation_name} did not complete within {timeout_seconds}s"
        )
        raise TimeoutError(
            f"{operation_name} timed out after {timeout_seconds} seconds"
        )
    finally:
        # Never block on an abandoned call
        executor.shutdown(wait=False)


def run_with_deadline(
    func: Callable[..., T],
    deadline_seconds: float,
    operation_name: str = "gateway call",
    *args,
    **kwargs
) -> T:
    """
    Bound an entire gateway operation with an external deadline.

    Sub-requests still in flight when the deadline passes keep running in
    the background; whatever they return is dropped.
    """
    return timeout_wrapper(func, deadline_seconds, operation_name, *args, **kwargs)

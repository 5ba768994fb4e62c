"""
Error Handling Utilities
========================
Exception hierarchy and helpers shared by the scheduler, the dispatch
loop and the brokerage gateway.

Usage:
    from utils.errors import ParseError, RemoteError, error_context

    raise ParseError("Bad time token", field="time", value="9:3am")

    with error_context("placing order", symbol="AAPL"):
        client.submit_order(request)

Taxonomy:
- ParseError: malformed schedule entry or credential field
- RemoteError: any failure coming back from the brokerage API
- ProtocolError: the brokerage answered, but not in a shape we can follow
- HandlerError: user handler code raised
- ConfigurationError: settings missing or contradictory
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTION HIERARCHY
# =============================================================================

class TradingSystemError(Exception):
    """
    Base exception for all market strategy errors.

    Supports structured context for logging and for the ErrorInfo
    records carried in reports.

    Example:
        raise TradingSystemError(
            "Operation failed",
            operation="get_clock",
            details={"status_code": 500}
        )
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.operation = operation
        self.symbol = symbol
        self.details = details or {}
        self.cause = cause

        parts = [message]
        if operation:
            parts.append(f"operation={operation}")
        if symbol:
            parts.append(f"symbol={symbol}")
        if details:
            parts.append(f"details={details}")

        super().__init__(" | ".join(parts))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "operation": self.operation,
            "symbol": self.symbol,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None
        }


class ParseError(TradingSystemError):
    """Raised when a time spec, time token or credential field is malformed."""

    def __init__(
        self,
        message: str = "Parse error",
        field: Optional[str] = None,
        value: Any = None,
        **kwargs
    ):
        self.field = field
        self.value = value

        kwargs.setdefault('details', {})
        if field:
            kwargs['details']['field'] = field
        if value is not None:
            kwargs['details']['value'] = str(value)[:100]

        super().__init__(message, **kwargs)


class RemoteError(TradingSystemError):
    """Raised when a brokerage call fails (network, auth, rate limit, validation)."""

    def __init__(
        self,
        message: str = "Remote call failed",
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.status_code = status_code
        if status_code is not None:
            kwargs.setdefault('details', {})['status_code'] = status_code
        super().__init__(message, **kwargs)


class ProtocolError(TradingSystemError):
    """Raised when a response cannot be followed (runaway cursor, bad shape)."""

    def __init__(
        self,
        message: str = "Protocol violation",
        pages: Optional[int] = None,
        **kwargs
    ):
        self.pages = pages
        if pages is not None:
            kwargs.setdefault('details', {})['pages'] = pages
        super().__init__(message, **kwargs)


class HandlerError(TradingSystemError):
    """Raised when a scheduled handler fails."""

    def __init__(
        self,
        message: str = "Handler failed",
        handler: Optional[str] = None,
        **kwargs
    ):
        self.handler = handler
        if handler:
            kwargs.setdefault('details', {})['handler'] = handler
        super().__init__(message, **kwargs)


class ConfigurationError(TradingSystemError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str = "Configuration error",
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        if config_key:
            kwargs.setdefault('details', {})['config_key'] = config_key
        super().__init__(message, **kwargs)


# =============================================================================
# WRAPPING FOREIGN ERRORS
# =============================================================================

def as_remote_error(error: BaseException, operation: str, symbol: Optional[str] = None) -> TradingSystemError:
    """
    Normalize an exception raised by the brokerage client.

    Errors that are already part of the hierarchy pass through untouched.
    alpaca-py's APIError exposes `status_code`; it is kept when present.
    """
    if isinstance(error, TradingSystemError):
        if symbol and not error.symbol:
            error.symbol = symbol
        return error

    status_code = getattr(error, 'status_code', None)
    if not isinstance(status_code, int):
        status_code = None

    return RemoteError(
        f"{type(error).__name__}: {error}",
        status_code=status_code,
        operation=operation,
        symbol=symbol,
        cause=error
    )


@contextmanager
def error_context(
    operation: str,
    *,
    symbol: Optional[str] = None,
    reraise: bool = True,
    log_level: int = logging.ERROR,
    **extra_context
):
    """
    Context manager that adds context to any exception.

    Foreign exceptions are re-raised as RemoteError so callers only ever
    see the hierarchy above.

    Example:
        with error_context("closing position", symbol="AAPL"):
            client.close_position("AAPL")
    """
    try:
        yield
    except TradingSystemError as e:
        if not e.operation:
            e.operation = operation
        if not e.symbol and symbol:
            e.symbol = symbol
        e.details.update(extra_context)

        logger.log(log_level, f"Failed while {operation} | {e}")

        if reraise:
            raise

    except Exception as e:
        context = f"Failed while {operation}"
        if symbol:
            context += f" | symbol={symbol}"
        if extra_context:
            context += f" | {extra_context}"
        context += f" | {type(e).__name__}: {e}"

        logger.log(log_level, context)

        if reraise:
            wrapped = as_remote_error(e, operation, symbol)
            wrapped.details.update(extra_context)
            raise wrapped from e


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def is_retryable(error: BaseException) -> bool:
    """
    Determine if an error is retryable.

    Returns True for transient errors (network, timeout, rate limit).
    Returns False for permanent errors (parse, validation, handler code).
    """
    if isinstance(error, (ParseError, ConfigurationError, HandlerError, ProtocolError)):
        return False

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    cause = getattr(error, 'cause', None) or error.__cause__
    if isinstance(error, RemoteError) and cause is not None and is_retryable(cause):
        return True

    status_code = getattr(error, 'status_code', None)
    if status_code in (429, 500, 502, 503, 504):
        return True

    error_str = str(error).lower()
    transient_patterns = [
        "timeout",
        "timed out",
        "connection refused",
        "connection reset",
        "temporarily unavailable",
        "service unavailable",
        "rate limit",
        "too many requests",
    ]

    return any(pattern in error_str for pattern in transient_patterns)


# =============================================================================
# ERROR FORMATTING
# =============================================================================

def format_exception_chain(error: BaseException) -> str:
    """
    Format exception with its full chain for logging.

    Returns a multi-line string showing the exception chain.
    """
    lines = []
    current = error
    seen = set()

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"{type(current).__name__}: {current}")
        current = getattr(current, '__cause__', None) or getattr(current, 'cause', None)

    return "\n  Caused by: ".join(lines)

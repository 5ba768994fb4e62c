# Utils package
#
# Clock helpers live in utils.clock and are imported from there directly;
# they depend on config, which itself depends on utils.errors.

# Timeout utilities
from utils.timeout import (
    TimeoutConfig,
    TIMEOUTS,
    timeout_wrapper,
    run_with_deadline,
)

# Error handling utilities
from utils.errors import (
    TradingSystemError,
    ParseError,
    RemoteError,
    ProtocolError,
    HandlerError,
    ConfigurationError,
    as_remote_error,
    error_context,
    is_retryable,
    format_exception_chain,
)

__all__ = [
    # Timeout
    'TimeoutConfig',
    'TIMEOUTS',
    'timeout_wrapper',
    'run_with_deadline',
    # Errors
    'TradingSystemError',
    'ParseError',
    'RemoteError',
    'ProtocolError',
    'HandlerError',
    'ConfigurationError',
    'as_remote_error',
    'error_context',
    'is_retryable',
    'format_exception_chain',
]

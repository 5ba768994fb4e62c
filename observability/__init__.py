"""
Observability Module
====================
Logging setup and the tagged diagnostic sink.
"""

from observability.logger import (
    get_logger,
    get_tagged_logger,
    setup_logging,
    TaggedLogger,
    LogContext,
)

__all__ = ['get_logger', 'get_tagged_logger', 'setup_logging', 'TaggedLogger', 'LogContext']

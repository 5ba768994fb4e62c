# Core types for the market strategy runner
from core.types import (
    PositionSide,
    PageMode,
    CredentialsMode,
    ErrorInfo,
    ScheduleEntry,
    ResolvedWindow,
    DispatchReport,
    QuoteSelector,
    QuotePrice,
    BatchOutcome,
    BulkOutcome,
    BatchSummary,
    ChunkFailure,
    ChunkedResult,
    Page,
    PagedResult,
    ReplaceOrderConfig,
    AlpacaCredentials,
)

__all__ = [
    'PositionSide', 'PageMode', 'CredentialsMode', 'ErrorInfo',
    'ScheduleEntry', 'ResolvedWindow', 'DispatchReport',
    'QuoteSelector', 'QuotePrice',
    'BatchOutcome', 'BulkOutcome', 'BatchSummary',
    'ChunkFailure', 'ChunkedResult', 'Page', 'PagedResult',
    'ReplaceOrderConfig', 'AlpacaCredentials',
]

"""
Core Types for the Market Strategy Runner
=========================================
Canonical type definitions shared by the scheduler, the dispatch loop
and the brokerage gateway.

This module is the SINGLE SOURCE OF TRUTH for those types.
All other modules should import from here.

Result shapes
-------------
Two distinct shapes come back from multi-item gateway operations:

1. BatchOutcome - one per fanned-out unit (order, symbol, position),
   correlated by `key`, never by position in the list.
2. BulkOutcome - one per single bulk call (close all positions,
   cancel all orders). Never mix the two.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from utils.errors import ParseError, TradingSystemError

T = TypeVar('T')


class PositionSide(Enum):
    """Side of an open position."""
    LONG = "long"
    SHORT = "short"


class PageMode(Enum):
    """
    How much of a paged endpoint to read.

    FIRST stops after one page and keeps its first item. ALL keeps every
    item of every page. LAST walks every page and keeps the final page only.
    """
    FIRST = "first"
    ALL = "all"
    LAST = "last"


class CredentialsMode(Enum):
    """Whether the gateway also opens a trade-update stream."""
    CLIENT = "client"
    STREAM = "stream"


# =============================================================================
# ERRORS AS DATA
# =============================================================================

@dataclass(frozen=True)
class ErrorInfo:
    """Serializable description of a failure, carried inside reports."""
    error_type: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        if isinstance(error, TradingSystemError):
            details = dict(error.details)
            if error.operation:
                details.setdefault('operation', error.operation)
            if error.symbol:
                details.setdefault('symbol', error.symbol)
            return cls(type(error).__name__, error.message, details)
        return cls(type(error).__name__, str(error))

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"


# =============================================================================
# SCHEDULING
# =============================================================================

@dataclass(frozen=True)
class ScheduleEntry:
    """
    One configured (time spec, handler) pair.

    time_spec is a single 'h:mma' time ("9:30am") or a range
    ("9:30am-4:00pm"). Entries are evaluated in list order; the first
    match wins.
    """
    time_spec: str
    handler: Any
    name: Optional[str] = None

    @classmethod
    def from_config(cls, item: Any) -> "ScheduleEntry":
        """Accept a ScheduleEntry, a {'time', 'code'} dict or a (time, handler) pair."""
        if isinstance(item, cls):
            return item
        if isinstance(item, dict):
            if 'time' not in item or 'code' not in item:
                raise ParseError("Schedule entry needs 'time' and 'code'", field="entry", value=item)
            return cls(item['time'], item['code'], item.get('name'))
        if isinstance(item, (tuple, list)) and len(item) == 2:
            return cls(item[0], item[1])
        raise ParseError("Unrecognized schedule entry", field="entry", value=item)


@dataclass(frozen=True)
class ResolvedWindow:
    """A time spec bound to today: one instant, or a [start, end) range."""
    start: datetime
    end: Optional[datetime] = None

    @property
    def is_range(self) -> bool:
        return self.end is not None


@dataclass
class DispatchReport:
    """What happened during one dispatch tick."""
    ran_handler: bool
    market_open: bool
    handler_error: Optional[ErrorInfo] = None
    handler_name: Optional[str] = None
    suppressed: bool = False
    evaluated_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.handler_error is None


# =============================================================================
# QUOTES
# =============================================================================

@dataclass(frozen=True)
class QuoteSelector:
    """
    Which side of the book matters for an open position.

    A long position is valued (and exited) at the bid, a short at the ask.
    """
    symbol: str
    side: PositionSide

    @property
    def price_field(self) -> str:
        return 'bid_price' if self.side == PositionSide.LONG else 'ask_price'


@dataclass(frozen=True)
class QuotePrice:
    symbol: str
    side: PositionSide
    price: float


# =============================================================================
# GATEWAY RESULTS
# =============================================================================

@dataclass
class BatchOutcome(Generic[T]):
    """One fanned-out unit of work: exactly one per input key."""
    key: str
    success: bool
    value: Optional[T] = None
    error: Optional[ErrorInfo] = None


@dataclass
class BulkOutcome:
    """Result of a single bulk brokerage call."""
    operation: str
    success: bool
    count: int = 0
    error: Optional[ErrorInfo] = None


@dataclass
class BatchSummary:
    """Keys that succeeded vs failed, derived from a list of BatchOutcome."""
    successful: List[str] = field(default_factory=list)
    failing: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failing)

    @property
    def all_succeeded(self) -> bool:
        return not self.failing


@dataclass
class ChunkFailure:
    """A chunk whose request failed; its symbols are absent from the result."""
    symbols: Tuple[str, ...]
    error: ErrorInfo


@dataclass
class ChunkedResult(Generic[T]):
    """Merged per-symbol data from a chunked request plus what went wrong."""
    data: Dict[str, T] = field(default_factory=dict)
    failures: List[ChunkFailure] = field(default_factory=list)
    collisions: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures and not self.collisions

    @property
    def failed_symbols(self) -> List[str]:
        return [s for failure in self.failures for s in failure.symbols]


@dataclass
class Page(Generic[T]):
    """One page from a paged endpoint. next_cursor None/'' means last page."""
    items: List[T]
    next_cursor: Optional[str] = None


@dataclass
class PagedResult(Generic[T]):
    """Items collected for one key, in page order, plus any early stop reason."""
    key: str
    items: List[T] = field(default_factory=list)
    pages: int = 0
    error: Optional[ErrorInfo] = None

    @property
    def complete(self) -> bool:
        return self.error is None


# =============================================================================
# ORDERS & CREDENTIALS
# =============================================================================

@dataclass(frozen=True)
class ReplaceOrderConfig:
    """An existing order id and the alpaca-py ReplaceOrderRequest to apply."""
    order_id: str
    request: Any


@dataclass
class AlpacaCredentials:
    """Brokerage credentials supplied by the caller."""
    api_key_id: str
    secret_key: str
    mode: str = CredentialsMode.CLIENT.value
    paper: bool = True
    verbose: bool = False

    @property
    def is_stream(self) -> bool:
        return self.mode == CredentialsMode.STREAM.value

    def validate(self) -> "AlpacaCredentials":
        """Raise ParseError on a missing key or an unknown mode."""
        if not self.api_key_id:
            raise ParseError("Alpaca API key id is required", field="api_key_id")
        if not self.secret_key:
            raise ParseError("Alpaca secret key is required", field="secret_key")
        valid_modes = [m.value for m in CredentialsMode]
        if self.mode not in valid_modes:
            raise ParseError(
                f"Unknown credentials mode (expected one of {valid_modes})",
                field="mode",
                value=self.mode
            )
        return self

    def __repr__(self) -> str:
        key = f"{self.api_key_id[:4]}..." if self.api_key_id else "None"
        return f"AlpacaCredentials(api_key_id={key}, mode={self.mode}, paper={self.paper})"

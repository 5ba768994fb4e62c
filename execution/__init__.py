"""
Execution Module
================
Schedule evaluation, the per-minute dispatch loop, batch request
primitives, and the Alpaca gateway handed to scheduled handlers.
"""

from execution.scheduler import (
    Handler,
    CallableHandler,
    Scheduler,
    MinuteTicker,
    select_handler,
    parse_time_spec,
    resolve_window,
    window_contains,
)
from execution.dispatch import DispatchLoop, run_once
from execution.batching import (
    fan_out,
    summarize_outcomes,
    chunk_symbols,
    fetch_chunked,
    fetch_paged,
    fetch_paged_many,
)
from execution.alpaca_gateway import AlpacaGateway, bars_to_dataframe, create_gateway

__all__ = [
    # Scheduling
    'Handler',
    'CallableHandler',
    'Scheduler',
    'MinuteTicker',
    'select_handler',
    'parse_time_spec',
    'resolve_window',
    'window_contains',
    # Dispatch
    'DispatchLoop',
    'run_once',
    # Batching
    'fan_out',
    'summarize_outcomes',
    'chunk_symbols',
    'fetch_chunked',
    'fetch_paged',
    'fetch_paged_many',
    # Gateway
    'AlpacaGateway',
    'bars_to_dataframe',
    'create_gateway',
]

"""
Mock implementations for testing without live API calls.

This package provides mock implementations of the Alpaca Trading and
Historical Data clients (with per-method and per-symbol error injection).

Usage:
    from tests.mocks import MockTradingClient, MockDataClient

    client = MockTradingClient(market_open=False)
    client.fail_symbol('TSLA')
"""

from .mock_alpaca import (
    MockTradingClient,
    MockDataClient,
    MockAccount,
    MockPosition,
    MockOrder,
    MockOrderStatus,
    MockQuote,
    AlpacaAPIError,
    RateLimitError,
    SymbolNotFoundError,
    raw_quote,
)

__all__ = [
    'MockTradingClient',
    'MockDataClient',
    'MockAccount',
    'MockPosition',
    'MockOrder',
    'MockOrderStatus',
    'MockQuote',
    'AlpacaAPIError',
    'RateLimitError',
    'SymbolNotFoundError',
    'raw_quote',
]

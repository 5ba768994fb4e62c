"""
Data Module
===========
Real-time trade updates via the Alpaca trading WebSocket.
"""

from data.stream_handler import TradeUpdateStream

__all__ = [
    'TradeUpdateStream',
]

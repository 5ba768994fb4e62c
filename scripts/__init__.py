"""
Scripts Module
==============
Executable scripts for the market strategy runner.

Available scripts:
- run_market_strategy.py: Evaluate a schedule once or every minute
"""

__all__ = []

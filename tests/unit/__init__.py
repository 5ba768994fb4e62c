"""
Unit Tests for the Market Strategy Runner
=========================================

Unit tests are:
- Fast (< 1 second each)
- Isolated (no network: Alpaca clients come from tests/mocks)
- Deterministic (clocks are pinned)

Test Categories:
    - test_clock.py - Time tokens and "today" resolution
    - test_scheduler.py - Time specs, first-match selection, minute ticker
    - test_dispatch.py - One dispatch tick and its report
    - test_batching.py - Fan-out, chunking, pagination
    - test_alpaca_gateway.py - Gateway operations against mock clients
    - test_stream_handler.py - Trade update routing
    - test_errors.py, test_logger.py, test_timeout.py - Ambient helpers

All tests in this directory are automatically marked with @pytest.mark.unit
"""

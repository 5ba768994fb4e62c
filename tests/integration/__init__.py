"""
Integration Tests for the Market Strategy Runner
================================================

Integration tests verify that the scheduler, the dispatch loop and the
gateway work together: a pinned clock selects a handler, the handler
drives the gateway, and the mock Alpaca clients record what was sent.

Running Integration Tests:
    pytest tests/integration/ -m integration

Characteristics:
- Still avoid external APIs (use mocks)

All tests in this directory are automatically marked with @pytest.mark.integration
"""

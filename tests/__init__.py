"""
Market Strategy Test Suite
==========================

Directory Structure:
    tests/
    ├── __init__.py         # This file
    ├── conftest.py         # Shared fixtures
    ├── unit/               # Unit tests (fast, isolated)
    ├── integration/        # Scheduler + dispatch + gateway together
    └── mocks/              # Mock Alpaca clients

Usage:
    # Run all tests
    pytest

    # Run only unit tests
    pytest -m unit

    # Run with coverage
    pytest --cov=execution --cov=utils --cov-report=html
"""

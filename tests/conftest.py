"""
Shared pytest fixtures for the market strategy test suite.

This file is automatically loaded by pytest and provides fixtures
that can be used across all tests.

Fixture Categories:
    - Clock fixtures: clock_at, market_clock
    - Alpaca fixtures: mock_trading_client, mock_data_client, test_credentials, gateway
    - Logging fixtures: tagged_logger, caplog_info

Design Principles:
    - Fixtures are composable (depend on each other cleanly)
    - Named consistently: test_*, sample_*, mock_*
    - No network: every gateway here talks to tests/mocks
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Set test environment before importing config
os.environ["MARKET_STRATEGY_ROOT"] = str(PROJECT_ROOT)

from core.types import AlpacaCredentials
from observability.logger import TaggedLogger, get_logger
from tests.mocks.mock_alpaca import MockDataClient, MockTradingClient
from utils.clock import Clock, TZ_EASTERN

# Friday 2024-06-14, a regular session
TEST_DATE = (2024, 6, 14)


# =============================================================================
# Clock Fixtures
# =============================================================================

def eastern(hour: int, minute: int, second: int = 0, date=TEST_DATE) -> datetime:
    """Aware datetime on the test date in America/New_York."""
    return TZ_EASTERN.localize(datetime(*date, hour, minute, second))


@pytest.fixture
def clock_at():
    """Factory: clock_at(9, 30, 30) -> Clock pinned to that ET instant."""
    def make(hour: int, minute: int, second: int = 0, date=TEST_DATE) -> Clock:
        fixed = eastern(hour, minute, second, date)
        return Clock(now_provider=lambda: fixed)
    return make


@pytest.fixture
def market_clock(clock_at) -> Clock:
    """Clock pinned mid-session (11:00am ET)."""
    return clock_at(11, 0)


# =============================================================================
# Alpaca Mock Fixtures
# =============================================================================

@pytest.fixture
def test_credentials() -> AlpacaCredentials:
    return AlpacaCredentials(api_key_id="test-key", secret_key="test-secret", mode="client", paper=True)


@pytest.fixture
def mock_trading_client() -> MockTradingClient:
    return MockTradingClient(market_open=True)


@pytest.fixture
def mock_data_client() -> MockDataClient:
    return MockDataClient()


@pytest.fixture
def gateway(test_credentials, mock_trading_client, mock_data_client, market_clock, tagged_logger):
    """AlpacaGateway wired to the mock clients and a mid-session clock."""
    from execution.alpaca_gateway import AlpacaGateway
    return AlpacaGateway(
        test_credentials,
        trading_client=mock_trading_client,
        data_client=mock_data_client,
        clock=market_clock,
        logger=tagged_logger,
        max_workers=4,
    )


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def tagged_logger() -> TaggedLogger:
    return TaggedLogger(get_logger("tests"))


@pytest.fixture
def caplog_info(caplog):
    """Capture INFO level logs."""
    caplog.set_level(logging.INFO)
    return caplog


# =============================================================================
# Pytest Hooks
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: Fast, isolated unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take > 5 seconds"
    )
    config.addinivalue_line(
        "markers", "live_api: Tests requiring live API connection"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection - add markers based on location."""
    for item in items:
        # Auto-mark tests in unit/ as unit tests
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        # Auto-mark tests in integration/ as integration tests
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_runtest_setup(item):
    """Called before each test - can skip tests based on markers."""
    # Skip live_api tests unless explicitly requested
    if 'live_api' in [marker.name for marker in item.iter_markers()]:
        if not item.config.getoption("--run-live-api", default=False):
            pytest.skip("Live API tests disabled (use --run-live-api to enable)")


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-live-api",
        action="store_true",
        default=False,
        help="Run tests that require live API connection"
    )


def pytest_report_header(config):
    """Add custom header to test report."""
    return [
        "Market Strategy Test Suite",
        f"Project Root: {PROJECT_ROOT}",
    ]

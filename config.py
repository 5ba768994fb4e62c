"""
Market Strategy Configuration
=============================
THE ONLY PLACE PATHS, LIMITS AND CREDENTIAL SOURCES ARE DEFINED.

Everything here can be overridden from the environment or a .env file
next to this module.
"""

from pathlib import Path
import os

from dotenv import load_dotenv

# Look for .env in the same directory as config.py, then parent directories
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()

from core.types import AlpacaCredentials, CredentialsMode


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# ENVIRONMENT DETECTION
# ============================================================================

# Override for tests and containers
_env_root = os.environ.get("MARKET_STRATEGY_ROOT")

if _env_root:
    DATA_ROOT = Path(_env_root)
else:
    DATA_ROOT = Path(__file__).parent.resolve()

DIRS = {
    "logs": DATA_ROOT / "logs",
}

# ============================================================================
# API CONFIGURATION
# ============================================================================

ALPACA_API_KEY_ID = os.environ.get("ALPACA_API_KEY_ID", "")
ALPACA_SECRET_KEY = os.environ.get("ALPACA_SECRET_KEY", "")
ALPACA_PAPER = _env_flag("ALPACA_PAPER", True)
ALPACA_MODE = os.environ.get("ALPACA_MODE", CredentialsMode.CLIENT.value)

# ============================================================================
# MARKET CALENDAR
# ============================================================================

TRADING_TIMEZONE = "America/New_York"
MARKET_OPEN_TIME = "9:30am"
MARKET_CLOSE_TIME = "4:00pm"

# ============================================================================
# GATEWAY LIMITS
# ============================================================================

# Provider hard limits
MAX_SYMBOLS_PER_BAR_REQUEST = 200
ORDER_LIMIT_MAX = 500
QUOTES_PAGE_LIMIT = 10000

# Free data plans lag the SIP feed
ALPACA_FREE_HISTORICAL_DATA_DELAY_MINS = 15

# A quote cursor that keeps going past this many pages is treated as broken
MAX_QUOTE_PAGES = 1000

# Concurrent sub-requests per gateway call
GATEWAY_MAX_WORKERS = int(os.environ.get("GATEWAY_MAX_WORKERS", "8"))

# ============================================================================
# LOGGING
# ============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | [%(tag)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %Z"
LOG_TAG_WIDTH = 25

# Log rotation
LOG_MAX_BYTES = 10_000_000       # 10 MB
LOG_BACKUP_COUNT = 5

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def generate_alpaca_credentials(mode: str = None, verbose: bool = True, paper: bool = None) -> AlpacaCredentials:
    """
    Build brokerage credentials from the environment.

    Args:
        mode: 'client' or 'stream' (defaults to ALPACA_MODE)
        verbose: Log successful gateway calls at INFO instead of DEBUG
        paper: Paper endpoint override (defaults to ALPACA_PAPER)

    Raises:
        ParseError: If a key is missing or the mode is unknown
    """
    credentials = AlpacaCredentials(
        api_key_id=os.environ.get("ALPACA_API_KEY_ID", ALPACA_API_KEY_ID),
        secret_key=os.environ.get("ALPACA_SECRET_KEY", ALPACA_SECRET_KEY),
        mode=mode or ALPACA_MODE,
        paper=ALPACA_PAPER if paper is None else paper,
        verbose=verbose,
    )
    credentials.validate()
    return credentials


if __name__ == "__main__":
    print("Market Strategy Configuration")
    print("=" * 50)
    print(f"DATA_ROOT: {DATA_ROOT}")
    print()
    print("API Keys:")
    print(f"  ALPACA_API_KEY_ID: {'✓ Set' if ALPACA_API_KEY_ID else '✗ Not set'}")
    print(f"  ALPACA_SECRET_KEY: {'✓ Set' if ALPACA_SECRET_KEY else '✗ Not set'}")
    print(f"  ALPACA_MODE: {ALPACA_MODE} ({'PAPER' if ALPACA_PAPER else 'LIVE'})")
    print()
    print("Gateway:")
    print(f"  max workers: {GATEWAY_MAX_WORKERS}")
    print(f"  symbols per request: {MAX_SYMBOLS_PER_BAR_REQUEST}")
    print(f"  max quote pages: {MAX_QUOTE_PAGES}")

"""
Trading Clock
=============
Single source of "now" for scheduling, bound to the trading timezone.

POLICY: Every instant handed out is timezone-AWARE. Aware datetimes compare
        as absolute instants, so ET/UTC mixes can never be compared wrongly.
        Naive datetimes entering through to_market_time() are read as UTC.

Usage:
    from utils.clock import Clock

    clock = Clock()
    now = clock.now()                          # aware, America/New_York
    open_today = clock.resolve_time_today("9:30am")

    # Tests pin time
    clock = Clock(now_provider=lambda: TZ_EASTERN.localize(datetime(2024, 6, 3, 9, 30, 30)))
"""

import re
from datetime import datetime, time as dtime, timedelta
from typing import Callable, Optional

import pytz

from config import TRADING_TIMEZONE, MARKET_OPEN_TIME, MARKET_CLOSE_TIME
from utils.errors import ParseError

# Timezone constants
TZ_UTC = pytz.UTC
TZ_EASTERN = pytz.timezone(TRADING_TIMEZONE)

# 'h:mma' - 9:30am, 12:05PM, 09:30am
_TIME_TOKEN = re.compile(r'^(0?[1-9]|1[0-2]):([0-5][0-9])([aApP][mM])$')

ONE_MINUTE = timedelta(minutes=1)


def parse_time_token(token: str) -> dtime:
    """
    Parse a 12-hour 'h:mma' token into a time of day.

    Raises:
        ParseError: If the token does not match the grammar
    """
    if not isinstance(token, str):
        raise ParseError("Time token must be a string", field="time", value=token)

    match = _TIME_TOKEN.match(token.strip())
    if not match:
        raise ParseError("Time token must look like 'h:mma' (e.g. 9:30am)", field="time", value=token)

    hour = int(match.group(1)) % 12
    if match.group(3).lower() == 'pm':
        hour += 12
    return dtime(hour, int(match.group(2)))


def to_market_time(ts: datetime, tz=TZ_EASTERN) -> datetime:
    """Convert any datetime to the trading timezone (naive input is read as UTC)."""
    if ts.tzinfo is None:
        ts = TZ_UTC.localize(ts)
    return ts.astimezone(tz)


def floor_minute(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


def is_same_minute(a: datetime, b: datetime) -> bool:
    """True if both instants fall in the same wall-clock minute of the trading zone."""
    return floor_minute(to_market_time(a)) == floor_minute(to_market_time(b))


class Clock:
    """
    Produces the current instant and binds time-of-day tokens to today.

    Args:
        tz: pytz timezone used for "today" (default America/New_York)
        now_provider: Optional zero-arg callable returning the current
            datetime; used by tests and replays
    """

    def __init__(self, tz=TZ_EASTERN, now_provider: Optional[Callable[[], datetime]] = None):
        self.tz = tz
        self._now_provider = now_provider

    def now(self) -> datetime:
        if self._now_provider is not None:
            return to_market_time(self._now_provider(), self.tz)
        return datetime.now(TZ_UTC).astimezone(self.tz)

    def today(self):
        return self.now().date()

    def resolve_time_today(self, token: str, now: Optional[datetime] = None) -> datetime:
        """
        Bind an 'h:mma' token to today's date in the trading timezone.

        Args:
            token: e.g. "9:30am"
            now: Reference instant whose calendar date is used (default now())

        Returns:
            Aware datetime; localize() picks the right DST offset for that date
        """
        time_of_day = parse_time_token(token)
        reference = to_market_time(now, self.tz) if now is not None else self.now()
        return self.tz.localize(datetime.combine(reference.date(), time_of_day))

    def start_of_today(self) -> datetime:
        return self.tz.localize(datetime.combine(self.today(), dtime(0, 0)))

    def market_open_today(self) -> datetime:
        return self.resolve_time_today(MARKET_OPEN_TIME)

    def market_close_today(self) -> datetime:
        return self.resolve_time_today(MARKET_CLOSE_TIME)

    def close_or_now(self) -> datetime:
        """Market close if it has already passed today, otherwise now."""
        now = self.now()
        close = self.resolve_time_today(MARKET_CLOSE_TIME, now)
        return close if close <= now else now

    def format_now(self, fmt: str = '%I:%M %p %Z') -> str:
        return self.now().strftime(fmt)


# Default instance for easy import
DEFAULT_CLOCK = Clock()

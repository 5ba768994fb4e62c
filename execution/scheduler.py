"""
Strategy Scheduler
==================
Decides which configured handler (if any) runs at a given instant.

Schedule entries:
- "9:30am"          single time: fires at any point during that minute
- "9:30am-4:00pm"   range: fires while start <= now < end

Entries are checked in configured order and the FIRST match wins, so when
windows overlap the earlier entry always takes the tick. That ordering is
part of the contract.

Usage:
    scheduler = Scheduler([
        ScheduleEntry("9:30am", open_positions),
        ScheduleEntry("9:31am-3:55pm", rebalance),
        ScheduleEntry("3:55pm", close_everything),
    ])
    handler = scheduler.select()

    ticker = MinuteTicker(lambda: loop.execute(scheduler, gateway))
    ticker.start(blocking=True)
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Protocol, runtime_checkable

import schedule

from core.types import ResolvedWindow, ScheduleEntry
from observability.logger import TaggedLogger, get_tagged_logger
from utils.clock import Clock, ONE_MINUTE, DEFAULT_CLOCK, to_market_time
from utils.errors import ParseError


# =============================================================================
# HANDLERS
# =============================================================================

@runtime_checkable
class Handler(Protocol):
    """Anything with run(gateway). No base class required."""

    def run(self, gateway: Any) -> Any:
        ...


class CallableHandler:
    """Adapts a plain function taking the gateway to the Handler protocol."""

    def __init__(self, func: Callable[[Any], Any], name: Optional[str] = None):
        self.func = func
        self.name = name or getattr(func, '__name__', repr(func))

    def run(self, gateway: Any) -> Any:
        return self.func(gateway)

    def __repr__(self) -> str:
        return f"CallableHandler({self.name})"


def as_handler(obj: Any) -> Handler:
    if isinstance(obj, Handler):
        return obj
    if callable(obj):
        return CallableHandler(obj)
    raise TypeError(f"Handler must have run(gateway) or be callable, got {type(obj).__name__}")


def handler_name(handler: Any) -> str:
    name = getattr(handler, 'name', None)
    if isinstance(name, str):
        return name
    return getattr(handler, '__name__', None) or type(handler).__name__


# =============================================================================
# TIME SPECS
# =============================================================================

def parse_time_spec(time_spec: str) -> List[str]:
    """
    Split a time spec into its 1 or 2 trimmed tokens.

    Raises:
        ParseError: Empty spec, empty token, or more than two tokens
    """
    if not isinstance(time_spec, str) or not time_spec.strip():
        raise ParseError("Empty time spec", field="time", value=time_spec)

    tokens = [t.strip() for t in time_spec.split('-')]
    if len(tokens) > 2 or any(not t for t in tokens):
        raise ParseError("Time spec must be 'h:mma' or 'h:mma-h:mma'", field="time", value=time_spec)
    return tokens


def resolve_window(time_spec: str, clock: Clock = DEFAULT_CLOCK, now: Optional[datetime] = None) -> ResolvedWindow:
    """Bind a time spec to today's date in the trading timezone."""
    instants = [clock.resolve_time_today(t, now) for t in parse_time_spec(time_spec)]
    if len(instants) == 1:
        return ResolvedWindow(start=instants[0])
    return ResolvedWindow(start=instants[0], end=instants[1])


def window_contains(window: ResolvedWindow, now: datetime) -> bool:
    """
    Single instant: same minute, i.e. start <= now < start + 1 min.
    Range: start <= now < end. A range whose end is not after its start
    never matches (no overnight wrap).
    """
    if window.is_range:
        return window.start <= now < window.end
    return window.start <= now < window.start + ONE_MINUTE


def entry_matches(entry: ScheduleEntry, now: datetime, clock: Clock = DEFAULT_CLOCK) -> bool:
    return window_contains(resolve_window(entry.time_spec, clock, now), now)


def select_handler(
    entries: Iterable[ScheduleEntry],
    now: datetime,
    clock: Clock = DEFAULT_CLOCK,
    logger: Optional[TaggedLogger] = None,
) -> Optional[Any]:
    """
    Return the handler of the first entry whose window contains `now`.

    A malformed entry is logged and skipped for this evaluation; it never
    stops later entries from being checked.
    """
    log = logger or get_tagged_logger("scheduler")
    now = to_market_time(now, clock.tz)
    for index, entry in enumerate(entries):
        try:
            matched = entry_matches(entry, now, clock)
        except ParseError as e:
            log.error("SCHEDULER", f"Skipping entry #{index} ({entry.time_spec!r}):", e)
            continue
        if matched:
            return entry.handler
    return None


# =============================================================================
# SCHEDULER
# =============================================================================

class Scheduler:
    """
    Immutable list of schedule entries plus the clock they are read against.

    Entries may be ScheduleEntry objects, {'time': ..., 'code': ...} dicts or
    (time, handler) pairs; handlers may be Handler objects or plain callables
    taking the gateway.
    """

    def __init__(self, entries: Iterable[Any], clock: Optional[Clock] = None,
                 logger: Optional[TaggedLogger] = None):
        self.clock = clock or DEFAULT_CLOCK
        self.log = logger or get_tagged_logger("scheduler")
        self.entries = tuple(self._normalize(ScheduleEntry.from_config(e)) for e in entries)

    @staticmethod
    def _normalize(entry: ScheduleEntry) -> ScheduleEntry:
        handler = as_handler(entry.handler)
        return ScheduleEntry(entry.time_spec, handler, entry.name or handler_name(handler))

    def select(self, now: Optional[datetime] = None) -> Optional[Handler]:
        """Handler to run at `now` (default: the clock's now), or None."""
        return select_handler(self.entries, now or self.clock.now(), self.clock, self.log)

    def validate(self) -> None:
        """
        Parse every entry up front.

        Evaluation tolerates bad entries; callers that want to fail fast at
        load time call this once.

        Raises:
            ParseError: For the first malformed entry
        """
        for index, entry in enumerate(self.entries):
            try:
                resolve_window(entry.time_spec, self.clock)
            except ParseError as e:
                e.details['entry_index'] = index
                raise

    def describe(self) -> List[str]:
        return [f"{entry.time_spec} -> {entry.name}" for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


# =============================================================================
# MINUTE TICKER
# =============================================================================

class MinuteTicker:
    """
    Calls `tick` at the top of every minute using the schedule library.

    One tick = one scheduler evaluation + at most one handler run. A tick
    that raises is logged and the next minute still fires.

    Usage:
        ticker = MinuteTicker(lambda: loop.execute(scheduler, gateway))
        ticker.start()          # background thread
        ...
        ticker.stop()
    """

    def __init__(self, tick: Callable[[], Any], logger: Optional[TaggedLogger] = None,
                 poll_seconds: float = 1.0):
        self.tick = tick
        self.log = logger or get_tagged_logger("scheduler")
        self.poll_seconds = poll_seconds
        self.running = False
        self._thread: Optional[threading.Thread] = None
        self._scheduler = schedule.Scheduler()

    def _safe_tick(self):
        try:
            self.tick()
        except Exception as e:
            self.log.error("MINUTE TICKER", "Tick failed; continuing with next minute:", e, exc_info=True)

    def setup_schedule(self):
        self._scheduler.clear()
        self._scheduler.every().minute.at(":00").do(self._safe_tick)

    def _run_loop(self):
        while self.running:
            self._scheduler.run_pending()
            time.sleep(self.poll_seconds)

    def start(self, blocking: bool = False):
        self.setup_schedule()
        self.running = True
        self.log.info("MINUTE TICKER", "Ticker started")

        if blocking:
            self._run_loop()
        else:
            self._thread = threading.Thread(target=self._run_loop, daemon=True, name="minute-ticker")
            self._thread.start()

    def stop(self):
        self.running = False
        if self._thread:
            self._thread.join(timeout=5)
        self._scheduler.clear()
        self.log.info("MINUTE TICKER", "Ticker stopped")

    @property
    def pending_jobs(self) -> int:
        return len(self._scheduler.jobs)

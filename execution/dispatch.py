"""
Dispatch Loop
=============
One tick: ask the scheduler who runs now, read the market clock through
the gateway, run the handler, report.

Market-open gate:
    By default the handler runs whenever the scheduler finds one and the
    market status is only reported. Pass enforce_market_open=True to skip
    handlers while the market is closed.

A failing handler never escapes execute(): the error is logged and
returned in the DispatchReport, so the next tick always happens.
"""

import time
from datetime import datetime
from typing import Any, Iterable, Optional

from core.types import DispatchReport, ErrorInfo
from execution.scheduler import Scheduler, handler_name
from observability.logger import TaggedLogger, get_tagged_logger
from utils.errors import HandlerError, format_exception_chain

TAG = "MARKET STRATEGY"


class DispatchLoop:
    """
    Wires scheduler output to handler execution.

    Usage:
        loop = DispatchLoop()
        report = loop.execute(scheduler, gateway)
        if report.handler_error:
            ...
    """

    def __init__(self, logger: Optional[TaggedLogger] = None, enforce_market_open: bool = False):
        self.log = logger or get_tagged_logger("dispatch")
        self.enforce_market_open = enforce_market_open

    def _market_open(self, gateway: Any) -> bool:
        # AlpacaGateway already maps failures to False; other gateways may not
        try:
            return bool(gateway.is_market_open_now())
        except Exception as e:
            self.log.error(TAG, "Could not read market clock, treating market as closed:", e)
            return False

    def execute(self, scheduler: Scheduler, gateway: Any, now: Optional[datetime] = None) -> DispatchReport:
        now = now or scheduler.clock.now()
        stamp = now.strftime('%I:%M %p')

        handler = scheduler.select(now)
        market_open = self._market_open(gateway)

        report = DispatchReport(ran_handler=False, market_open=market_open, evaluated_at=now)

        if handler is None:
            self.log.info(
                TAG,
                f"No scheduled strategy at {stamp}",
                f"(market {'open' if market_open else 'closed'}). Exiting gracefully.",
            )
            return report

        report.handler_name = handler_name(handler)

        if self.enforce_market_open and not market_open:
            report.suppressed = True
            self.log.info(TAG, f"The market is closed at {stamp}! Bypassing {report.handler_name}.")
            return report

        if not market_open:
            self.log.warning(TAG, f"Market reported closed at {stamp}; running {report.handler_name} anyway.")

        self.log.info(TAG, f"Scheduled strategy {report.handler_name} found at {stamp}. Running code now.")
        start = time.time()
        try:
            handler.run(gateway)
        except Exception as e:
            error = HandlerError(
                f"{type(e).__name__}: {e}",
                handler=report.handler_name,
                operation="run handler",
                cause=e,
            )
            self.log.error(
                TAG,
                f"Problem executing scheduled handler {report.handler_name}:",
                format_exception_chain(error),
                exc_info=True,
            )
            report.handler_error = ErrorInfo.from_exception(error)
        finally:
            report.ran_handler = True

        elapsed = time.time() - start
        if report.handler_error is None:
            self.log.info(TAG, f"{report.handler_name} completed in {elapsed:.1f}s")
        return report


def run_once(entries: Iterable[Any], gateway: Any, enforce_market_open: bool = False,
             now: Optional[datetime] = None, **scheduler_kwargs) -> DispatchReport:
    """Build a scheduler from raw entries and run a single tick."""
    scheduler = Scheduler(entries, **scheduler_kwargs)
    return DispatchLoop(enforce_market_open=enforce_market_open).execute(scheduler, gateway, now)

#!/usr/bin/env python3
"""
Market Strategy Runner
======================
Evaluates a schedule of handlers against the market clock and runs the
one whose window contains "now".

The schedule is a module attribute holding a list of entries, each either a
ScheduleEntry, a (time, handler) pair, or a {"time": ..., "code": ...} dict.

Usage:
    python scripts/run_market_strategy.py --schedule my_strategies:SCHEDULE             # one tick
    python scripts/run_market_strategy.py --schedule my_strategies:SCHEDULE --loop      # every minute
    python scripts/run_market_strategy.py --schedule my_strategies:SCHEDULE --validate  # parse and exit
"""

import argparse
import importlib
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import CredentialsMode
from execution.alpaca_gateway import create_gateway
from execution.dispatch import DispatchLoop
from execution.scheduler import MinuteTicker, Scheduler
from observability.logger import get_tagged_logger, setup_logging
from utils.errors import ConfigurationError, ParseError, TradingSystemError

EXIT_OK = 0
EXIT_HANDLER_FAILED = 1
EXIT_CONFIG_ERROR = 2


def load_schedule(target: str):
    """
    Resolve 'package.module:ATTR' to the schedule list it names.

    Raises:
        ConfigurationError: Bad target, missing module or attribute
    """
    module_name, sep, attr = target.partition(':')
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Schedule must look like 'module:ATTR', got {target!r}", config_key="schedule")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import schedule module {module_name!r}", config_key="schedule", cause=e)

    try:
        entries = getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationError(f"{module_name} has no attribute {attr!r}", config_key="schedule", cause=e)

    if callable(entries):
        entries = entries()
    if not isinstance(entries, (list, tuple)):
        raise ConfigurationError(f"{target} must be a list of schedule entries", config_key="schedule")
    return entries


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scheduled market strategy runner")
    parser.add_argument('--schedule', required=True, help="Schedule to run, as 'module:ATTR'")
    run_mode = parser.add_mutually_exclusive_group()
    run_mode.add_argument('--once', action='store_true', help='Run a single tick (default)')
    run_mode.add_argument('--loop', action='store_true', help='Tick at the top of every minute')
    run_mode.add_argument('--validate', action='store_true', help='Parse every entry and exit')
    parser.add_argument('--enforce-market-open', action='store_true',
                        help='Skip handlers while the market is closed')
    parser.add_argument('--mode', choices=[m.value for m in CredentialsMode], default=None,
                        help='Credential mode (stream enables trade updates)')
    parser.add_argument('--live', action='store_true', help='Use the live trading endpoint')
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL')
    parser.add_argument('--no-log-file', action='store_true', help='Console logging only')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_to_file=not args.no_log_file)
    log = get_tagged_logger("runner")

    try:
        scheduler = Scheduler(load_schedule(args.schedule))
        scheduler.validate()
    except (ConfigurationError, ParseError, TypeError) as e:
        log.error("MARKET STRATEGY", "Invalid schedule:", e)
        return EXIT_CONFIG_ERROR

    for line in scheduler.describe():
        log.info("MARKET STRATEGY", "Scheduled:", line)

    if args.validate:
        log.info("MARKET STRATEGY", f"{len(scheduler)} schedule entries OK")
        return EXIT_OK

    try:
        gateway = create_gateway(mode=args.mode, paper=False if args.live else None)
    except TradingSystemError as e:
        log.error("MARKET STRATEGY", "Invalid Alpaca credentials:", e)
        return EXIT_CONFIG_ERROR

    loop = DispatchLoop(enforce_market_open=args.enforce_market_open)

    if args.loop:
        ticker = MinuteTicker(lambda: loop.execute(scheduler, gateway))
        try:
            ticker.start(blocking=True)
        except KeyboardInterrupt:
            log.info("MARKET STRATEGY", "Interrupted by user")
        finally:
            ticker.stop()
        return EXIT_OK

    report = loop.execute(scheduler, gateway)
    return EXIT_HANDLER_FAILED if report.handler_error else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

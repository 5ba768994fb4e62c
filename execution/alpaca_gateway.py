"""
Alpaca Gateway
==============
The only path from handler code to the brokerage.

Features:
- Account, positions, market clock, assets, orders placed today
- Chunked snapshot and bar requests (provider limit per request)
- Paged quote history per symbol, fanned out across symbols
- Concurrent order placement / replacement / position closing with a
  per-item success/failure report
- Trade-update streaming when credentials ask for 'stream' mode

Failure policy:
- Whole-operation calls (account, clock, positions, ...) log and return a
  safe default (None, [], False)
- Multi-item calls never raise for a failing item; each item gets its own
  BatchOutcome
- Bulk calls (close all positions, cancel all orders) return a BulkOutcome

Usage:
    gateway = create_gateway()
    if gateway.is_market_open_now():
        outcomes = gateway.place_multiple_orders([
            MarketOrderRequest(symbol="AAPL", qty=1, side=OrderSide.BUY, time_in_force=TimeInForce.DAY),
        ])
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.models import Quote
from alpaca.data.requests import StockBarsRequest, StockLatestQuoteRequest, StockSnapshotRequest
from alpaca.data.timeframe import TimeFrame
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import QueryOrderStatus
from alpaca.trading.requests import GetOrdersRequest

from config import (
    ALPACA_FREE_HISTORICAL_DATA_DELAY_MINS, MAX_QUOTE_PAGES, MAX_SYMBOLS_PER_BAR_REQUEST,
    ORDER_LIMIT_MAX, QUOTES_PAGE_LIMIT, generate_alpaca_credentials,
)
from core.types import (
    AlpacaCredentials, BatchOutcome, BulkOutcome, ChunkedResult, ErrorInfo, Page,
    PagedResult, PageMode, QuotePrice, QuoteSelector, ReplaceOrderConfig,
)
from data.stream_handler import TradeUpdateStream
from execution.batching import fan_out, fetch_chunked, fetch_paged_many, summarize_outcomes
from observability.logger import TaggedLogger, get_tagged_logger
from utils.clock import Clock, DEFAULT_CLOCK
from utils.errors import ProtocolError, as_remote_error, error_context
from utils.timeout import TIMEOUTS, timeout_wrapper

BAR_COLUMNS = ['open', 'high', 'low', 'close', 'volume', 'trade_count', 'vwap']


def _enum_value(value: Any) -> Any:
    return getattr(value, 'value', value)


def bars_to_dataframe(bars: Dict[str, Sequence[Any]]) -> pd.DataFrame:
    """
    Flatten {symbol: [Bar, ...]} into one DataFrame indexed by (symbol, timestamp).
    """
    rows = []
    for symbol, series in bars.items():
        for bar in series or []:
            row = {'symbol': symbol, 'timestamp': bar.timestamp}
            for column in BAR_COLUMNS:
                row[column] = getattr(bar, column, None)
            rows.append(row)

    if not rows:
        return pd.DataFrame(columns=BAR_COLUMNS, index=pd.MultiIndex.from_tuples([], names=['symbol', 'timestamp']))

    df = pd.DataFrame(rows)
    df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
    return df.set_index(['symbol', 'timestamp']).sort_index()


class AlpacaGateway:
    """
    Mediates every market-data and order call made by scheduled handlers.

    Args:
        credentials: AlpacaCredentials (validated on construction)
        trading_client: alpaca-py TradingClient (built from credentials if None)
        data_client: alpaca-py StockHistoricalDataClient (built if None)
        stream: TradeUpdateStream (built only in 'stream' mode if None)
        clock: Trading clock for "today" windows
        logger: Diagnostic sink
        max_workers: Concurrency ceiling for fanned-out requests
    """

    def __init__(
        self,
        credentials: AlpacaCredentials,
        trading_client: Optional[TradingClient] = None,
        data_client: Optional[StockHistoricalDataClient] = None,
        stream: Optional[TradeUpdateStream] = None,
        clock: Optional[Clock] = None,
        logger: Optional[TaggedLogger] = None,
        max_workers: Optional[int] = None,
    ):
        credentials.validate()
        self.credentials = credentials
        self.verbose = credentials.verbose
        self.clock = clock or DEFAULT_CLOCK
        self.log = logger or get_tagged_logger("gateway")
        self.max_workers = max_workers

        self.trading_client = trading_client or TradingClient(
            credentials.api_key_id, credentials.secret_key, paper=credentials.paper
        )
        self.data_client = data_client or StockHistoricalDataClient(
            credentials.api_key_id, credentials.secret_key
        )

        self.stream = stream
        if self.stream is None and credentials.is_stream:
            self.stream = TradeUpdateStream(
                credentials.api_key_id, credentials.secret_key, paper=credentials.paper, logger=self.log
            )

        self.log.debug(
            "GATEWAY",
            f"Alpaca gateway initialized ({'PAPER' if credentials.paper else 'LIVE'},",
            f"mode={credentials.mode})",
        )

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _call(self, func: Callable[[], Any], timeout: float, operation: str, symbol: Optional[str] = None) -> Any:
        """Run one brokerage call under a timeout; anything it raises surfaces as a TradingSystemError."""
        # Callers log the failure with their own tag
        with error_context(operation, symbol=symbol, log_level=logging.DEBUG):
            return timeout_wrapper(func, timeout, operation)

    def _fan_out(self, items: Iterable[Any], op: Callable[[Any], Any], key: Callable[[Any], str],
                 operation: str) -> List[BatchOutcome]:
        return fan_out(items, op, key=key, max_workers=self.max_workers, logger=self.log, operation=operation)

    def _recap(self, tag: str, verb: str, outcomes: List[BatchOutcome]):
        summary = summarize_outcomes(outcomes)
        if summary.failing:
            self.log.warning(
                tag,
                f"Finished {verb} {summary.total} items. Successful: {summary.successful}",
                f"and failing: {summary.failing}",
            )
        else:
            self.log.success(self.verbose, tag, f"Finished {verb} {summary.total} items, all successful.")

    # -------------------------------------------------------------------------
    # Account, clock, assets
    # -------------------------------------------------------------------------

    def get_account(self) -> Optional[Any]:
        """The account tied to the API key, or None on failure."""
        try:
            account = self._call(self.trading_client.get_account, TIMEOUTS.API_CALL, "get_account")
        except Exception as e:
            self.log.error("GET ACCOUNT", "Problem retrieving account with provided credentials:",
                           as_remote_error(e, "get_account"))
            return None

        self.log.success(self.verbose, "GET ACCOUNT", "Successfully retrieved account information for this user.")
        return account

    def get_positions(self) -> List[Any]:
        """All open positions, or [] on failure."""
        try:
            positions = self._call(self.trading_client.get_all_positions, TIMEOUTS.API_CALL, "get_positions")
        except Exception as e:
            self.log.error("GET POSITIONS", "Error retrieving open positions:", as_remote_error(e, "get_positions"))
            return []

        self.log.success(self.verbose, "GET POSITIONS", f"Successfully retrieved {len(positions)} open positions")
        return list(positions)

    def is_market_open_now(self) -> bool:
        """Market clock status; False whenever the clock cannot be read."""
        try:
            clock = self._call(self.trading_client.get_clock, TIMEOUTS.API_CALL, "get_clock")
        except Exception as e:
            self.log.error("IS MARKET OPEN", "Error retrieving market clock:", as_remote_error(e, "get_clock"))
            return False

        self.log.success(self.verbose, "IS MARKET OPEN", "Successfully retrieved market clock")
        return bool(getattr(clock, 'is_open', False))

    def get_some_assets(self, symbols: Iterable[str]) -> List[Any]:
        """Assets for the given symbols; untracked symbols are logged."""
        symbols = list(symbols)
        try:
            assets = self._call(self.trading_client.get_all_assets, TIMEOUTS.DATA_FETCH, "get_all_assets")
        except Exception as e:
            self.log.error("GET SOME ASSETS", f"Error getting assets {symbols}:", as_remote_error(e, "get_all_assets"))
            return []

        wanted = set(symbols)
        found = [a for a in assets if a.symbol in wanted]
        self.log.success(self.verbose, "GET SOME ASSETS", "Successfully retrieved information regarding all assets.")

        missing = sorted(wanted - {a.symbol for a in found})
        if missing:
            self.log.warning("GET SOME ASSETS", "However, some assets specified are not tracked by Alpaca:", missing)
        return found

    # -------------------------------------------------------------------------
    # Chunked market data
    # -------------------------------------------------------------------------

    def get_snapshots(self, symbols: Iterable[str]) -> ChunkedResult:
        """Snapshots keyed by symbol, one request per provider-sized chunk."""
        def fetch_one(chunk: List[str]) -> Dict[str, Any]:
            request = StockSnapshotRequest(symbol_or_symbols=chunk)
            return self._call(lambda: self.data_client.get_stock_snapshot(request),
                              TIMEOUTS.DATA_FETCH, "get_stock_snapshot")

        result = fetch_chunked(symbols, MAX_SYMBOLS_PER_BAR_REQUEST, fetch_one,
                               max_workers=self.max_workers, logger=self.log, operation="GET SNAPSHOTS")

        unrecognized = sorted(s for s, snap in result.data.items() if snap is None)
        for symbol in unrecognized:
            del result.data[symbol]
        if unrecognized:
            self.log.warning("GET SNAPSHOTS", "Alpaca could not return snapshots for unrecognized symbols:",
                             unrecognized)

        self.log.success(self.verbose, "GET SNAPSHOTS", f"Retrieved snapshots for {len(result.data)} symbols")
        return result

    def get_bars(self, symbols: Iterable[str], start: datetime, end: Optional[datetime] = None,
                 timeframe: TimeFrame = TimeFrame.Minute) -> ChunkedResult:
        """Bars keyed by symbol ({symbol: [Bar, ...]}), chunked per request limit."""
        def fetch_one(chunk: List[str]) -> Dict[str, Any]:
            request = StockBarsRequest(symbol_or_symbols=chunk, timeframe=timeframe, start=start, end=end)
            bar_set = self._call(lambda: self.data_client.get_stock_bars(request),
                                 TIMEOUTS.DATA_FETCH, "get_stock_bars")
            data = getattr(bar_set, 'data', bar_set)
            if not isinstance(data, dict):
                raise ProtocolError(f"Unexpected bars payload {type(data).__name__}", operation="get_stock_bars")
            return data

        result = fetch_chunked(symbols, MAX_SYMBOLS_PER_BAR_REQUEST, fetch_one,
                               max_workers=self.max_workers, logger=self.log, operation="GET BARS")
        self.log.success(self.verbose, "GET BARS", f"Retrieved bars for {len(result.data)} symbols")
        return result

    def get_bars_today(self, symbols: Iterable[str], timeframe: TimeFrame = TimeFrame.Minute,
                       free_data_delay: bool = True) -> ChunkedResult:
        """
        Bars from today's open up to the close (or now, if the session is live).

        Free data plans cannot query the most recent minutes, so by default
        the window ends ALPACA_FREE_HISTORICAL_DATA_DELAY_MINS before now.
        """
        start = self.clock.market_open_today()
        end = self.clock.close_or_now()
        if free_data_delay:
            end = min(end, self.clock.now() - timedelta(minutes=ALPACA_FREE_HISTORICAL_DATA_DELAY_MINS))

        if end <= start:
            self.log.info("GET BARS TODAY", "Session has no queryable bars yet.")
            return ChunkedResult()
        return self.get_bars(symbols, start, end, timeframe)

    # -------------------------------------------------------------------------
    # Paged quotes
    # -------------------------------------------------------------------------

    def _quote_page_fetcher(self, symbol: str, mode: PageMode) -> Callable[[Optional[str]], Page]:
        params = {
            'start': self.clock.market_open_today().isoformat(),
            'end': self.clock.market_close_today().isoformat(),
            'limit': 1 if mode == PageMode.FIRST else QUOTES_PAGE_LIMIT,
        }

        def fetch_page(cursor: Optional[str]) -> Page:
            query = dict(params)
            if cursor:
                query['page_token'] = cursor
            response = self._call(lambda: self.data_client.get(f"/stocks/{symbol}/quotes", query),
                                  TIMEOUTS.DATA_FETCH, "get_quotes", symbol)
            if not isinstance(response, dict):
                raise ProtocolError(f"Unexpected quotes payload {type(response).__name__}", symbol=symbol)
            raw_quotes = response.get('quotes') or []
            return Page(items=[Quote(symbol, raw) for raw in raw_quotes],
                        next_cursor=response.get('next_page_token'))

        return fetch_page

    def get_quotes_today(self, symbols: Iterable[str], mode: PageMode = PageMode.ALL,
                         max_pages: int = MAX_QUOTE_PAGES) -> Dict[str, PagedResult]:
        """
        Today's quotes per symbol.

        FIRST: the session's first quote only (one request per symbol).
        ALL: every quote, in time order. LAST: the final page only.
        Symbols are fetched concurrently; pages of one symbol in order.
        """
        mode = PageMode(mode)
        tag = f"GET QUOTES TODAY ({mode.value.upper()})"
        results = fetch_paged_many(
            symbols, mode, lambda symbol: self._quote_page_fetcher(symbol, mode),
            max_pages=max_pages, max_workers=self.max_workers, logger=self.log, operation=tag,
        )

        incomplete = sorted(s for s, r in results.items() if not r.complete)
        if incomplete:
            self.log.warning(tag, "Quote history incomplete for:", incomplete)
        self.log.success(self.verbose, tag, f"Retrieved {mode.value} quotes for {len(results) - len(incomplete)} symbols")
        return results

    def get_quote_prices(self, selectors: Iterable[QuoteSelector]) -> List[BatchOutcome]:
        """Latest relevant price per position: bid for longs, ask for shorts."""
        def price_for(selector: QuoteSelector) -> QuotePrice:
            request = StockLatestQuoteRequest(symbol_or_symbols=selector.symbol)
            quotes = self._call(lambda: self.data_client.get_stock_latest_quote(request),
                                TIMEOUTS.API_CALL, "get_latest_quote", selector.symbol)
            quote = quotes.get(selector.symbol) if isinstance(quotes, dict) else None
            if quote is None:
                raise ProtocolError("No quote returned", symbol=selector.symbol)

            price = getattr(quote, selector.price_field, None)
            if price is None or float(price) <= 0:
                raise ProtocolError(f"Quote has no usable {selector.price_field}", symbol=selector.symbol)
            return QuotePrice(symbol=selector.symbol, side=selector.side, price=float(price))

        outcomes = self._fan_out(selectors, price_for, key=lambda s: s.symbol, operation="GET QUOTE PRICES")
        self._recap("GET QUOTE PRICES", "pricing", outcomes)
        return outcomes

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def _submit(self, order_request: Any) -> Any:
        order = self._call(lambda: self.trading_client.submit_order(order_request),
                           TIMEOUTS.ORDER_SUBMIT, "submit_order", order_request.symbol)
        self.log.success(self.verbose, "PLACE ORDER", "Successfully placed order with config:", order_request)
        return order

    def place_order(self, order_request: Any) -> BatchOutcome:
        """Submit one order. The outcome is keyed by the request's symbol."""
        return self.place_multiple_orders([order_request])[0]

    def place_multiple_orders(self, order_requests: Iterable[Any]) -> List[BatchOutcome]:
        """Submit orders concurrently; a failing order never blocks the others."""
        outcomes = self._fan_out(order_requests, self._submit, key=lambda r: r.symbol, operation="PLACE ORDER")
        self._recap("PLACE MULTIPLE ORDERS", "placing", outcomes)
        return outcomes

    def _replace(self, config: ReplaceOrderConfig) -> Any:
        order = self._call(lambda: self.trading_client.replace_order_by_id(config.order_id, config.request),
                           TIMEOUTS.ORDER_SUBMIT, f"replace_order({config.order_id})")
        self.log.success(
            self.verbose, "REPLACE ORDER",
            f"Successfully replaced order {config.order_id} ({getattr(order, 'symbol', '?')}) with config:",
            config.request,
        )
        return order

    def replace_order(self, config: ReplaceOrderConfig) -> BatchOutcome:
        """Replace one order. The outcome is keyed by order id."""
        return self.replace_multiple_orders([config])[0]

    def replace_multiple_orders(self, configs: Iterable[ReplaceOrderConfig]) -> List[BatchOutcome]:
        outcomes = self._fan_out(configs, self._replace, key=lambda c: c.order_id, operation="REPLACE ORDER")
        self._recap("REPLACE MULTIPLE ORDERS", "replacing", outcomes)
        return outcomes

    def get_orders_placed_today(self, include_all_orders: bool = False) -> List[Any]:
        """
        Orders submitted since the start of today (trading timezone).

        Args:
            include_all_orders: Include closed orders as well as open ones
        """
        request = GetOrdersRequest(
            status=QueryOrderStatus.ALL if include_all_orders else QueryOrderStatus.OPEN,
            limit=ORDER_LIMIT_MAX,
            after=self.clock.start_of_today(),
        )
        try:
            orders = self._call(lambda: self.trading_client.get_orders(request),
                                TIMEOUTS.API_CALL, "get_orders")
        except Exception as e:
            self.log.error("GET ORDERS PLACED TODAY", "Problem retrieving orders placed today:",
                           as_remote_error(e, "get_orders"))
            return []

        self.log.success(self.verbose, "GET ORDERS PLACED TODAY", f"Successfully retrieved {len(orders)} orders.")
        return list(orders)

    def get_orders_placed_today_of_type(self, order_type: Any, include_all_orders: bool = True) -> List[Any]:
        wanted = _enum_value(order_type)
        orders = [o for o in self.get_orders_placed_today(include_all_orders)
                  if _enum_value(getattr(o, 'order_type', None)) == wanted]
        self.log.success(self.verbose, "GET ORDERS TODAY OF TYPE", f"Further filtering orders down to {len(orders)}")
        return orders

    def cancel_all_orders(self) -> BulkOutcome:
        """Cancel every open order in one call."""
        try:
            cancellations = self._call(self.trading_client.cancel_orders, TIMEOUTS.ORDER_SUBMIT, "cancel_orders")
        except Exception as e:
            error = as_remote_error(e, "cancel_orders")
            self.log.error("CANCEL ALL ORDERS", "Error cancelling all orders:", error)
            return BulkOutcome("cancel_all_orders", success=False, error=ErrorInfo.from_exception(error))

        count = len(cancellations or [])
        self.log.success(self.verbose, "CANCEL ALL ORDERS", f"Successfully cancelled {count} open orders.")
        return BulkOutcome("cancel_all_orders", success=True, count=count)

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    def _close(self, symbol: str) -> Any:
        order = self._call(lambda: self.trading_client.close_position(symbol),
                           TIMEOUTS.ORDER_SUBMIT, "close_position", symbol)
        self.log.success(self.verbose, "CLOSE POSITION", f"Position in {symbol} successfully closed.")
        return order

    def close_position(self, symbol: str) -> BatchOutcome:
        return self.close_positions([symbol])[0]

    def close_positions(self, symbols: Iterable[str]) -> List[BatchOutcome]:
        """Close each position concurrently, one outcome per symbol."""
        outcomes = self._fan_out(symbols, self._close, key=str, operation="CLOSE POSITION")
        self._recap("CLOSE POSITIONS", "closing", outcomes)
        return outcomes

    def close_all_positions(self, cancel_orders: bool = False) -> BulkOutcome:
        """Liquidate everything in one call (optionally cancelling open orders first)."""
        try:
            responses = self._call(lambda: self.trading_client.close_all_positions(cancel_orders=cancel_orders),
                                   TIMEOUTS.ORDER_SUBMIT, "close_all_positions")
        except Exception as e:
            error = as_remote_error(e, "close_all_positions")
            self.log.warning("CLOSE ALL POSITIONS", "Problem closing out all positions:", error)
            return BulkOutcome("close_all_positions", success=False, error=ErrorInfo.from_exception(error))

        count = len(responses or [])
        self.log.success(self.verbose, "CLOSE ALL POSITIONS", f"{count} previously open positions now closed.")
        return BulkOutcome("close_all_positions", success=True, count=count)

    # -------------------------------------------------------------------------
    # Trade updates (stream mode)
    # -------------------------------------------------------------------------

    def _require_stream(self, tag: str) -> bool:
        if self.stream is None:
            self.log.error(tag, "Problem with trade updates: the gateway needs credentials in 'stream' mode")
            return False
        return True

    def listen_for_trade_updates(self, callback: Callable[[Any], Any]) -> bool:
        """Route every trade update to callback. Returns False outside stream mode."""
        if not self._require_stream("LISTEN (TRADE UPDATES)"):
            return False
        self.stream.subscribe(callback)
        self.stream.start()
        return True

    def wait_for_stream(self, timeout: float = TIMEOUTS.STREAM_CONNECT) -> bool:
        """Block until the trade-update stream is running (or timeout)."""
        if not self._require_stream("LISTEN (AUTHENTICATION)"):
            return False
        running = self.stream.wait_until_running(timeout)
        if running:
            self.log.info("LISTEN (AUTHENTICATION)", "Trade update stream is running.")
        else:
            self.log.warning("LISTEN (AUTHENTICATION)", f"Stream not running after {timeout}s")
        return running

    def stop_listening_for_trade_updates(self) -> None:
        if not self._require_stream("LISTEN (TRADE UPDATES)"):
            return
        self.stream.unsubscribe()
        self.stream.stop()


def create_gateway(mode: Optional[str] = None, verbose: bool = True, paper: Optional[bool] = None,
                   **kwargs) -> AlpacaGateway:
    """Create a gateway from environment credentials (paper defaults to ALPACA_PAPER)."""
    credentials = generate_alpaca_credentials(mode=mode, verbose=verbose, paper=paper)
    return AlpacaGateway(credentials, **kwargs)

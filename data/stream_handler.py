"""
Trade Update Stream Handler
===========================
Streams order/fill updates from Alpaca's trading websocket.

Features:
- One callback (async or sync) receives every trade update
- Runs the websocket on a background daemon thread
- Graceful start/stop with reconnection on errors
- wait_until_running() for callers that need the connection up first

Usage:
    from data.stream_handler import TradeUpdateStream

    stream = TradeUpdateStream(api_key, secret_key, paper=True)

    async def on_update(update):
        print(update.event, update.order.symbol)

    stream.subscribe(on_update)
    stream.start()
    stream.wait_until_running(timeout=30)
"""

import asyncio
import threading
import time
from typing import Any, Callable, Optional

from alpaca.trading.stream import TradingStream

from observability.logger import TaggedLogger, get_tagged_logger

TAG = "LISTEN (TRADE UPDATES)"


class TradeUpdateStream:
    """
    Wrapper around alpaca-py's TradingStream.

    Attributes:
        api_key: Alpaca API key
        secret_key: Alpaca secret key
        paper: Whether to use the paper trading endpoint (default True)
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        paper: bool = True,
        logger: Optional[TaggedLogger] = None,
        stream_factory: Optional[Callable[[], Any]] = None,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 5.0,
    ) -> None:
        self._api_key = api_key
        self._secret_key = secret_key
        self._paper = paper
        self.log = logger or get_tagged_logger("stream")

        self._stream_factory = stream_factory or self._create_stream
        self._stream: Optional[Any] = None
        self._callback: Optional[Callable[[Any], Any]] = None
        self._lock = threading.Lock()

        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay

        self.log.debug(TAG, f"TradeUpdateStream initialized (paper={paper})")

    def _create_stream(self) -> TradingStream:
        return TradingStream(self._api_key, self._secret_key, paper=self._paper)

    async def _handle_update(self, update: Any) -> None:
        """Route one update to the subscriber; subscriber errors are logged, never raised."""
        with self._lock:
            callback = self._callback

        if callback is None:
            self.log.warning(TAG, "Received trade update with no subscriber")
            return

        try:
            if asyncio.iscoroutinefunction(callback):
                await callback(update)
            else:
                callback(update)
        except Exception as e:
            self.log.error(TAG, "Error in trade update callback:", e, exc_info=True)

    def subscribe(self, callback: Callable[[Any], Any]) -> None:
        """Set the callback for trade updates (replaces any previous one)."""
        with self._lock:
            if self._callback is not None:
                self.log.warning(TAG, "Replacing existing trade update subscriber")
            self._callback = callback
        self.log.info(TAG, "Subscribed to trade updates")

    def unsubscribe(self) -> None:
        with self._lock:
            self._callback = None

        stream = self._stream
        if stream is not None and self.is_running:
            try:
                stream.unsubscribe_trade_updates()
            except Exception as e:
                self.log.error(TAG, "Failed to remove live trade update subscription:", e)
        self.log.info(TAG, "Unsubscribed from trade updates")

    def _run(self, stop_event: threading.Event) -> None:
        """Connect loop for one run. Only `stop_event` ends it, so a stale run never revives."""
        attempts = 0
        while not stop_event.is_set() and attempts < self._max_reconnect_attempts:
            try:
                stream = self._stream_factory()
                stream.subscribe_trade_updates(self._handle_update)
                with self._lock:
                    if stop_event.is_set():
                        break
                    self._stream = stream
                self.log.info(TAG, "Connecting to Alpaca trading stream...")

                # Blocks until the stream is stopped or the connection drops
                stream.run()
                if stop_event.is_set():
                    break
                attempts += 1
                self.log.warning(TAG, f"Stream ended unexpectedly (attempt {attempts}/{self._max_reconnect_attempts})")
            except Exception as e:
                attempts += 1
                self.log.error(
                    TAG,
                    f"Stream error (attempt {attempts}/{self._max_reconnect_attempts}):",
                    e,
                    exc_info=True,
                )

            if attempts < self._max_reconnect_attempts:
                delay = self._reconnect_delay * attempts
                self.log.info(TAG, f"Reconnecting in {delay:.0f} seconds...")
                if stop_event.wait(delay):
                    break

        if not stop_event.is_set():
            self.log.error(TAG, f"Giving up after {self._max_reconnect_attempts} attempts")
        stop_event.set()
        self.log.info(TAG, "Stream stopped")

    def start(self) -> None:
        """Start streaming on a background daemon thread."""
        if self.is_running:
            self.log.warning(TAG, "Stream is already running")
            return

        with self._lock:
            if self._callback is None:
                self.log.warning(TAG, "No subscriber - nothing to stream")
                return
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._stream = None

        self._thread = threading.Thread(target=self._run, args=(stop_event,), daemon=True, name="trade-updates")
        self._thread.start()

    def stop(self, join_timeout: float = 5.0) -> None:
        """Stop the stream. Safe to call even if it is not running."""
        with self._lock:
            stop_event = self._stop_event
            if stop_event is None or stop_event.is_set():
                self.log.debug(TAG, "Stream is not running")
                return
            stop_event.set()
            stream, self._stream = self._stream, None

        self.log.info(TAG, "Stopping stream...")
        if stream is not None:
            try:
                stream.stop()
            except Exception as e:
                self.log.error(TAG, "Error during stream shutdown:", e)

        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=join_timeout)
        self._thread = None

    @property
    def is_running(self) -> bool:
        stop_event = self._stop_event
        return stop_event is not None and not stop_event.is_set()

    @property
    def is_connected(self) -> bool:
        """True once the underlying websocket reports itself running."""
        stream = self._stream
        # alpaca-py (0.20 through 0.x) exposes no public readiness flag;
        # TradingStream._running flips to True after the auth handshake.
        return bool(self.is_running and stream is not None and getattr(stream, '_running', False))

    def wait_until_running(self, timeout: float = 30.0, poll_seconds: float = 0.1) -> bool:
        """Block until is_connected or timeout. Returns the final state."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.is_connected:
                return True
            if not self.is_running:
                return False
            time.sleep(poll_seconds)
        return self.is_connected

"""
Unit Tests: Alpaca Gateway
==========================

Tests for the gateway against the mock Alpaca clients:
- Whole-operation calls and their safe defaults
- Chunked snapshots and bars
- Paged quote history (FIRST / ALL / LAST)
- Fanned-out orders, replacements, position closes, quote prices
- Bulk calls and their distinct result shape
- Stream-mode requirements

Uses fixtures from conftest.py: gateway, mock_trading_client, mock_data_client
"""

from datetime import datetime

import pytest
import pytz
from alpaca.data.timeframe import TimeFrame
from alpaca.trading.enums import OrderSide, TimeInForce
from alpaca.trading.requests import LimitOrderRequest, MarketOrderRequest, ReplaceOrderRequest

from core.types import (
    AlpacaCredentials, BatchOutcome, BulkOutcome, PageMode, PositionSide, QuoteSelector,
    ReplaceOrderConfig,
)
from execution.alpaca_gateway import AlpacaGateway, bars_to_dataframe
from tests.conftest import eastern
from tests.mocks.mock_alpaca import MockOrder, MockOrderStatus, RateLimitError, raw_quote
from utils.errors import ParseError


def market_order(symbol, qty=1):
    return MarketOrderRequest(symbol=symbol, qty=qty, side=OrderSide.BUY, time_in_force=TimeInForce.DAY)


def as_utc(ts):
    return pytz.UTC.localize(ts) if ts.tzinfo is None else ts


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:

    def test_rejects_missing_keys(self, mock_trading_client, mock_data_client):
        with pytest.raises(ParseError):
            AlpacaGateway(AlpacaCredentials("", "secret"), trading_client=mock_trading_client,
                          data_client=mock_data_client)

    def test_rejects_unknown_mode(self, mock_trading_client, mock_data_client):
        with pytest.raises(ParseError):
            AlpacaGateway(AlpacaCredentials("key", "secret", mode="socket"),
                          trading_client=mock_trading_client, data_client=mock_data_client)

    def test_client_mode_has_no_stream(self, gateway):
        assert gateway.stream is None

    def test_stream_mode_builds_stream(self, mock_trading_client, mock_data_client, tagged_logger):
        gateway = AlpacaGateway(
            AlpacaCredentials("key", "secret", mode="stream"),
            trading_client=mock_trading_client, data_client=mock_data_client, logger=tagged_logger,
        )
        assert gateway.stream is not None
        assert not gateway.stream.is_running

    def test_credentials_repr_masks_secret(self):
        text = repr(AlpacaCredentials("ABCDEFGH", "super-secret"))
        assert "super-secret" not in text
        assert "EFGH" not in text


# =============================================================================
# Whole-operation calls
# =============================================================================

class TestWholeOperations:

    def test_get_account(self, gateway):
        assert gateway.get_account().equity == 100000.0

    def test_get_account_failure_returns_none(self, gateway, mock_trading_client):
        mock_trading_client.set_next_error('get_account', RateLimitError())
        assert gateway.get_account() is None

    def test_get_positions(self, gateway, mock_trading_client):
        mock_trading_client.add_position("AAPL", 10)
        assert [p.symbol for p in gateway.get_positions()] == ["AAPL"]

    def test_get_positions_failure_returns_empty(self, gateway, mock_trading_client):
        mock_trading_client.set_next_error('get_all_positions', ConnectionError("down"))
        assert gateway.get_positions() == []

    @pytest.mark.parametrize("is_open", [True, False])
    def test_is_market_open_now(self, gateway, mock_trading_client, is_open):
        mock_trading_client.set_market_open(is_open)
        assert gateway.is_market_open_now() is is_open

    def test_market_clock_failure_is_closed(self, gateway, mock_trading_client):
        mock_trading_client.set_next_error('get_clock', ConnectionError("down"))
        assert gateway.is_market_open_now() is False

    def test_get_some_assets_warns_about_untracked(self, gateway, caplog):
        assets = gateway.get_some_assets(["AAPL", "NOPE"])
        assert [a.symbol for a in assets] == ["AAPL"]
        assert any("not tracked" in r.getMessage() and "NOPE" in r.getMessage() for r in caplog.records)

    def test_orders_placed_today_open_only_by_default(self, gateway, mock_trading_client):
        mock_trading_client.add_order(MockOrder(symbol="AAPL"))
        mock_trading_client.add_order(MockOrder(symbol="MSFT", status=MockOrderStatus.FILLED))

        open_orders = gateway.get_orders_placed_today()
        all_orders = gateway.get_orders_placed_today(include_all_orders=True)

        assert [o.symbol for o in open_orders] == ["AAPL"]
        assert len(all_orders) == 2

        request = mock_trading_client.calls('get_orders')[0]['filter']
        assert request.limit == 500
        assert as_utc(request.after) == eastern(0, 0)

    def test_orders_placed_today_of_type(self, gateway, mock_trading_client):
        mock_trading_client.add_order(MockOrder(symbol="AAPL", order_type="limit"))
        mock_trading_client.add_order(MockOrder(symbol="MSFT", order_type="market"))

        limits = gateway.get_orders_placed_today_of_type("limit")
        assert [o.symbol for o in limits] == ["AAPL"]


# =============================================================================
# Chunked market data
# =============================================================================

class TestChunkedData:

    def test_snapshots_are_chunked_at_200(self, gateway, mock_data_client):
        symbols = [f"S{i:03d}" for i in range(450)]
        result = gateway.get_snapshots(symbols)

        sizes = sorted(len(c['symbols']) for c in mock_data_client.calls('get_stock_snapshot'))
        assert sizes == [50, 200, 200]
        assert len(result.data) == 450

    def test_unrecognized_symbols_dropped_from_snapshots(self, gateway, mock_data_client):
        mock_data_client._known = {"AAPL"}
        result = gateway.get_snapshots(["AAPL", "ZZZZ"])
        assert list(result.data) == ["AAPL"]

    def test_failed_chunk_reported(self, gateway, mock_data_client):
        mock_data_client.fail_symbol("S250")
        result = gateway.get_bars([f"S{i:03d}" for i in range(450)], start=eastern(9, 30))

        assert len(result.data) == 250
        assert len(result.failures) == 1
        assert "S250" in result.failed_symbols
        assert result.failures[0].error.details.get('status_code') == 404

    def test_bars_to_dataframe(self, gateway):
        result = gateway.get_bars(["AAPL", "MSFT"], start=eastern(9, 30), timeframe=TimeFrame.Minute)
        df = bars_to_dataframe(result.data)

        assert list(df.index.names) == ["symbol", "timestamp"]
        assert len(df) == 6
        assert df.loc["AAPL"]["close"].iloc[0] == 100.5

    def test_empty_dataframe(self):
        df = bars_to_dataframe({})
        assert df.empty
        assert "close" in df.columns

    def test_bars_today_window_respects_data_delay(self, gateway, mock_data_client):
        gateway.get_bars_today(["AAPL"])
        call = mock_data_client.calls('get_stock_bars')[0]

        assert as_utc(call['start']) == eastern(9, 30)
        assert as_utc(call['end']) == eastern(10, 45)

    def test_bars_today_before_open_issues_no_request(self, test_credentials, mock_trading_client,
                                                      mock_data_client, clock_at, tagged_logger):
        gateway = AlpacaGateway(test_credentials, trading_client=mock_trading_client,
                                data_client=mock_data_client, clock=clock_at(9, 40), logger=tagged_logger)
        result = gateway.get_bars_today(["AAPL"])

        assert result.data == {}
        assert mock_data_client.calls('get_stock_bars') == []


# =============================================================================
# Paged quotes
# =============================================================================

class TestQuotesToday:

    @pytest.fixture
    def quote_pages(self, mock_data_client):
        mock_data_client.set_quote_pages("AAPL", [
            [raw_quote(0), raw_quote(1)],
            [raw_quote(2), raw_quote(3)],
            [raw_quote(4, bid=101.0)],
        ])
        mock_data_client.set_quote_pages("MSFT", [[raw_quote(0, bid=400.0)]])
        return mock_data_client

    def test_all_collects_every_page(self, gateway, quote_pages):
        results = gateway.get_quotes_today(["AAPL", "MSFT"], PageMode.ALL)

        assert len(results["AAPL"].items) == 5
        assert results["AAPL"].pages == 3
        assert results["MSFT"].items[0].bid_price == 400.0

        tokens = [c['params'].get('page_token') for c in quote_pages.calls('get') if c['symbol'] == "AAPL"]
        assert tokens == [None, "1", "2"]

    def test_first_requests_a_single_quote(self, gateway, quote_pages):
        results = gateway.get_quotes_today(["AAPL"], PageMode.FIRST)

        assert len(results["AAPL"].items) == 1
        calls = quote_pages.calls('get')
        assert len(calls) == 1
        assert calls[0]['params']['limit'] == 1
        assert calls[0]['path'] == "/stocks/AAPL/quotes"

    def test_last_keeps_final_page(self, gateway, quote_pages):
        results = gateway.get_quotes_today(["AAPL"], PageMode.LAST)
        assert [q.bid_price for q in results["AAPL"].items] == [101.0]

    def test_window_is_todays_session(self, gateway, quote_pages):
        gateway.get_quotes_today(["MSFT"], "all")
        params = quote_pages.calls('get')[0]['params']

        assert datetime.fromisoformat(params['start']) == eastern(9, 30)
        assert datetime.fromisoformat(params['end']) == eastern(16, 0)
        assert params['limit'] == 10000

    def test_failing_symbol_does_not_affect_others(self, gateway, quote_pages):
        quote_pages.fail_symbol("MSFT")
        results = gateway.get_quotes_today(["AAPL", "MSFT"], PageMode.ALL)

        assert results["AAPL"].complete
        assert not results["MSFT"].complete
        assert results["MSFT"].items == []


# =============================================================================
# Fan-out operations
# =============================================================================

class TestOrders:

    def test_place_order_single_outcome(self, gateway):
        outcome = gateway.place_order(market_order("AAPL"))
        assert isinstance(outcome, BatchOutcome)
        assert outcome.key == "AAPL"
        assert outcome.success
        assert outcome.value.symbol == "AAPL"

    def test_place_multiple_orders_isolates_failures(self, gateway, mock_trading_client, caplog):
        mock_trading_client.fail_symbol("TSLA", RateLimitError())
        outcomes = gateway.place_multiple_orders([market_order(s) for s in ("AAPL", "TSLA", "MSFT")])
        by_key = {o.key: o for o in outcomes}

        assert len(outcomes) == 3
        assert by_key["AAPL"].success and by_key["MSFT"].success
        assert not by_key["TSLA"].success
        assert by_key["TSLA"].value is None
        assert by_key["TSLA"].error.details['status_code'] == 429
        assert len(mock_trading_client.calls('submit_order')) == 3
        assert any("failing: ['TSLA']" in r.getMessage() for r in caplog.records)

    def test_failed_order_carries_operation_and_symbol(self, gateway, mock_trading_client, caplog_info):
        mock_trading_client.fail_symbol("TSLA", ConnectionError("reset by peer"))
        outcome = gateway.place_order(market_order("TSLA"))

        assert outcome.error.error_type == "RemoteError"
        assert outcome.error.details['operation'] == "submit_order"
        assert outcome.error.details['symbol'] == "TSLA"
        assert any("(transient)" in r.getMessage() for r in caplog_info.records)

    def test_replace_order_keyed_by_order_id(self, gateway, mock_trading_client):
        order = mock_trading_client.add_order(MockOrder(symbol="AAPL", qty=1, order_type="limit", limit_price=10.0))
        outcome = gateway.replace_order(ReplaceOrderConfig(order.id, ReplaceOrderRequest(qty=5)))

        assert outcome.key == order.id
        assert outcome.success
        assert outcome.value.qty == 5

    def test_replace_unknown_order_fails_alone(self, gateway, mock_trading_client):
        order = mock_trading_client.add_order(MockOrder(symbol="AAPL", qty=1))
        outcomes = gateway.replace_multiple_orders([
            ReplaceOrderConfig(order.id, ReplaceOrderRequest(qty=2)),
            ReplaceOrderConfig("missing", ReplaceOrderRequest(qty=2)),
        ])
        assert [o.success for o in outcomes] == [True, False]

    def test_limit_orders_are_submitted_as_given(self, gateway, mock_trading_client):
        request = LimitOrderRequest(symbol="AAPL", qty=1, side=OrderSide.SELL,
                                    time_in_force=TimeInForce.DAY, limit_price=190.0)
        outcome = gateway.place_order(request)
        assert outcome.value.limit_price == 190.0


class TestPositions:

    def test_close_positions_one_outcome_each(self, gateway, mock_trading_client):
        mock_trading_client.add_position("AAPL", 10)
        outcomes = gateway.close_positions(["AAPL", "MSFT"])

        assert {o.key: o.success for o in outcomes} == {"AAPL": True, "MSFT": False}

    def test_close_position_single(self, gateway, mock_trading_client):
        mock_trading_client.add_position("AAPL", 10)
        assert gateway.close_position("AAPL").success

    def test_close_all_positions_bulk_shape(self, gateway, mock_trading_client):
        mock_trading_client.add_position("AAPL", 10)
        mock_trading_client.add_position("MSFT", -5)

        outcome = gateway.close_all_positions(cancel_orders=True)

        assert isinstance(outcome, BulkOutcome)
        assert outcome.success
        assert outcome.count == 2
        assert mock_trading_client.calls('close_all_positions')[0]['cancel_orders'] is True

    def test_close_all_positions_failure(self, gateway, mock_trading_client):
        mock_trading_client.set_next_error('close_all_positions', ConnectionError("down"))
        outcome = gateway.close_all_positions()
        assert not outcome.success
        assert outcome.error.error_type == "RemoteError"

    def test_cancel_all_orders(self, gateway, mock_trading_client):
        mock_trading_client.add_order(MockOrder(symbol="AAPL"))
        outcome = gateway.cancel_all_orders()
        assert outcome.operation == "cancel_all_orders"
        assert outcome.count == 1


class TestQuotePrices:

    def test_long_uses_bid_short_uses_ask(self, gateway, mock_data_client):
        mock_data_client.set_quote("AAPL", bid=189.9, ask=190.1)
        mock_data_client.set_quote("TSLA", bid=249.5, ask=250.5)

        outcomes = gateway.get_quote_prices([
            QuoteSelector("AAPL", PositionSide.LONG),
            QuoteSelector("TSLA", PositionSide.SHORT),
        ])
        prices = {o.key: o.value.price for o in outcomes}

        assert prices == {"AAPL": 189.9, "TSLA": 250.5}

    def test_missing_or_zero_quote_fails_that_symbol(self, gateway, mock_data_client):
        mock_data_client.set_quote("AAPL", bid=0.0, ask=190.1)
        outcomes = gateway.get_quote_prices([
            QuoteSelector("AAPL", PositionSide.LONG),
            QuoteSelector("NOPE", PositionSide.LONG),
        ])
        assert [o.success for o in outcomes] == [False, False]
        assert all(o.error.error_type == "ProtocolError" for o in outcomes)


# =============================================================================
# Streaming
# =============================================================================

class TestStreamingRequiresStreamMode:

    def test_listen_outside_stream_mode(self, gateway, caplog):
        assert gateway.listen_for_trade_updates(lambda update: None) is False
        assert any("'stream' mode" in r.getMessage() for r in caplog.records)

    def test_wait_outside_stream_mode(self, gateway):
        assert gateway.wait_for_stream(timeout=0.1) is False

    def test_listen_in_stream_mode_delegates(self, test_credentials, mock_trading_client, mock_data_client):
        class FakeStream:
            def __init__(self):
                self.events = []

            def subscribe(self, callback):
                self.events.append("subscribe")

            def start(self):
                self.events.append("start")

            def unsubscribe(self):
                self.events.append("unsubscribe")

            def stop(self):
                self.events.append("stop")

        stream = FakeStream()
        gateway = AlpacaGateway(test_credentials, trading_client=mock_trading_client,
                                data_client=mock_data_client, stream=stream)

        assert gateway.listen_for_trade_updates(print) is True
        gateway.stop_listening_for_trade_updates()
        assert stream.events == ["subscribe", "start", "unsubscribe", "stop"]

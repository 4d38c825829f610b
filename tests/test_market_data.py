"""Tests for market data service.

HTTP, yfinance and the WebSocket client are mocked; stream handlers are
called directly the way the WebSocket client would call them.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

from tradejournal.market_data import (
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
    MarketDataError,
    MarketDataService,
    TradeTick,
    TTLCache,
    format_chart_symbol,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def json_response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def service():
    return MarketDataService(api_key="test-key")


class TestTTLCache:
    """Tests for the response cache."""

    def test_get_and_expire(self):
        """Test entries expire after the TTL."""
        clock = FakeClock()
        cache = TTLCache(ttl=300, clock=clock)
        cache.set("a", 1)

        clock.now = 299
        assert cache.get("a") == 1
        clock.now = 301
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_evicts_oldest_when_full(self):
        """Test the oldest entry is dropped at max size."""
        cache = TTLCache(ttl=300, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self):
        """Test updating an existing key keeps other entries."""
        cache = TTLCache(ttl=300, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2


class TestChartSymbols:
    """Tests for charting symbol mapping."""

    @pytest.mark.parametrize("symbol, market, expected", [
        ("GER40", "", "OANDA:DE30EUR"),
        ("NQ", "Futures", "CME_MINI:NQ1!"),
        ("ZB", "Futures", "CME:ZB1!"),
        ("AAPL", "Stocks", "NASDAQ:AAPL"),
        ("BTC/USD", "Spot Crypto", "BINANCE:BTCUSDUSDT"),
        ("EUR/USD", "Forex", "FX:EURUSD"),
        ("XYZ", "", "NASDAQ:XYZ"),
    ])
    def test_format_chart_symbol(self, symbol, market, expected):
        """Test symbols map to EXCHANGE:TICKER."""
        assert format_chart_symbol(symbol, market) == expected

    def test_stock_exchange(self):
        """Test an explicit exchange is used for stocks."""
        assert format_chart_symbol("IBM", "Stocks", exchange="nyse") == "NYSE:IBM"


class TestRestClient:
    """Tests for quotes and candles."""

    def test_invalid_default_timeframe(self):
        """Test unsupported default timeframes are rejected."""
        with pytest.raises(ValueError, match="Invalid timeframe"):
            MarketDataService(default_timeframe="30")

    def test_quote_requires_key(self):
        """Test quotes need an API key."""
        with pytest.raises(MarketDataError, match="API key"):
            MarketDataService().get_quote("AAPL")

    def test_quote_is_cached(self, service):
        """Test a repeated quote is served from cache."""
        with patch("tradejournal.market_data.requests.get") as mock_get:
            mock_get.return_value = json_response({"c": 190.5, "pc": 188.0})

            first = service.get_quote("AAPL")
            second = service.get_quote("AAPL")

        assert first == second == {"c": 190.5, "pc": 188.0}
        assert mock_get.call_count == 1
        assert mock_get.call_args.kwargs["params"] == {"symbol": "AAPL", "token": "test-key"}

    def test_request_failure(self, service):
        """Test HTTP errors become MarketDataError."""
        with patch("tradejournal.market_data.requests.get") as mock_get:
            mock_get.side_effect = requests.Timeout("slow")

            with pytest.raises(MarketDataError, match="/quote failed"):
                service.get_quote("AAPL")

    def test_candles(self, service):
        """Test candle arrays become an OHLCV DataFrame."""
        payload = {
            "s": "ok",
            "t": [1767607200, 1767608100],
            "o": [100.0, 101.0],
            "h": [102.0, 103.0],
            "l": [99.0, 100.5],
            "c": [101.0, 102.5],
            "v": [1000, 1500],
        }
        with patch("tradejournal.market_data.requests.get") as mock_get:
            mock_get.return_value = json_response(payload)

            candles = service.get_candles(
                "AAPL",
                timeframe="15",
                start=datetime(2026, 1, 5, tzinfo=timezone.utc),
                end=datetime(2026, 1, 6, tzinfo=timezone.utc),
            )

        params = mock_get.call_args.kwargs["params"]
        assert params["resolution"] == "15"
        assert params["from"] == 1767571200
        assert params["to"] == 1767657600
        assert list(candles.columns) == ["open", "high", "low", "close", "volume"]
        assert candles.index[0] == pd.Timestamp("2026-01-05 10:00", tz="UTC")
        assert candles["close"].iloc[-1] == 102.5

    def test_candles_no_data(self, service):
        """Test a no_data status raises MarketDataError."""
        with patch("tradejournal.market_data.requests.get") as mock_get:
            mock_get.return_value = json_response({"s": "no_data"})

            with pytest.raises(MarketDataError, match="No candle data for AAPL"):
                service.get_candles("AAPL", timeframe="D")

    def test_candles_invalid_timeframe(self, service):
        """Test unsupported timeframes are rejected."""
        with pytest.raises(ValueError):
            service.get_candles("AAPL", timeframe="1")

    def test_candles_yfinance_fallback(self):
        """Test candles come from yfinance without an API key."""
        hist = pd.DataFrame(
            {
                "Open": [100.0],
                "High": [102.0],
                "Low": [99.0],
                "Close": [101.0],
                "Volume": [1000],
                "Dividends": [0.0],
            },
            index=pd.DatetimeIndex(["2026-01-05"]),
        )
        with patch("tradejournal.market_data.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.history.return_value = hist

            candles = MarketDataService().get_candles("AAPL", timeframe="D")

        assert mock_ticker.return_value.history.call_args.kwargs["interval"] == "1d"
        assert list(candles.columns) == ["open", "high", "low", "close", "volume"]
        assert str(candles.index.tz) == "UTC"

    def test_candles_yfinance_empty(self):
        """Test empty yfinance history raises MarketDataError."""
        with patch("tradejournal.market_data.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.history.return_value = pd.DataFrame()

            with pytest.raises(MarketDataError):
                MarketDataService().get_candles("NOPE")


@pytest.fixture
def mock_ws_app():
    with patch("tradejournal.market_data.websocket.WebSocketApp") as app:
        yield app


class TestRealtimeStream:
    """Tests for the realtime trade stream."""

    def test_connect_requires_key(self):
        """Test the stream needs an API key."""
        with pytest.raises(MarketDataError):
            MarketDataService().connect()

    def test_subscribe_connects(self, service, mock_ws_app):
        """Test subscribing while disconnected opens the stream."""
        service.subscribe("AAPL")

        assert service.subscriptions == {"AAPL"}
        assert mock_ws_app.call_args.args[0] == "wss://ws.finnhub.io?token=test-key"
        mock_ws_app.return_value.send.assert_not_called()

    def test_single_connection_attempt(self, service, mock_ws_app):
        """Test a second connect while connecting is a no-op."""
        service.connect()
        service.connect()

        assert mock_ws_app.call_count == 1

    def test_open_subscribes_queued_symbols(self, service, mock_ws_app):
        """Test queued symbols are subscribed once the stream opens."""
        service.subscribe("MSFT")
        service.subscribe("AAPL")
        ws = MagicMock()

        service._handle_open(ws)

        assert service.connected
        sent = [json.loads(call.args[0]) for call in ws.send.call_args_list]
        assert sent == [
            {"type": "subscribe", "symbol": "AAPL"},
            {"type": "subscribe", "symbol": "MSFT"},
        ]

    def test_subscribe_when_connected(self, service, mock_ws_app):
        """Test subscribing on an open stream sends immediately."""
        service.connect()
        service._handle_open(MagicMock())

        service.subscribe("TSLA")

        mock_ws_app.return_value.send.assert_called_with(
            json.dumps({"type": "subscribe", "symbol": "TSLA"})
        )
        assert mock_ws_app.call_count == 1

    def test_unsubscribe(self, service, mock_ws_app):
        """Test unsubscribing sends the message and forgets the symbol."""
        service.subscribe("AAPL")
        service._handle_open(MagicMock())

        service.unsubscribe("AAPL")

        assert service.subscriptions == set()
        mock_ws_app.return_value.send.assert_called_with(
            json.dumps({"type": "unsubscribe", "symbol": "AAPL"})
        )

    def test_trade_messages_reach_callbacks(self, service):
        """Test trade prints are delivered as TradeTicks."""
        ticks = []
        service.on_trade(ticks.append)

        service._handle_message(None, json.dumps({
            "type": "trade",
            "data": [
                {"s": "AAPL", "p": 190.25, "v": 100, "t": 1767607200000},
                {"s": "BAD"},
            ],
        }))

        assert ticks == [TradeTick(
            symbol="AAPL",
            price=190.25,
            volume=100.0,
            timestamp=datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc),
        )]

    def test_other_messages_ignored(self, service):
        """Test pings and malformed messages are ignored."""
        callback = MagicMock()
        service.on_trade(callback)

        service._handle_message(None, json.dumps({"type": "ping"}))
        service._handle_message(None, "not json")

        callback.assert_not_called()

    def test_failing_callback_does_not_stop_others(self, service):
        """Test one failing callback does not block the next."""
        received = []
        service.on_trade(MagicMock(side_effect=RuntimeError("boom")))
        service.on_trade(received.append)

        service._handle_message(None, json.dumps({
            "type": "trade",
            "data": [{"s": "AAPL", "p": 1, "v": 1, "t": 0}],
        }))

        assert len(received) == 1

    def test_reconnect_backoff(self, service):
        """Test reconnect delays double on each attempt."""
        with patch("tradejournal.market_data.threading.Timer") as mock_timer:
            service._handle_close(None, 1006, "abnormal")
            service._handle_close(None, 1006, "abnormal")

        delays = [call.args[0] for call in mock_timer.call_args_list]
        assert delays == [RECONNECT_DELAY, RECONNECT_DELAY * 2]
        assert mock_timer.call_args.args[1] == service.connect
        assert service.reconnect_attempts == 2

    def test_reconnect_gives_up(self, service):
        """Test no reconnect is scheduled after the maximum attempts."""
        service.reconnect_attempts = MAX_RECONNECT_ATTEMPTS

        with patch("tradejournal.market_data.threading.Timer") as mock_timer:
            service._handle_close(None, 1006, "abnormal")

        mock_timer.assert_not_called()

    def test_open_resets_attempts(self, service):
        """Test a successful open resets the reconnect counter."""
        service.reconnect_attempts = 3
        service._handle_open(MagicMock())
        assert service.reconnect_attempts == 0

    def test_disconnect(self, service, mock_ws_app):
        """Test disconnect closes the socket and stops reconnecting."""
        service.subscribe("AAPL")
        service._handle_open(MagicMock())
        with patch("tradejournal.market_data.threading.Timer") as mock_timer:
            service.disconnect()
            service._handle_close(None, 1000, "bye")

        mock_ws_app.return_value.close.assert_called_once()
        mock_timer.assert_not_called()
        assert service.subscriptions == set()
        assert not service.connected

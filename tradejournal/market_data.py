"""Market data: REST quotes and candles plus a realtime trade stream.

REST calls go to Finnhub (https://finnhub.io/docs/api) and are cached for a
few minutes. Without an API key, candles fall back to yfinance history.

The realtime stream keeps a set of subscribed symbols and re-subscribes
them after every reconnect. Reconnects back off exponentially and stop
after MAX_RECONNECT_ATTEMPTS.
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pandas as pd
import requests
import websocket
import yfinance as yf

logger = logging.getLogger(__name__)

BASE_URL = "https://finnhub.io/api/v1"
WS_URL = "wss://ws.finnhub.io"

REQUEST_TIMEOUT = 10
TIMEFRAMES = ["5", "15", "60", "D"]
DEFAULT_LOOKBACK_DAYS = 30

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 5.0  # seconds, doubled on every attempt

CACHE_TTL = 300
CACHE_MAX_SIZE = 50

YFINANCE_INTERVALS = {"5": "5m", "15": "15m", "60": "60m", "D": "1d"}

FUTURES_SYMBOLS = {
    "NQ": "CME_MINI:NQ1!",
    "ES": "CME_MINI:ES1!",
    "YM": "CME_MINI:YM1!",
    "RTY": "CME_MINI:RTY1!",
    "CL": "NYMEX:CL1!",
    "GC": "COMEX:GC1!",
    "SI": "COMEX:SI1!",
    "6E": "CME:6E1!",
}

SPECIAL_SYMBOLS = {
    ".USTEC": "NASDAQ:NDX",
    "GER40": "OANDA:DE30EUR",
    "DE40": "OANDA:DE30EUR",
    "US30": "DJ:DJI",
    "XAUUSD": "OANDA:XAUUSD",
    "GOLD": "OANDA:XAUUSD",
}


class MarketDataError(Exception):
    """Raised when the market data API returns an unusable response."""


@dataclass
class TradeTick:
    """A single trade print from the realtime stream."""
    symbol: str
    price: float
    volume: float
    timestamp: datetime


class TTLCache:
    """Size-bounded cache whose entries expire after ttl seconds.

    When full, the oldest entry is evicted.
    """

    def __init__(
        self,
        ttl: float = CACHE_TTL,
        max_size: int = CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._items: OrderedDict = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expiry = item
            if self._clock() > expiry:
                del self._items[key]
                return None
            return value

    def set(self, key, value) -> None:
        with self._lock:
            if key in self._items:
                del self._items[key]
            elif len(self._items) >= self.max_size:
                self._items.popitem(last=False)
            self._items[key] = (value, self._clock() + self.ttl)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def format_chart_symbol(symbol: str, market: str = "", exchange: Optional[str] = None) -> str:
    """Map a journal symbol to a charting symbol (EXCHANGE:TICKER).

    Args:
        symbol: Journal symbol, e.g. 'GER40', 'NQ', 'BTC/USD'.
        market: Market name ('Futures', 'Stocks', 'ETFs', 'Spot Crypto',
            'Crypto Futures', 'Spot Forex') or market category.
        exchange: Exchange for stocks, defaults to NASDAQ.

    Returns:
        Charting symbol.
    """
    if symbol in SPECIAL_SYMBOLS:
        return SPECIAL_SYMBOLS[symbol]

    if market == "Futures":
        return FUTURES_SYMBOLS.get(symbol, f"CME:{symbol}1!")

    if market in ("Stocks", "ETFs", "Equities"):
        return f"{(exchange or 'NASDAQ').upper()}:{symbol}"

    if market in ("Spot Crypto", "Crypto Futures", "Crypto"):
        return f"BINANCE:{symbol.replace('/', '').upper()}USDT"

    if market in ("Spot Forex", "Forex"):
        return f"FX:{symbol.replace('/', '').upper()}"

    return f"NASDAQ:{symbol}"


def _to_epoch(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class MarketDataService:
    """Finnhub REST client and realtime trade stream."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_timeframe: str = "15",
        base_url: str = BASE_URL,
        ws_url: str = WS_URL,
        cache: Optional[TTLCache] = None,
    ):
        """Initialize market data service.

        Args:
            api_key: Finnhub API key. Without one, REST falls back to yfinance
                and the realtime stream is unavailable.
            default_timeframe: Candle resolution used when none is given.
            base_url: REST base URL.
            ws_url: WebSocket URL.
            cache: Response cache (a fresh TTLCache by default).
        """
        if default_timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe: {default_timeframe}. Must be one of {TIMEFRAMES}")

        self.api_key = api_key
        self.default_timeframe = default_timeframe
        self.base_url = base_url.rstrip("/")
        self.ws_url = ws_url
        self.cache = cache if cache is not None else TTLCache()

        self.subscriptions: set[str] = set()
        self.reconnect_attempts = 0
        self._callbacks: list[Callable[[TradeTick], None]] = []
        self._ws: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._timer: Optional[threading.Timer] = None
        self._connected = False
        self._connecting = False
        self._stopped = False
        self._lock = threading.RLock()

    # REST

    def _get(self, path: str, params: dict) -> dict:
        cache_key = (path, tuple(sorted(params.items())))
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {path} {params}")
            return cached

        try:
            resp = requests.get(
                f"{self.base_url}{path}",
                params={**params, "token": self.api_key},
                timeout=REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            logger.error(f"Market data request {path} failed: {e}")
            raise MarketDataError(f"Request to {path} failed: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"Invalid JSON from {path}") from e

        self.cache.set(cache_key, data)
        return data

    def get_quote(self, symbol: str) -> dict:
        """Get the latest quote.

        Returns:
            Dict with current price (c), change (d), percent change (dp),
            high (h), low (l), open (o), previous close (pc) and time (t).

        Raises:
            MarketDataError: If the request fails or no key is configured.
        """
        if not self.api_key:
            raise MarketDataError("Quotes require a Finnhub API key")
        return self._get("/quote", {"symbol": symbol})

    def get_candles(
        self,
        symbol: str,
        timeframe: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """Get OHLCV candles.

        Args:
            symbol: Ticker symbol.
            timeframe: '5', '15', '60' (minutes) or 'D'.
            start: Range start (defaults to 30 days before end).
            end: Range end (defaults to now).

        Returns:
            DataFrame with open, high, low, close, volume indexed by UTC timestamp.

        Raises:
            ValueError: For an unsupported timeframe.
            MarketDataError: If the API reports no data.
        """
        timeframe = timeframe or self.default_timeframe
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe: {timeframe}. Must be one of {TIMEFRAMES}")

        end = end or datetime.now(timezone.utc)
        start = start or end - timedelta(days=DEFAULT_LOOKBACK_DAYS)

        if not self.api_key:
            return self._yfinance_candles(symbol, timeframe, start, end)

        data = self._get("/stock/candle", {
            "symbol": symbol,
            "resolution": timeframe,
            "from": _to_epoch(start),
            "to": _to_epoch(end),
        })

        if data.get("s") != "ok" or not isinstance(data.get("t"), list):
            raise MarketDataError(f"No candle data for {symbol} (status: {data.get('s')})")

        candles = pd.DataFrame({
            "open": data["o"],
            "high": data["h"],
            "low": data["l"],
            "close": data["c"],
            "volume": data["v"],
        }, index=pd.to_datetime(data["t"], unit="s", utc=True))
        candles.index.name = "timestamp"

        logger.info(f"Fetched {len(candles)} {timeframe} candles for {symbol}")
        return candles

    def _yfinance_candles(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        logger.info(f"No API key; fetching {symbol} history from yfinance")
        try:
            hist = yf.Ticker(symbol).history(
                start=start.strftime("%Y-%m-%d"),
                end=end.strftime("%Y-%m-%d"),
                interval=YFINANCE_INTERVALS[timeframe],
            )
        except Exception as e:
            logger.error(f"yfinance history failed for {symbol}: {e}")
            raise MarketDataError(f"No candle data for {symbol}: {e}") from e

        if hist.empty:
            raise MarketDataError(f"No candle data for {symbol}")

        candles = hist[["Open", "High", "Low", "Close", "Volume"]].copy()
        candles.columns = ["open", "high", "low", "close", "volume"]
        if candles.index.tz is None:
            candles.index = candles.index.tz_localize("UTC")
        else:
            candles.index = candles.index.tz_convert("UTC")
        candles.index.name = "timestamp"
        return candles

    # Realtime

    @property
    def connected(self) -> bool:
        return self._connected

    def on_trade(self, callback: Callable[[TradeTick], None]) -> None:
        """Register a callback for every trade tick."""
        self._callbacks.append(callback)

    def connect(self) -> None:
        """Open the realtime stream in a background thread.

        A no-op while a connection is open or being opened.
        """
        with self._lock:
            if self._connecting:
                logger.debug("WebSocket connection attempt already in progress")
                return
            if self._connected:
                logger.debug("WebSocket already connected")
                return
            if not self.api_key:
                raise MarketDataError("Realtime data requires a Finnhub API key")

            self._stopped = False
            self._connecting = True
            logger.info("Connecting to market data stream...")

            self._ws = websocket.WebSocketApp(
                f"{self.ws_url}?token={self.api_key}",
                on_open=self._handle_open,
                on_message=self._handle_message,
                on_error=self._handle_error,
                on_close=self._handle_close,
            )
            self._thread = threading.Thread(target=self._ws.run_forever, daemon=True)
            self._thread.start()

    def _send(self, payload: dict) -> None:
        if self._ws is not None:
            self._ws.send(json.dumps(payload))

    def subscribe(self, symbol: str) -> None:
        """Subscribe to trades for a symbol, connecting if needed."""
        with self._lock:
            self.subscriptions.add(symbol)
            if self._connected:
                self._send({"type": "subscribe", "symbol": symbol})
                return

        logger.info(f"Stream not ready, queued subscription for {symbol}")
        self.connect()

    def unsubscribe(self, symbol: str) -> None:
        with self._lock:
            if self._connected:
                self._send({"type": "unsubscribe", "symbol": symbol})
            self.subscriptions.discard(symbol)

    def disconnect(self) -> None:
        """Close the stream, drop subscriptions and stop reconnecting."""
        with self._lock:
            self.subscriptions.clear()
            self.reconnect_attempts = MAX_RECONNECT_ATTEMPTS
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            ws = self._ws
            self._ws = None
            self._connected = False
            self._connecting = False

        if ws is not None:
            ws.close()
        logger.info("Disconnected from market data stream")

    def _handle_open(self, ws) -> None:
        with self._lock:
            self._connected = True
            self._connecting = False
            self.reconnect_attempts = 0
            symbols = sorted(self.subscriptions)

        logger.info(f"Connected to market data stream; subscribing {len(symbols)} symbol(s)")
        for symbol in symbols:
            ws.send(json.dumps({"type": "subscribe", "symbol": symbol}))

    def _handle_message(self, ws, message: str) -> None:
        try:
            data = json.loads(message)
        except ValueError:
            logger.warning(f"Ignoring malformed stream message: {message[:100]}")
            return

        if not isinstance(data, dict) or data.get("type") != "trade":
            return

        for item in data.get("data") or []:
            try:
                tick = TradeTick(
                    symbol=item["s"],
                    price=float(item["p"]),
                    volume=float(item.get("v") or 0),
                    timestamp=datetime.fromtimestamp(item["t"] / 1000, tz=timezone.utc),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed trade: {item} ({e})")
                continue

            for callback in list(self._callbacks):
                try:
                    callback(tick)
                except Exception:
                    logger.exception(f"Trade callback failed for {tick.symbol}")

    def _handle_error(self, ws, error) -> None:
        # The close handler takes care of reconnecting
        logger.error(f"Market data stream error: {error}")

    def _handle_close(self, ws, status_code=None, reason=None) -> None:
        with self._lock:
            self._connected = False
            self._connecting = False
            if self._stopped:
                return

        logger.warning(f"Market data stream closed (code={status_code}, reason={reason})")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self.reconnect_attempts >= MAX_RECONNECT_ATTEMPTS:
                logger.error(
                    "Max reconnection attempts reached. "
                    "Please check your API key and connection."
                )
                return

            self.reconnect_attempts += 1
            delay = RECONNECT_DELAY * (2 ** (self.reconnect_attempts - 1))
            logger.info(
                f"Reconnecting in {delay:.0f}s "
                f"(attempt {self.reconnect_attempts}/{MAX_RECONNECT_ATTEMPTS})"
            )
            self._timer = threading.Timer(delay, self.connect)
            self._timer.daemon = True
            self._timer.start()

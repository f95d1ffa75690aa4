"""
Spot price lookups for the portfolio evaluator.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests
import yfinance as yf

logger = logging.getLogger(__name__)


@dataclass
class TokenPrice:
    """Current price and 24h movement for a symbol."""

    symbol: str
    price: float
    percent_change_24h: float = 0.0
    price_change_24h: float = 0.0
    timestamp: Optional[datetime] = None

    @classmethod
    def zero(cls, symbol: str) -> "TokenPrice":
        """Placeholder used when a symbol could not be fetched."""
        return cls(symbol=symbol, price=0.0, timestamp=datetime.now(timezone.utc))


class PriceFeedClient(ABC):
    """Fetches prices for generic symbols such as ETH or BTC."""

    @abstractmethod
    def get_price(self, symbol: str) -> TokenPrice:
        """
        Fetch one symbol.

        Raises:
            ValueError: If the symbol is unknown or no data is available
            requests.RequestException: On transport errors
        """
        pass

    def get_prices(self, symbols: list[str]) -> dict[str, TokenPrice]:
        """
        Fetch several symbols; a failing symbol degrades to a zero price.

        Args:
            symbols: Generic symbols

        Returns:
            Mapping of every requested symbol to its price
        """
        results = {}
        for symbol in symbols:
            try:
                results[symbol] = self.get_price(symbol)
            except Exception as e:
                logger.warning(f"Price fetch failed for {symbol}: {e}")
                results[symbol] = TokenPrice.zero(symbol)
        return results


class BinancePriceFeed(PriceFeedClient):
    """Binance public 24h ticker endpoint."""

    BASE_URL = "https://api.binance.com/api/v3/ticker/24hr"

    SYMBOL_MAP = {
        "ETH": "ETHUSDT",
        "BTC": "BTCUSDT",
        "PEPE": "PEPEUSDT",
        "LINK": "LINKUSDT",
    }

    def __init__(self, timeout: float = 10.0, base_url: Optional[str] = None):
        self.timeout = timeout
        self.base_url = base_url or self.BASE_URL

    def get_price(self, symbol: str) -> TokenPrice:
        market = self.SYMBOL_MAP.get(symbol.upper())
        if market is None:
            raise ValueError(f"Unsupported symbol: {symbol}")

        response = requests.get(self.base_url, params={"symbol": market}, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()

        return TokenPrice(
            symbol=symbol.upper(),
            price=float(data["lastPrice"]),
            percent_change_24h=float(data.get("priceChangePercent", 0) or 0),
            price_change_24h=float(data.get("priceChange", 0) or 0),
            timestamp=datetime.now(timezone.utc),
        )


class YahooPriceFeed(PriceFeedClient):
    """Yahoo Finance crypto quotes through yfinance."""

    SYMBOL_MAP = {
        "ETH": "ETH-USD",
        "BTC": "BTC-USD",
        "PEPE": "PEPE24478-USD",
        "LINK": "LINK-USD",
    }

    def get_price(self, symbol: str) -> TokenPrice:
        ticker = self.SYMBOL_MAP.get(symbol.upper())
        if ticker is None:
            raise ValueError(f"Unsupported symbol: {symbol}")

        info = yf.Ticker(ticker).info
        if not info:
            raise ValueError(f"No data available: {ticker}")

        # Use regularMarketPrice if available, otherwise fall back to previousClose
        current_price = info.get("regularMarketPrice")
        if current_price is None:
            current_price = info.get("previousClose")
        if current_price is None:
            raise ValueError(f"No data available: {ticker}")

        previous_close = info.get("previousClose") or current_price
        change = current_price - previous_close
        percent = (change / previous_close) * 100 if previous_close else 0.0

        return TokenPrice(
            symbol=symbol.upper(),
            price=float(current_price),
            percent_change_24h=percent,
            price_change_24h=change,
            timestamp=datetime.now(timezone.utc),
        )


def create_price_feed(provider: str = "binance", timeout: float = 10.0) -> PriceFeedClient:
    """
    Build the configured price feed.

    Raises:
        ValueError: If provider is unknown
    """
    if provider == "binance":
        return BinancePriceFeed(timeout=timeout)
    elif provider == "yahoo_finance":
        return YahooPriceFeed()
    else:
        raise ValueError(f"Unknown price feed provider: {provider}")

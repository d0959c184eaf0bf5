#!/usr/bin/env python3
"""
ILGuard — Pyth Hermes Price Client
==================================
Based on the official documentation:
  https://docs.pyth.network/price-feeds/api-instances-and-providers/hermes
  https://hermes.pyth.network/docs/#/rest/latest_price_updates

Fetches live prices and feeds every quote into the shared PriceHistory,
which is what velocity / volatility are computed from.

Hermes returns fixed-point values:
    price = int(price.price) × 10^expo
    conf  = int(price.conf)  × 10^expo
"""

import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional

import httpx

from ilguard.central_config import config
from price_history import PriceHistory, PriceSample

logger = logging.getLogger(__name__)


# ── Rate Limiter (CWE-770 mitigation) ────────────────────────────────────
HERMES_MAX_REQUESTS = 25
HERMES_WINDOW_SECONDS = 10.0


class _RateLimiter:
    """Sliding-window limiter shared by every request of one price service.

    Hermes throttles an IP for 60 s after 30 requests / 10 s. The service
    uses 25 / 10 s so a `watch` run (two feeds per tick for the position
    plus one for the predictor) keeps headroom for a concurrent `price`
    or `assess` call from the same host.
    """

    def __init__(
        self,
        max_requests: int = HERMES_MAX_REQUESTS,
        period_seconds: float = HERMES_WINDOW_SECONDS,
    ):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Block until the window has room, then claim a slot."""
        while True:
            now = time.monotonic()
            self._timestamps = [t for t in self._timestamps if now - t < self._period]
            if len(self._timestamps) < self._max:
                break
            await asyncio.sleep(self._period - (now - self._timestamps[0]) + 0.1)
        self._timestamps.append(time.monotonic())


def _strip_0x(feed_id: str) -> str:
    return feed_id[2:].lower() if feed_id.lower().startswith("0x") else feed_id.lower()


def decode_price_update(parsed: Dict) -> Optional[Dict[str, float]]:
    """
    Decode one entry of Hermes' ``parsed`` array.

    Returns {"price", "confidence", "expo", "publish_time"} or None when the
    entry is malformed or the price is not positive.
    """
    try:
        p = parsed["price"]
        expo = int(p["expo"])
        price = int(p["price"]) * (10 ** expo)
        conf = int(p["conf"]) * (10 ** expo)
    except (KeyError, TypeError, ValueError):
        return None
    if price <= 0:
        return None
    return {
        "price": float(price),
        "confidence": float(conf),
        "expo": expo,
        "publish_time": p.get("publish_time", 0),
    }


class PythPriceService:
    """
    Live price source backed by Pyth Hermes.

    Implements the price-source protocol used by ILPredictor and
    PositionMonitor: ``await get_price(symbol) -> PriceSample | None``.
    Every successful quote is recorded into the injected PriceHistory.
    """

    def __init__(
        self,
        history: PriceHistory,
        base_url: str = None,
        timeout: float = None,
        limiter: _RateLimiter = None,
    ):
        self.history = history
        self.base_url = base_url or config.hermes_url()
        self.timeout = timeout or config.api.TIMEOUT_SECONDS
        self._limiter = limiter or _RateLimiter()

    async def _fetch_parsed(self, feed_ids: List[str]) -> Optional[List[Dict]]:
        """GET latest price updates; returns Hermes' ``parsed`` list or None."""
        url = config.api.latest_price_url(self.base_url)
        params = [("ids[]", fid) for fid in feed_ids]
        try:
            await self._limiter.acquire()
            async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                response = await client.get(url, params=params)

                if response.status_code == 429:
                    logger.warning("Hermes rate limit reached; backing off")
                    return None
                if response.status_code != 200:
                    logger.warning("Hermes HTTP error %s", response.status_code)
                    return None

                data = response.json()
                parsed = data.get("parsed") if isinstance(data, dict) else None
                return parsed or None

        except httpx.TimeoutException:
            logger.warning("Timeout fetching prices from Hermes")
            return None
        except (httpx.HTTPError, ValueError):
            # CWE-209: sanitized — no internal exception details
            logger.warning("Hermes request failed")
            return None

    async def get_price(self, symbol: str) -> Optional[PriceSample]:
        """Current price for a ``BASE/QUOTE`` symbol, recorded into history."""
        feed_id = config.api.feed_id(symbol)
        if not feed_id:
            logger.error("Unknown price feed symbol: %s", symbol)
            return None

        parsed = await self._fetch_parsed([feed_id])
        if not parsed:
            return None

        decoded = decode_price_update(parsed[0])
        if decoded is None:
            logger.warning("Malformed price update for %s", symbol)
            return None

        return self.history.record(
            symbol, decoded["price"], confidence=decoded["confidence"]
        )

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, PriceSample]:
        """Prices for several symbols in one request; unknown symbols are skipped."""
        wanted = {}
        for symbol in symbols:
            feed_id = config.api.feed_id(symbol)
            if feed_id:
                wanted[_strip_0x(feed_id)] = symbol
            else:
                logger.error("Unknown price feed symbol: %s", symbol)

        if not wanted:
            return {}

        parsed = await self._fetch_parsed(["0x" + fid for fid in wanted])
        prices: Dict[str, PriceSample] = {}
        for entry in parsed or []:
            symbol = wanted.get(_strip_0x(str(entry.get("id", ""))))
            decoded = decode_price_update(entry)
            if symbol is None or decoded is None:
                continue
            prices[symbol] = self.history.record(
                symbol, decoded["price"], confidence=decoded["confidence"]
            )
        return prices


class HistoryPriceFeed:
    """
    Price source that reads the newest sample already in PriceHistory.

    For hosts that push prices in through ``record`` (tests, replays,
    offline simulation) instead of polling an upstream feed.
    """

    def __init__(self, history: PriceHistory):
        self.history = history

    async def get_price(self, symbol: str) -> Optional[PriceSample]:
        return self.history.latest(symbol)


if __name__ == "__main__":
    # Usage: python -m ilguard.pyth_client SOL/USD [USDC/USD ...]
    import sys as _sys

    async def _quick_test(symbols):
        service = PythPriceService(PriceHistory())
        quotes = await service.get_prices(symbols)
        for sym in symbols:
            q = quotes.get(sym)
            if q:
                print(f"✅ {sym}: ${q.price:,.6f} (±{q.confidence:.6f})")
            else:
                print(f"❌ {sym}: unavailable")

    _syms = _sys.argv[1:] or ["SOL/USD"]
    asyncio.run(_quick_test(_syms))
